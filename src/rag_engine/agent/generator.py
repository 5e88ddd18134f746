"""Generation capability wrapping a LangChain chat model."""

from __future__ import annotations

from typing import Any, Protocol

from langchain_core.prompts import ChatPromptTemplate


class Generator(Protocol):
    """Produces an answer text; any exception means "capability unavailable"."""

    def generate(self, system_prompt: str, user_prompt: str, temperature: float) -> str: ...


class ChatModelGenerator:
    """Runs system + user prompts through any LangChain chat model."""

    def __init__(self, llm: Any, *, max_tokens: int = 500) -> None:
        self.llm = llm
        self.max_tokens = max_tokens
        self._prompt = ChatPromptTemplate.from_messages(
            [
                ("system", "{system_prompt}"),
                ("human", "{user_prompt}"),
            ]
        )

    def generate(self, system_prompt: str, user_prompt: str, temperature: float) -> str:
        chain = self._prompt | self.llm.bind(temperature=temperature, max_tokens=self.max_tokens)
        message = chain.invoke({"system_prompt": system_prompt, "user_prompt": user_prompt})
        content = getattr(message, "content", message)
        if isinstance(content, list):
            content = " ".join(
                str(part.get("text", "")) if isinstance(part, dict) else str(part)
                for part in content
            )
        text = str(content).strip()
        if not text:
            raise ValueError("Chat model returned an empty answer")
        return text


def create_chat_generator(model: str, timeout: float = 30.0) -> ChatModelGenerator:
    from langchain_openai import ChatOpenAI

    return ChatModelGenerator(ChatOpenAI(model=model, timeout=timeout))
