"""Live tool-provider items used as extra query context."""

from __future__ import annotations

from typing import Protocol

from rag_engine.sources.adapters import SourceAdapter, ToolClient
from rag_engine.types import ContextItem


class LiveContextSource(Protocol):
    name: str

    async def fetch(self, query: str) -> list[ContextItem]: ...


class ToolLiveContext:
    """Fetches the latest items of one platform for a query.

    Items are not scored for relevance; every item carries the same fixed
    similarity weight.
    """

    def __init__(
        self,
        tool_client: ToolClient,
        adapter: SourceAdapter,
        *,
        limit: int = 3,
        similarity: float = 0.8,
        timeout: float | None = None,
    ) -> None:
        self.name = adapter.name
        self._tool_client = tool_client
        self._adapter = adapter
        self._limit = limit
        self._similarity = similarity
        self._timeout = timeout

    async def fetch(self, query: str) -> list[ContextItem]:
        del query  # platform tools return recent items, not query matches.
        if self._limit <= 0:
            return []
        result = await self._tool_client.call_tool(
            self._adapter.server,
            self._adapter.tool,
            dict(self._adapter.arguments),
            timeout=self._timeout,
        )
        items: list[ContextItem] = []
        for item in self._adapter.parse_result(result)[: self._limit]:
            document = self._adapter.to_document(item)
            items.append(
                ContextItem(
                    record_id=f"live:{document.doc_id}",
                    document_id=document.doc_id,
                    text=document.raw_text,
                    similarity=self._similarity,
                    origin="live",
                    metadata=dict(document.metadata),
                )
            )
        return items
