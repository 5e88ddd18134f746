"""Deterministic extractive answer used when generation is unavailable."""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Sequence

from rag_engine.types import ContextItem

NO_CONTEXT_ANSWER = "I couldn't find relevant information in the documents to answer your question."
EXCERPT_PREFIX = "Based on the documents:"

_WORD_PATTERN = re.compile(r"\w+", flags=re.UNICODE)
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def extractive_answer(query: str, context: Sequence[ContextItem]) -> str:
    """Answer with a sentence lifted from the best-matching context item.

    The item with the most query-word occurrences wins (the earliest item on
    ties); its first sentence containing a query word is returned, prefixed
    to mark it as a direct excerpt.
    """

    if not context:
        return NO_CONTEXT_ANSWER

    query_words = set(_words(query))
    best = context[0]
    best_score = 0
    for item in context:
        counts = Counter(_words(item.text))
        score = sum(counts[word] for word in query_words)
        if score > best_score:
            best, best_score = item, score

    sentences = [part.strip() for part in _SENTENCE_SPLIT.split(best.text) if part.strip()]
    if not sentences:
        return NO_CONTEXT_ANSWER
    chosen = next(
        (sentence for sentence in sentences if query_words & set(_words(sentence))),
        sentences[0],
    )
    return f"{EXCERPT_PREFIX} {chosen}."


def _words(text: str) -> list[str]:
    return [word.lower() for word in _WORD_PATTERN.findall(text)]
