"""Merges retrieval candidates and composes generation context."""

from __future__ import annotations

from collections.abc import Sequence

from rag_engine.types import ContextItem, ScoredRecord


class ContextComposer:
    """Builds the ordered context list handed to the generation step.

    Store hits come first, best similarity first and de-duplicated by record
    id; live tool-provider items follow in the order they were fetched. Items
    are taken while they fit in `max_chars`; the first item is always kept,
    truncated if it alone exceeds the budget.
    """

    def __init__(self, max_chars: int = 12000) -> None:
        self.max_chars = max_chars

    def compose(
        self,
        store_hits: Sequence[ScoredRecord],
        live_items: Sequence[ContextItem] = (),
    ) -> list[ContextItem]:
        candidates: list[ContextItem] = []
        seen: set[str] = set()
        for hit in sorted(store_hits, key=lambda item: item.similarity, reverse=True):
            if hit.record.record_id in seen:
                continue
            seen.add(hit.record.record_id)
            candidates.append(
                ContextItem(
                    record_id=hit.record.record_id,
                    document_id=hit.record.document_id,
                    text=hit.record.text,
                    similarity=hit.similarity,
                    origin="store",
                    metadata=dict(hit.record.metadata),
                )
            )
        candidates.extend(item for item in live_items if item.record_id not in seen)

        used: list[ContextItem] = []
        remaining = self.max_chars
        for item in candidates:
            if not item.text.strip():
                continue
            cost = len(item.text) + 2
            if not used and cost > remaining:
                item.text = item.text[: max(0, remaining - 2)]
                used.append(item)
                break
            if cost > remaining:
                break
            used.append(item)
            remaining -= cost
        return used

    @staticmethod
    def render(items: Sequence[ContextItem]) -> str:
        return "\n\n".join(item.text for item in items)


def confidence_of(items: Sequence[ContextItem]) -> float:
    """Mean similarity of the used context, rounded to 2 decimals; 0 when empty."""

    if not items:
        return 0.0
    return round(sum(item.similarity for item in items) / len(items), 2)
