"""Multi-source content ingestion driven through tool-provider workers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from rag_engine.ingest.pipeline import IngestPipeline
from rag_engine.sources.adapters import DEFAULT_ADAPTERS, SourceAdapter, ToolClient
from rag_engine.types import SourceSyncReport, SyncResult, SyncState, utc_now

logger = logging.getLogger(__name__)


class ContentAggregator:
    """Fetches items per source, indexes them, and tracks sync state.

    A failing source is reported in `SyncResult.errors` and never stops the
    remaining sources; a failing item is logged and skipped.
    """

    def __init__(
        self,
        tool_client: ToolClient,
        pipeline: IngestPipeline,
        adapters: Mapping[str, SourceAdapter] | None = None,
    ) -> None:
        self._tool_client = tool_client
        self._pipeline = pipeline
        self.adapters = dict(adapters if adapters is not None else DEFAULT_ADAPTERS)
        self._sync_state: dict[str, SyncState] = {}

    async def fetch(self, source: str) -> list[dict[str, Any]]:
        adapter = self.adapters[source]
        result = await self._tool_client.call_tool(
            adapter.server, adapter.tool, dict(adapter.arguments)
        )
        return adapter.parse_result(result)

    async def sync(self, sources: Sequence[str] = ("blogger",)) -> SyncResult:
        outcome = SyncResult()
        for source in sources:
            adapter = self.adapters.get(source)
            if adapter is None:
                logger.warning("Unsupported source: %s", source)
                outcome.errors.append({"source": source, "error": f"Unsupported source: {source}"})
                continue
            try:
                logger.info("Syncing content from %s...", source)
                items = await self.fetch(source)
                processed = await self._index_items(adapter, items)
            except Exception as exc:
                logger.error("Error syncing %s: %s", source, exc)
                outcome.errors.append({"source": source, "error": str(exc)})
                continue

            now = utc_now()
            self._sync_state[source] = SyncState(item_count=len(items), last_sync_time=now)
            outcome.reports[source] = SourceSyncReport(
                fetched=len(items), processed=processed, last_sync=now
            )
            outcome.total_processed += processed
            logger.info("Synced %d/%d items from %s", processed, len(items), source)
        return outcome

    async def _index_items(self, adapter: SourceAdapter, items: list[dict[str, Any]]) -> int:
        processed = 0
        for item in items:
            try:
                document = adapter.to_document(item)
                await asyncio.to_thread(self._pipeline.ingest, document)
            except Exception as exc:
                logger.error("Error processing %s item %s: %s", adapter.name, item.get("id"), exc)
                continue
            processed += 1
        return processed

    async def remove_source(self, source: str) -> int:
        """Delete every document from `source` and forget its sync state."""

        documents = self._pipeline.catalog.list(source_kind=source)
        for document in documents:
            await asyncio.to_thread(self._pipeline.remove, document.doc_id)
        self._sync_state.pop(source, None)
        logger.info("Removed %d documents from %s", len(documents), source)
        return len(documents)

    def sync_state(self, source: str) -> SyncState | None:
        return self._sync_state.get(source)

    def stats(self) -> dict[str, Any]:
        platforms = {
            source: {
                "item_count": state.item_count,
                "last_sync": state.last_sync_time.isoformat(),
            }
            for source, state in self._sync_state.items()
        }
        return {
            "platforms": platforms,
            "total_content": sum(state.item_count for state in self._sync_state.values()),
            "documents": self._pipeline.catalog.stats(),
        }
