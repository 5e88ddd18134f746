"""Per-platform normalization of tool-provider items into documents."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from rag_engine.errors import ToolProtocolError
from rag_engine.types import Document


class ToolClient(Protocol):
    """What sources need from the tool supervisor."""

    async def call_tool(
        self,
        server_name: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any: ...


@dataclass(frozen=True, slots=True)
class SourceAdapter:
    """Describes how to fetch and normalize one content platform.

    Tool results use the MCP text-content shape: `{"content": [{"type":
    "text", "text": "<json>"}]}` where the JSON object holds the item list
    under `items_key`.
    """

    name: str
    server: str
    tool: str
    items_key: str
    arguments: Mapping[str, Any] = field(default_factory=dict)
    title_field: str | None = None
    default_title: str = "Untitled"
    body_fields: tuple[str, ...] = ("content",)
    url_field: str = "url"
    published_field: str = "published"

    def parse_result(self, result: Any) -> list[dict[str, Any]]:
        if not isinstance(result, Mapping):
            return []
        content = result.get("content")
        if not content:
            return []
        first = content[0]
        text = first.get("text") if isinstance(first, Mapping) else None
        if not text:
            return []
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ToolProtocolError(f"{self.name}: tool returned non-JSON text content") from exc
        items = payload.get(self.items_key, []) if isinstance(payload, Mapping) else []
        return [item for item in items if isinstance(item, Mapping) and item.get("id") is not None]

    def to_document(self, item: Mapping[str, Any]) -> Document:
        original_id = str(item["id"])
        title = str(item.get(self.title_field) or self.default_title) if self.title_field else self.default_title
        body = next((str(item[key]) for key in self.body_fields if item.get(key)), "")
        url = str(item.get(self.url_field) or "")
        published = str(item.get(self.published_field) or "")
        return Document(
            doc_id=f"{self.name}:{original_id}",
            source_kind=self.name,
            title=title,
            raw_text=f"Title: {title}\n\nContent: {body}\n\nURL: {url}\n\nPublished: {published}",
            metadata={
                "source": self.name,
                "original_id": original_id,
                "url": url,
                "published_at": published,
            },
        )


BLOGGER = SourceAdapter(
    name="blogger",
    server="blogger-server",
    tool="get_blog_posts",
    items_key="posts",
    arguments={"maxResults": 25},
    title_field="title",
    default_title="Untitled Blog Post",
    body_fields=("content",),
    url_field="url",
    published_field="published",
)

FACEBOOK = SourceAdapter(
    name="facebook",
    server="facebook-server",
    tool="get_facebook_posts",
    items_key="posts",
    arguments={"limit": 25},
    default_title="Facebook Post",
    body_fields=("message", "story"),
    url_field="permalink_url",
    published_field="created_time",
)

INSTAGRAM = SourceAdapter(
    name="instagram",
    server="instagram-server",
    tool="get_instagram_media",
    items_key="media",
    arguments={"limit": 25},
    default_title="Instagram Post",
    body_fields=("caption",),
    url_field="permalink",
    published_field="timestamp",
)

DEFAULT_ADAPTERS: dict[str, SourceAdapter] = {
    adapter.name: adapter for adapter in (BLOGGER, FACEBOOK, INSTAGRAM)
}
