"""Line-delimited JSON-RPC framing for tool-provider workers.

Requests and responses are single UTF-8 JSON objects terminated by a newline:

    {"jsonrpc": "2.0", "id": 7, "method": "tools/call",
     "params": {"name": "get_blog_posts", "arguments": {"maxResults": 25}}}
    {"jsonrpc": "2.0", "id": 7, "result": {...}}
    {"jsonrpc": "2.0", "id": 7, "error": {"message": "..."}}
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rag_engine.errors import ToolProtocolError

TOOLS_CALL = "tools/call"
TOOLS_LIST = "tools/list"


class ToolCallParams(BaseModel):
    name: str = Field(min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


class RpcRequest(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"
    id: int = Field(ge=1)
    method: str = Field(min_length=1)
    params: dict[str, Any] | None = None


class RpcError(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: str = "Tool call failed"
    code: int | None = None
    data: Any = None


class RpcResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | str | None = None
    result: Any = None
    error: RpcError | None = None


def encode_request(request: RpcRequest) -> bytes:
    """Serialize a request as one newline-terminated UTF-8 line."""

    exclude = {"params"} if request.params is None else None
    return (request.model_dump_json(exclude=exclude) + "\n").encode("utf-8")


def decode_response(line: bytes | str) -> RpcResponse:
    """Parse one output line; raises `ToolProtocolError` when malformed."""

    text = line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ToolProtocolError(f"Malformed response line: {text[:200]!r}") from exc
    if not isinstance(payload, dict):
        raise ToolProtocolError(f"Response is not an object: {text[:200]!r}")
    try:
        return RpcResponse.model_validate(payload)
    except ValidationError as exc:
        raise ToolProtocolError(f"Invalid response shape: {exc.error_count()} errors") from exc


def tool_call_request(call_id: int, name: str, arguments: dict[str, Any] | None = None) -> RpcRequest:
    params = ToolCallParams(name=name, arguments=arguments or {})
    return RpcRequest(id=call_id, method=TOOLS_CALL, params=params.model_dump())
