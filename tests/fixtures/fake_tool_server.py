"""Line-delimited JSON-RPC worker used by the supervisor tests.

Modes (first argument): `serve` (default) announces readiness and answers
calls, `exit` dies with status 3 before readiness, `silent` never announces
readiness.
"""

import json
import sys
import threading

_write_lock = threading.Lock()
_held: list[dict] = []

BLOG_POSTS = [
    {
        "id": "p1",
        "title": "Writing Daily",
        "content": "I write every morning before breakfast.",
        "url": "https://blog.example/p1",
        "published": "2024-03-01T08:00:00Z",
    },
    {
        "id": "p2",
        "title": "Editing",
        "content": "Editing is where the story takes shape.",
        "url": "https://blog.example/p2",
        "published": "2024-03-08T08:00:00Z",
    },
]


def send(message: dict) -> None:
    with _write_lock:
        sys.stdout.write(json.dumps(message) + "\n")
        sys.stdout.flush()


def reply(call_id, result) -> None:
    send({"jsonrpc": "2.0", "id": call_id, "result": result})


def fail(call_id, code: int, message: str) -> None:
    send({"jsonrpc": "2.0", "id": call_id, "error": {"code": code, "message": message}})


def handle(request: dict) -> None:
    call_id = request.get("id")
    if request.get("method") == "tools/list":
        reply(call_id, {"tools": [{"name": name} for name in sorted(TOOLS)]})
        return
    params = request.get("params") or {}
    handler = TOOLS.get(params.get("name"))
    if handler is None:
        fail(call_id, -32601, f"Unknown tool: {params.get('name')}")
        return
    handler(call_id, params.get("arguments") or {})


def tool_echo(call_id, arguments) -> None:
    reply(call_id, {"echoed": arguments})


def tool_hold(call_id, arguments) -> None:
    _held.append({"id": call_id, "tag": arguments["tag"]})
    if len(_held) < int(arguments["batch"]):
        return
    for held in reversed(_held):
        reply(held["id"], {"tag": held["tag"]})
    _held.clear()


def tool_slow(call_id, arguments) -> None:
    timer = threading.Timer(float(arguments["delay"]), reply, args=(call_id, {"slow": True}))
    timer.daemon = True
    timer.start()


def tool_fail(call_id, arguments) -> None:
    fail(call_id, -32000, arguments.get("message", "boom"))


def tool_garbage(call_id, arguments) -> None:
    with _write_lock:
        sys.stdout.write("this is not json\n")
        sys.stdout.flush()
    reply(call_id, {"ok": True})


def tool_never(call_id, arguments) -> None:
    return None


def tool_crash(call_id, arguments) -> None:
    sys.stdout.flush()
    sys.exit(int(arguments.get("code", 5)))


def tool_get_blog_posts(call_id, arguments) -> None:
    posts = BLOG_POSTS[: int(arguments.get("maxResults", 25))]
    reply(call_id, {"content": [{"type": "text", "text": json.dumps({"posts": posts})}]})


TOOLS = {
    "echo": tool_echo,
    "hold": tool_hold,
    "slow": tool_slow,
    "fail": tool_fail,
    "garbage": tool_garbage,
    "never": tool_never,
    "crash": tool_crash,
    "get_blog_posts": tool_get_blog_posts,
}


def main() -> None:
    mode = sys.argv[1] if len(sys.argv) > 1 else "serve"
    if mode == "exit":
        sys.stderr.write("fatal: missing credentials\n")
        sys.stderr.flush()
        sys.exit(3)
    if mode == "silent":
        while sys.stdin.readline():
            pass
        return

    sys.stderr.write("Fake MCP server running on stdio\n")
    sys.stderr.flush()
    while True:
        line = sys.stdin.readline()
        if not line:
            return
        if not line.strip():
            continue
        handle(json.loads(line))


if __name__ == "__main__":
    main()
