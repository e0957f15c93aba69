"""
Scripted MCP server for tests. Standard library only.

    python fake_server.py MODE [LOGFILE]

Every line received is appended to LOGFILE when given.

Modes:
    normal       handshake; tools/list returns TOOLS; tools/call stamps the id it saw
    reject       initialize answered with an RPC error
    exit-after   handshake, then exits on the next request without answering
    garbage      handshake, then answers every request with a non-JSON line
    silent       handshake, then never answers again
    stubborn     like silent, but ignores SIGTERM and stdin closing
    rpc-errors   handshake; tools/list, tools/call and resources/list answer errors
    slow-init    sleeps before answering initialize
    bad-bytes    answers the first request after the handshake with non-UTF-8 bytes
"""

import json
import signal
import sys
import time

TOOLS = [{"name": "ping", "description": "Replies with pong", "inputSchema": {}}]
RESOURCES = [
    {
        "uri": "file:///tmp/notes.txt",
        "name": "notes",
        "description": "Scratch notes",
        "mimeType": "text/plain",
    }
]


def send(message):
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def result(request_id, value):
    send({"jsonrpc": "2.0", "id": request_id, "result": value})


def error(request_id, code, message):
    send({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}})


def main():
    mode = sys.argv[1] if len(sys.argv) > 1 else "normal"
    log_path = sys.argv[2] if len(sys.argv) > 2 else None
    if mode == "stubborn":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    initialized = False
    mangled = False
    for line in sys.stdin:
        if log_path:
            with open(log_path, "a") as log:
                log.write(line)
        message = json.loads(line)
        request_id = message.get("id")
        method = message.get("method")

        if request_id is None:
            continue

        if method == "initialize":
            if mode == "reject":
                error(request_id, -32600, "unsupported client")
                continue
            if mode == "slow-init":
                time.sleep(0.5)
            result(request_id, {
                "protocolVersion": message["params"]["protocolVersion"],
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "fake", "version": "0"},
            })
            initialized = True
            continue

        if not initialized:
            error(request_id, -32002, "not initialized")
            continue
        if mode == "exit-after":
            sys.exit(0)
        if mode in ("silent", "stubborn"):
            continue
        if mode == "garbage":
            sys.stdout.write("this is not json\n")
            sys.stdout.flush()
            continue
        if mode == "bad-bytes" and not mangled:
            mangled = True
            sys.stdout.flush()
            sys.stdout.buffer.write(b"\xff\xfe garbage\n")
            sys.stdout.buffer.flush()
            continue
        if mode == "rpc-errors":
            error(request_id, -32603, f"{method} exploded")
            continue

        if method == "tools/list":
            result(request_id, {"tools": TOOLS})
        elif method == "resources/list":
            result(request_id, {"resources": RESOURCES})
        elif method == "tools/call":
            params = message.get("params") or {}
            result(request_id, {
                "observed_id": request_id,
                "name": params.get("name"),
                "arguments": params.get("arguments"),
            })
        else:
            error(request_id, -32601, f"Unknown method: {method}")

    if mode == "stubborn":
        # Outlive stdin closing too, so only SIGKILL ends us
        time.sleep(60)


if __name__ == "__main__":
    main()
