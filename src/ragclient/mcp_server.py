"""MCP stdio server exposing ragclient queries as tools.

Tools: rag_query, rag_collect, rag_count_tokens, rag_version. Each call is
appended as one JSON line to ``$RAGCLIENT_LOGDIR/ragclient_mcp.log``; answers
returned to the MCP client are trimmed to ``RAGCLIENT_TRIM_CHARS``.
"""
import asyncio
import inspect
import json
import logging
import os
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import mcp.types as types
from mcp.server import Server
from mcp.server.stdio import stdio_server

from .client import RAGClient
from .config import QueryOptions, load_env_defaults
from .errors import ExecutionError, RAGError
from .tokens import TokenCountOptions, count_tokens

logger = logging.getLogger(__name__)

# Env-first config with sensible defaults
DOC_DIR = os.environ.get("RAGCLIENT_DOC_DIR", os.getcwd())
LOG_DIR = os.environ.get("RAGCLIENT_LOGDIR", os.path.join(os.path.expanduser("~"), ".ragclient", "logs"))
TRIM_CHARS = int(os.environ.get("RAGCLIENT_TRIM_CHARS", "20000"))

_log_lock = threading.Lock()


def _ts() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def _trim(s: Optional[str], n: Optional[int] = None) -> str:
    n = TRIM_CHARS if n is None else n
    if not s:
        return ""
    return s if len(s) <= n else s[:n] + "\n... [trimmed]"


def _jlog(event: Dict[str, Any]) -> None:
    try:
        with _log_lock:
            os.makedirs(LOG_DIR, exist_ok=True)
            with open(os.path.join(LOG_DIR, "ragclient_mcp.log"), "a", encoding="utf-8") as f:
                f.write(json.dumps(event, ensure_ascii=False) + "\n")
    except OSError as e:
        logger.warning("could not write event log: %s", e)


def _client(doc_dir: Optional[str]) -> RAGClient:
    return RAGClient(load_env_defaults(doc_dir or DOC_DIR))


def rag_query(question: str, doc_dir: Optional[str] = None, output_format: Optional[str] = None,
              timeout: Optional[int] = None, agentic: Optional[bool] = None) -> Dict[str, Any]:
    options = QueryOptions(output_format=output_format, timeout=timeout, agentic=agentic)
    answer = _client(doc_dir).query(question, options)
    return {"ok": True, "answer": _trim(answer)}


def rag_collect(question: str, doc_dir: Optional[str] = None, timeout: Optional[int] = None) -> Dict[str, Any]:
    resp = _client(doc_dir).query_collect_messages(question, QueryOptions(timeout=timeout))
    return {
        "ok": True,
        "answer": _trim(resp.answer),
        "contexts": [_trim(c, 2000) for c in resp.contexts],
        "tokens": resp.tokens.to_dict(),
        "metadata": resp.metadata,
    }


def rag_count_tokens(file: str, tokenizer_path: Optional[str] = None) -> Dict[str, Any]:
    command_path = load_env_defaults(DOC_DIR).command_path
    result = count_tokens(file, TokenCountOptions(tokenizer_path=tokenizer_path, command_path=command_path))
    return {
        "ok": True,
        "files": [{"file": f.file, "characters": f.characters, "tokens": f.tokens} for f in result.files],
        "total_characters": result.total_characters,
        "total_tokens": result.total_tokens,
    }


def rag_version(doc_dir: Optional[str] = None) -> Dict[str, Any]:
    client = _client(doc_dir)
    available = client.check_availability()
    return {"ok": True, "available": available, "version": client.get_version() if available else "unknown"}


HANDLERS: Dict[str, Callable[..., Dict[str, Any]]] = {
    "rag_query": rag_query,
    "rag_collect": rag_collect,
    "rag_count_tokens": rag_count_tokens,
    "rag_version": rag_version,
}

_DOC_DIR_PROP = {"type": "string", "description": "Document directory (defaults to RAGCLIENT_DOC_DIR)"}

TOOLS = [
    types.Tool(
        name="rag_query",
        description="Answer a question from the documents; returns the full answer text.",
        inputSchema={
            "type": "object",
            "properties": {
                "question": {"type": "string"},
                "doc_dir": _DOC_DIR_PROP,
                "output_format": {"type": "string", "enum": ["text", "json"]},
                "timeout": {"type": "integer", "minimum": 1},
                "agentic": {"type": "boolean"},
            },
            "required": ["question"],
        },
    ),
    types.Tool(
        name="rag_collect",
        description="Answer a question and return answer, retrieved contexts and token usage.",
        inputSchema={
            "type": "object",
            "properties": {
                "question": {"type": "string"},
                "doc_dir": _DOC_DIR_PROP,
                "timeout": {"type": "integer", "minimum": 1},
            },
            "required": ["question"],
        },
    ),
    types.Tool(
        name="rag_count_tokens",
        description="Count characters and tokens in a file.",
        inputSchema={
            "type": "object",
            "properties": {"file": {"type": "string"}, "tokenizer_path": {"type": "string"}},
            "required": ["file"],
        },
    ),
    types.Tool(
        name="rag_version",
        description="Report whether auto-coder.rag is installed and its version.",
        inputSchema={"type": "object", "properties": {"doc_dir": _DOC_DIR_PROP}},
    ),
]


def dispatch(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    handler = HANDLERS.get(name)
    if handler is None:
        return {"ok": False, "error": f"unknown tool: {name}"}
    try:
        inspect.signature(handler).bind(**arguments)
    except TypeError as e:
        return {"ok": False, "error": f"bad arguments for {name}: {e}"}
    start = time.time()
    try:
        resp = handler(**arguments)
    except RAGError as e:
        resp = {"ok": False, "error": str(e), "kind": type(e).__name__}
        if isinstance(e, ExecutionError):
            resp["exit_code"] = e.exit_code
    _jlog({"ts": _ts(), "action": name, "ok": resp.get("ok"), "ms": int((time.time() - start) * 1000),
           "args": {k: v for k, v in arguments.items() if k != "question"}, "error": resp.get("error")})
    return resp


server = Server("ragclient")


@server.list_tools()
async def list_tools() -> List[types.Tool]:
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: Optional[Dict[str, Any]]) -> List[types.TextContent]:
    # subprocess calls block; keep them off the event loop
    resp = await asyncio.to_thread(dispatch, name, arguments or {})
    return [types.TextContent(type="text", text=json.dumps(resp, ensure_ascii=False))]


async def serve() -> None:
    _jlog({"ts": _ts(), "event": "server_start", "doc_dir": DOC_DIR})
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        _jlog({"ts": _ts(), "event": "server_stop", "reason": "KeyboardInterrupt"})


if __name__ == "__main__":
    main()
