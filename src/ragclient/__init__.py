"""ragclient - Python client for the auto-coder.rag command-line RAG tool.

Builds ``auto-coder.rag run`` invocations from a typed config, feeds the
question on stdin and turns the output back into text, line streams or
structured pipeline events. Environment variables and per-call options
override code defaults.
"""
import logging

from .client import RAGClient, collect_lines
from .config import QueryOptions, RAGConfig, load_env_defaults
from .documents import TextDocument
from .errors import ExecutionError, MessageParseError, RAGError, ValidationError
from .messages import (
    ContentMessage,
    ContextsMessage,
    EndMessage,
    Message,
    StageMessage,
    StartMessage,
    TokenUsage,
    parse_message,
)
from .response import RAGResponse, ResponseAggregator
from .stream import QueryStream
from .tokens import TokenCountFile, TokenCountOptions, TokenCountResult, count_tokens

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "RAGClient",
    "collect_lines",
    "RAGConfig",
    "QueryOptions",
    "load_env_defaults",
    "TextDocument",
    "RAGError",
    "ValidationError",
    "ExecutionError",
    "MessageParseError",
    "Message",
    "StartMessage",
    "StageMessage",
    "ContentMessage",
    "ContextsMessage",
    "EndMessage",
    "TokenUsage",
    "parse_message",
    "RAGResponse",
    "ResponseAggregator",
    "QueryStream",
    "count_tokens",
    "TokenCountOptions",
    "TokenCountResult",
    "TokenCountFile",
]
