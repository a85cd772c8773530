import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from .errors import ValidationError

ENV_COMMAND = "RAGCLIENT_COMMAND"
ENV_MODEL = "RAGCLIENT_MODEL"
ENV_TIMEOUT = "RAGCLIENT_TIMEOUT"
ENV_PRODUCT_MODE = "RAGCLIENT_PRODUCT_MODE"

DEFAULT_COMMAND = "auto-coder.rag"
DEFAULT_MODEL = "v3_chat"
DEFAULT_TIMEOUT = 300
DEFAULT_CONTEXT_WINDOW_LIMIT = 56000
DEFAULT_FULL_TEXT_RATIO = 0.7
DEFAULT_SEGMENT_RATIO = 0.2
DEFAULT_DOC_FILTER_RELEVANCE = 0

PRODUCT_MODES = ("lite", "pro")
OUTPUT_FORMATS = ("text", "json", "stream-json")
STREAM_JSON = "stream-json"

# passed to auto-coder.rag as integers; a fraction would be truncated
WHOLE_NUMBER_FIELDS = ("rag_context_window_limit", "rag_doc_filter_relevance")


def _check_whole_numbers(obj: Any) -> None:
    for name in WHOLE_NUMBER_FIELDS:
        value = getattr(obj, name)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise ValidationError(f"{name} must be an integer: {value!r}")


@dataclass(frozen=True)
class RAGConfig:
    """Session settings for one document directory.

    Immutable and hashable; ``envs`` is copied into a read-only mapping.
    """

    doc_dir: str
    command_path: str = DEFAULT_COMMAND
    model: Optional[str] = DEFAULT_MODEL
    model_file: Optional[str] = None
    timeout: int = DEFAULT_TIMEOUT

    # retrieval tuning, always passed on the command line
    rag_context_window_limit: int = DEFAULT_CONTEXT_WINDOW_LIMIT
    full_text_ratio: float = DEFAULT_FULL_TEXT_RATIO
    segment_ratio: float = DEFAULT_SEGMENT_RATIO
    rag_doc_filter_relevance: int = DEFAULT_DOC_FILTER_RELEVANCE

    agentic: bool = False
    product_mode: str = "lite"

    enable_hybrid_index: bool = False
    disable_auto_window: bool = False
    disable_segment_reorder: bool = False

    recall_model: Optional[str] = None
    chunk_model: Optional[str] = None
    qa_model: Optional[str] = None
    emb_model: Optional[str] = None
    agentic_model: Optional[str] = None
    context_prune_model: Optional[str] = None

    tokenizer_path: Optional[str] = None
    required_exts: Optional[str] = None
    ray_address: Optional[str] = None

    envs: Mapping[str, str] = field(default_factory=dict)
    windows_utf8_env: bool = False

    def __post_init__(self):
        object.__setattr__(self, "envs", MappingProxyType(dict(self.envs or {})))

    def __hash__(self):
        return hash(tuple(
            frozenset(v.items()) if isinstance(v, Mapping) else v
            for v in (getattr(self, f.name) for f in fields(self))
        ))

    @staticmethod
    def from_env(doc_dir: Union[str, Path]) -> "RAGConfig":
        timeout = int(os.getenv(ENV_TIMEOUT) or DEFAULT_TIMEOUT)
        return RAGConfig(
            doc_dir=str(doc_dir),
            command_path=os.getenv(ENV_COMMAND) or DEFAULT_COMMAND,
            model=os.getenv(ENV_MODEL) or DEFAULT_MODEL,
            timeout=timeout,
            product_mode=os.getenv(ENV_PRODUCT_MODE) or "lite",
        )

    def with_overrides(self, **overrides: Any) -> "RAGConfig":
        """Return a copy with every non-None keyword applied."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValidationError(f"Unknown config field(s): {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "doc_dir" in changes:
            changes["doc_dir"] = str(changes["doc_dir"])
        return replace(self, **changes) if changes else self

    def validate(self) -> None:
        doc_dir = Path(self.doc_dir)
        if not doc_dir.is_dir():
            raise ValidationError(f"Document directory does not exist: {self.doc_dir}")
        if not os.access(doc_dir, os.R_OK | os.X_OK):
            raise ValidationError(f"Document directory is not readable: {self.doc_dir}")
        if self.product_mode not in PRODUCT_MODES:
            raise ValidationError(f"Unsupported product mode: {self.product_mode}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValidationError(f"Timeout must be positive: {self.timeout}")
        _check_whole_numbers(self)


@dataclass(frozen=True)
class QueryOptions:
    """Per-call overrides. A None field falls back to the session config."""

    output_format: Optional[str] = None
    model: Optional[str] = None
    model_file: Optional[str] = None
    agentic: Optional[bool] = None
    product_mode: Optional[str] = None
    timeout: Optional[int] = None
    envs: Optional[Dict[str, str]] = None

    rag_context_window_limit: Optional[int] = None
    full_text_ratio: Optional[float] = None
    segment_ratio: Optional[float] = None
    rag_doc_filter_relevance: Optional[int] = None

    def with_output_format(self, output_format: str) -> "QueryOptions":
        return replace(self, output_format=output_format)

    def validate(self) -> None:
        if self.output_format is not None and self.output_format not in OUTPUT_FORMATS:
            raise ValidationError(f"Unsupported output format: {self.output_format}")
        if self.product_mode is not None and self.product_mode not in PRODUCT_MODES:
            raise ValidationError(f"Unsupported product mode: {self.product_mode}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValidationError(f"Timeout must be positive: {self.timeout}")
        _check_whole_numbers(self)


def load_env_defaults(doc_dir: Union[str, Path]) -> RAGConfig:
    return RAGConfig.from_env(doc_dir)
