"""Decoder for the line-delimited JSON events emitted with ``--output_format stream-json``.

Each line is one object::

    {"event_type": "stage", "timestamp": "2024-05-01T10:00:00Z",
     "data": {"type": "retrieval", "message": "searching documents"}}

``parse_message`` maps it onto one dataclass per event kind. Payload keys the
client does not model are kept in ``extra`` so a message serializes back to
the same payload.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

from .errors import MessageParseError

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    input: int = 0
    generated: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(input=self.input + other.input, generated=self.generated + other.generated)

    @classmethod
    def from_dict(cls, raw: Any) -> "TokenUsage":
        if not isinstance(raw, dict):
            raise MessageParseError(f"tokens must be an object, got {type(raw).__name__}")
        try:
            return cls(input=int(raw.get("input", 0) or 0), generated=int(raw.get("generated", 0) or 0))
        except (TypeError, ValueError, OverflowError) as e:
            raise MessageParseError(f"invalid token counts: {e}") from e

    def to_dict(self) -> Dict[str, int]:
        return {"input": self.input, "generated": self.generated}


@dataclass
class Message:
    event_type: ClassVar[str] = ""
    modeled_keys: ClassVar[Tuple[str, ...]] = ()

    timestamp: Optional[datetime] = None
    tokens: Optional[TokenUsage] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_data(cls, data: Dict[str, Any], timestamp: Optional[datetime]) -> "Message":
        skip = set(cls.modeled_keys) | {"tokens"}
        tokens = TokenUsage.from_dict(data["tokens"]) if data.get("tokens") is not None else None
        extra = {k: v for k, v in data.items() if k not in skip}
        return cls(timestamp=timestamp, tokens=tokens, extra=extra, **cls._fields_from(data))

    @classmethod
    def _fields_from(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    def _fields_to(self) -> Dict[str, Any]:
        return {}

    def payload(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update(self._fields_to())
        if self.tokens is not None:
            data["tokens"] = self.tokens.to_dict()
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "data": self.payload(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass
class StartMessage(Message):
    event_type: ClassVar[str] = "start"


@dataclass
class StageMessage(Message):
    event_type: ClassVar[str] = "stage"
    modeled_keys: ClassVar[Tuple[str, ...]] = ("type", "message")

    stage_type: str = ""
    message: str = ""

    @classmethod
    def _fields_from(cls, data):
        return {"stage_type": str(data.get("type", "")), "message": str(data.get("message", ""))}

    def _fields_to(self):
        return {"type": self.stage_type, "message": self.message}


@dataclass
class ContentMessage(Message):
    event_type: ClassVar[str] = "content"
    modeled_keys: ClassVar[Tuple[str, ...]] = ("content",)

    content: str = ""

    @classmethod
    def _fields_from(cls, data):
        content = data.get("content", "")
        if not isinstance(content, str):
            raise MessageParseError("content must be a string")
        return {"content": content}

    def _fields_to(self):
        return {"content": self.content}


@dataclass
class ContextsMessage(Message):
    event_type: ClassVar[str] = "contexts"
    modeled_keys: ClassVar[Tuple[str, ...]] = ("contexts",)

    contexts: List[str] = field(default_factory=list)

    @classmethod
    def _fields_from(cls, data):
        contexts = data.get("contexts", [])
        if not isinstance(contexts, list):
            raise MessageParseError("contexts must be a list")
        return {"contexts": [c if isinstance(c, str) else json.dumps(c, ensure_ascii=False) for c in contexts]}

    def _fields_to(self):
        return {"contexts": list(self.contexts)}


@dataclass
class EndMessage(Message):
    event_type: ClassVar[str] = "end"
    modeled_keys: ClassVar[Tuple[str, ...]] = ("metadata",)

    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def _fields_from(cls, data):
        metadata = data.get("metadata", {})
        if not isinstance(metadata, dict):
            raise MessageParseError("metadata must be an object")
        return {"metadata": dict(metadata)}

    def _fields_to(self):
        return {"metadata": dict(self.metadata)}


MESSAGE_TYPES: Dict[str, Type[Message]] = {
    cls.event_type: cls
    for cls in (StartMessage, StageMessage, ContentMessage, ContextsMessage, EndMessage)
}


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    # an unreadable timestamp never costs us the event itself
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip()
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("unparsable event timestamp %r", raw)
        return None


def parse_message(line: str) -> Message:
    try:
        obj = json.loads(line)
    except (ValueError, RecursionError) as e:
        raise MessageParseError(f"invalid JSON: {e}", line=line) from e
    if not isinstance(obj, dict):
        raise MessageParseError("event must be a JSON object", line=line)

    event_type = obj.get("event_type")
    cls = MESSAGE_TYPES.get(event_type) if isinstance(event_type, str) else None
    if cls is None:
        raise MessageParseError(f"unknown event_type: {event_type!r}", line=line)

    data = obj.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MessageParseError("data must be a JSON object", line=line)

    try:
        return cls.from_data(data, _parse_timestamp(obj.get("timestamp")))
    except MessageParseError as e:
        e.line = line
        raise
    except (TypeError, ValueError, OverflowError, RecursionError) as e:
        raise MessageParseError(f"invalid event data: {e}", line=line) from e
