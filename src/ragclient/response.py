from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .messages import ContentMessage, ContextsMessage, EndMessage, Message, TokenUsage


@dataclass(frozen=True)
class RAGResponse:
    success: bool
    answer: str = ""
    contexts: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    tokens: TokenUsage = field(default_factory=TokenUsage)
    error: Optional[str] = None


class ResponseAggregator:
    """Folds a message stream into a RAGResponse, in arrival order."""

    def __init__(self) -> None:
        self._parts: List[str] = []
        self._contexts: List[str] = []
        self._tokens = TokenUsage()
        self._metadata: Dict[str, Any] = {}

    def add(self, message: Message) -> None:
        if isinstance(message, ContentMessage):
            self._parts.append(message.content)
        elif isinstance(message, ContextsMessage):
            self._contexts.extend(message.contexts)
        elif isinstance(message, EndMessage):
            self._metadata = dict(message.metadata)
        # any kind may report usage; each message is counted once
        if message.tokens is not None:
            self._tokens = self._tokens + message.tokens

    def extend(self, messages: Iterable[Message]) -> "ResponseAggregator":
        for message in messages:
            self.add(message)
        return self

    def build(self) -> RAGResponse:
        return RAGResponse(
            success=True,
            answer="".join(self._parts),
            contexts=list(self._contexts),
            metadata=dict(self._metadata),
            tokens=TokenUsage(self._tokens.input, self._tokens.generated),
        )
