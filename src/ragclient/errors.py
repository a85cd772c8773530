from typing import Optional


class RAGError(Exception):
    """Base error for everything raised by ragclient."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RAGError):
    """Configuration or options rejected before any process is spawned."""


class ExecutionError(RAGError):
    """The external process exited non-zero or was killed at its deadline."""

    def __init__(self, message: str, exit_code: int, output: str = "", timed_out: bool = False):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output
        self.timed_out = timed_out

    def __repr__(self) -> str:
        return f"ExecutionError(exit_code={self.exit_code}, timed_out={self.timed_out}, message={self.message!r})"


class MessageParseError(RAGError):
    """A protocol line is not a well-formed event."""

    def __init__(self, message: str, line: Optional[str] = None):
        super().__init__(message)
        self.line = line
