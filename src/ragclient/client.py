import logging
import shutil
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from .command import build_command, build_env, resolve_timeout
from .config import STREAM_JSON, QueryOptions, RAGConfig
from .documents import DEFAULT_FILENAME, TextDocument, stage_text, stage_texts
from .errors import ExecutionError, MessageParseError, RAGError
from .messages import Message, parse_message
from .process import run_command
from .response import RAGResponse, ResponseAggregator
from .stream import SKIP, QueryStream, start_stream

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 60


class RAGClient:
    """Runs queries against a document directory through ``auto-coder.rag run``.

    A client only holds its config; every call spawns its own process, so one
    client can serve many queries, including concurrent ones.
    """

    def __init__(self, config: RAGConfig):
        config.validate()
        self.config = config

    @classmethod
    def from_doc_dir(cls, doc_dir: Union[str, Path], **overrides: Any) -> "RAGClient":
        return cls(RAGConfig(doc_dir=str(doc_dir)).with_overrides(**overrides))

    @classmethod
    def from_text(
        cls,
        text: str,
        filename: str = DEFAULT_FILENAME,
        temp_dir: Optional[Union[str, Path]] = None,
        **overrides: Any,
    ) -> "RAGClient":
        """Client over a directory holding ``text`` as one document.

        The directory is not removed automatically; see ``doc_dir``.
        """
        return cls.from_doc_dir(stage_text(text, filename, temp_dir), **overrides)

    @classmethod
    def from_texts(
        cls,
        documents: Sequence[TextDocument],
        temp_dir: Optional[Union[str, Path]] = None,
        **overrides: Any,
    ) -> "RAGClient":
        return cls.from_doc_dir(stage_texts(documents, temp_dir), **overrides)

    @property
    def doc_dir(self) -> str:
        return self.config.doc_dir

    def _prepare(self, options: Optional[QueryOptions]):
        opts = options or QueryOptions()
        opts.validate()
        return build_command(self.config, opts), build_env(self.config, opts), resolve_timeout(self.config, opts)

    def query(self, question: str, options: Optional[QueryOptions] = None) -> str:
        """Run a query to completion and return the stripped answer text."""
        cmd, env, timeout = self._prepare(options)
        result = run_command(cmd, env=env, input_text=question, timeout=timeout)
        if result.returncode != 0:
            raise ExecutionError(
                f"Command failed (exit code {result.returncode}): {result.output.strip()}",
                exit_code=result.returncode,
                output=result.output,
            )
        return result.output.strip()

    def query_stream(self, question: str, options: Optional[QueryOptions] = None) -> "QueryStream[str]":
        """Stream stdout lines as the process prints them."""
        cmd, env, timeout = self._prepare(options)
        return start_stream(cmd, env, question, timeout=timeout)

    def query_stream_messages(self, question: str, options: Optional[QueryOptions] = None) -> "QueryStream[Message]":
        """Stream protocol messages; lines that do not parse are dropped."""
        opts = (options or QueryOptions()).with_output_format(STREAM_JSON)
        cmd, env, timeout = self._prepare(opts)
        stream: "QueryStream[Message]" = QueryStream()

        def decode(line: str) -> object:
            line = line.strip()
            if not line:
                return SKIP
            try:
                return parse_message(line)
            except MessageParseError as e:
                stream.skipped_lines += 1
                logger.debug("skipping protocol line: %s", e)
                return SKIP

        return start_stream(cmd, env, question, timeout=timeout, transform=decode, stream=stream)

    def query_collect_messages(self, question: str, options: Optional[QueryOptions] = None) -> RAGResponse:
        aggregator = ResponseAggregator()
        with self.query_stream_messages(question, options) as stream:
            for message in stream:
                aggregator.add(message)
            stream.raise_for_error()
        return aggregator.build()

    def get_version(self) -> str:
        try:
            result = run_command([self.config.command_path, "--version"], env=build_env(self.config), timeout=PROBE_TIMEOUT, merge_stderr=False)
        except RAGError as e:
            logger.debug("version probe failed: %s", e)
            return "unknown"
        if result.returncode != 0:
            return "unknown"
        return result.output.strip()

    def check_availability(self) -> bool:
        command = self.config.command_path
        if shutil.which(command) is None:
            logger.debug("%s not found on PATH", command)
            return False
        try:
            result = run_command([command, "--help"], env=build_env(self.config), timeout=PROBE_TIMEOUT, merge_stderr=False)
        except RAGError as e:
            logger.debug("availability probe failed: %s", e)
            return False
        return result.returncode == 0


def collect_lines(stream: "QueryStream[str]") -> str:
    """Drain a line stream into one string, raising the stream's error if any."""
    parts = []
    with stream:
        for line in stream:
            parts.append(line + "\n")
        stream.raise_for_error()
    return "".join(parts)
