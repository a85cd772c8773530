import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .command import merge_env
from .config import DEFAULT_COMMAND
from .errors import ExecutionError, RAGError
from .process import run_command

logger = logging.getLogger(__name__)

DEFAULT_COUNT_TIMEOUT = 60


@dataclass
class TokenCountOptions:
    tokenizer_path: Optional[str] = None
    timeout: int = DEFAULT_COUNT_TIMEOUT
    envs: Optional[Dict[str, str]] = None
    command_path: str = DEFAULT_COMMAND


@dataclass
class TokenCountFile:
    file: str
    characters: int
    tokens: int


@dataclass
class TokenCountResult:
    files: List[TokenCountFile] = field(default_factory=list)
    total_characters: int = 0
    total_tokens: int = 0
    raw_output: str = ""


def _require_int(obj: Dict[str, Any], key: str) -> int:
    value = obj.get(key)
    # bool is an int subclass but never a count
    if isinstance(value, bool) or not isinstance(value, int):
        raise RAGError(f"Token count output field {key!r} must be an integer, got {value!r}")
    return value


def parse_token_count_output(output: str) -> TokenCountResult:
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise RAGError(f"Failed to parse JSON output: {e}. Output was: {output[:200]}") from e
    if not isinstance(data, dict):
        raise RAGError(f"Token count output must be a JSON object. Output was: {output[:200]}")

    raw_files = data.get("files")
    if not isinstance(raw_files, list):
        raise RAGError("Token count output is missing the 'files' list")

    files: List[TokenCountFile] = []
    for entry in raw_files:
        if not isinstance(entry, dict) or not isinstance(entry.get("file"), str):
            raise RAGError(f"Malformed file entry in token count output: {entry!r}")
        files.append(
            TokenCountFile(
                file=entry["file"],
                characters=_require_int(entry, "characters"),
                tokens=_require_int(entry, "tokens"),
            )
        )

    return TokenCountResult(
        files=files,
        total_characters=_require_int(data, "totalCharacters"),
        total_tokens=_require_int(data, "totalTokens"),
        raw_output=output,
    )


def count_tokens(file_path: Union[str, Path], options: Optional[TokenCountOptions] = None) -> TokenCountResult:
    """Count characters and tokens of a file with ``auto-coder.rag tools count``.

    Needs no client or document directory. Raises ExecutionError when the
    command fails or times out, RAGError when it cannot be started or prints
    something other than the expected JSON summary.
    """
    opts = options or TokenCountOptions()
    timeout = opts.timeout or DEFAULT_COUNT_TIMEOUT

    cmd = [opts.command_path, "tools", "count", "--file", str(file_path), "--output_format", "json"]
    if opts.tokenizer_path:
        cmd += ["--tokenizer_path", opts.tokenizer_path]

    result = run_command(cmd, env=merge_env(os.environ, opts.envs), timeout=timeout, merge_stderr=False)
    if result.returncode != 0:
        output = result.output + result.stderr
        raise ExecutionError(
            f"Token count failed (exit code {result.returncode}): {output.strip()}",
            exit_code=result.returncode,
            output=output,
        )

    counted = parse_token_count_output(result.output.strip())
    logger.debug("counted %d tokens across %d file(s)", counted.total_tokens, len(counted.files))
    return counted
