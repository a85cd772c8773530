import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import List, Mapping, Optional

from .errors import ExecutionError, RAGError

logger = logging.getLogger(__name__)

# same code timeout(1) reports when it kills a command
TIMEOUT_EXIT_CODE = 124


@dataclass
class CommandResult:
    returncode: int
    output: str
    stderr: str = ""
    ms: int = 0


def failure_message(command: str, returncode: int, stderr: str = "") -> str:
    msg = f"Command failed (exit code {returncode}, command: {command})"
    if stderr:
        msg += f"\nstderr: {stderr}"
    return msg


def run_command(
    cmd: List[str],
    env: Optional[Mapping[str, str]] = None,
    input_text: Optional[str] = None,
    timeout: Optional[float] = None,
    merge_stderr: bool = True,
) -> CommandResult:
    """Run cmd to completion and capture its output.

    With merge_stderr the result's ``output`` holds stdout and stderr
    interleaved as the process wrote them. On timeout the process is killed and
    ExecutionError is raised with whatever it printed so far. A command that
    cannot be started raises RAGError. A non-zero exit is returned, not raised.
    """
    logger.debug("exec: %s", shlex.join(cmd))
    start = time.time()
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
            env=dict(env) if env is not None else None,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as e:
        raise RAGError(f"Failed to start command {cmd[0]}: {e}") from e

    try:
        out, err = proc.communicate(input=input_text, timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        out, _ = proc.communicate()
        logger.warning("%s killed after %ss timeout", cmd[0], timeout)
        raise ExecutionError(
            f"Command timed out after {timeout}s (command: {cmd[0]})",
            exit_code=TIMEOUT_EXIT_CODE,
            output=out or "",
            timed_out=True,
        )
    except OSError as e:
        proc.kill()
        proc.wait()
        raise RAGError(f"I/O error while running {cmd[0]}: {e}") from e

    ms = int((time.time() - start) * 1000)
    logger.debug("%s exited with %d in %dms", cmd[0], proc.returncode, ms)
    return CommandResult(returncode=proc.returncode, output=out or "", stderr=err or "", ms=ms)
