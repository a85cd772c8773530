"""Duplex plumbing for streaming queries.

Every streaming call runs three threads next to the caller: one writes the
question to stdin and closes it, one drains stderr, and the pump reads stdout
line by line into a bounded queue. The caller iterates a QueryStream; once the
iteration ends, ``QueryStream.error`` holds the single error (if any) the pump
reported.
"""
import logging
import queue
import shlex
import subprocess
import threading
from typing import Callable, Generic, Iterator, List, Mapping, Optional, TypeVar

from .errors import ExecutionError, RAGError
from .process import TIMEOUT_EXIT_CODE, failure_message

logger = logging.getLogger(__name__)

T = TypeVar("T")

STREAM_BUFFER_SIZE = 100

_CLOSED = object()
SKIP = object()


class QueryStream(Generic[T]):
    """Finite, ordered, single-pass sequence fed by a subprocess."""

    def __init__(self, maxsize: int = STREAM_BUFFER_SIZE):
        self._items: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._errors: "queue.Queue[RAGError]" = queue.Queue(maxsize=1)
        self._error: Optional[RAGError] = None
        self._exhausted = False
        self._finished = threading.Event()
        self._cancelled = threading.Event()
        self._proc: Optional[subprocess.Popen] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.skipped_lines = 0

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        if self._exhausted:
            raise StopIteration
        item = self._items.get()
        if item is _CLOSED:
            self._exhausted = True
            raise StopIteration
        return item  # type: ignore[return-value]

    def __enter__(self) -> "QueryStream[T]":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    @property
    def error(self) -> Optional[RAGError]:
        """The stream's error. Settled once iteration has ended."""
        if self._error is None:
            try:
                self._error = self._errors.get_nowait()
            except queue.Empty:
                pass
        return self._error

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._finished.wait(timeout)

    def raise_for_error(self) -> None:
        err = self.error
        if err is not None:
            raise err

    def close(self) -> None:
        """Stop consuming: kill the process if it still runs and end iteration."""
        self._exhausted = True
        # the pump may still be waiting to hand over the end marker
        self._cancelled.set()
        with self._lock:
            proc = self._proc
        if proc is not None and proc.poll() is None:
            logger.debug("stream closed early, killing pid %s", proc.pid)
            proc.kill()
        # release whatever was buffered but never read
        while True:
            try:
                self._items.get_nowait()
            except queue.Empty:
                break

    # producer side

    def _attach(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._proc = proc
        if self._cancelled.is_set():
            proc.kill()

    def _publish(self, item: object) -> bool:
        while not self._cancelled.is_set():
            try:
                self._items.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _finish(self, error: Optional[RAGError] = None) -> None:
        if error is not None:
            self._errors.put_nowait(error)
        self._finished.set()
        self._publish(_CLOSED)


def _write_input(stdin, text: str) -> None:
    try:
        stdin.write(text)
        stdin.flush()
    except (BrokenPipeError, OSError, ValueError) as e:
        # the process quit or stopped reading; its exit status tells the story
        logger.debug("stdin write stopped: %s", e)
    finally:
        try:
            stdin.close()
        except (BrokenPipeError, OSError):
            pass


def _drain(pipe, sink: List[str]) -> None:
    try:
        sink.append(pipe.read())
    except (OSError, ValueError) as e:
        logger.debug("stderr drain stopped: %s", e)


def _expire(proc: subprocess.Popen, expired: threading.Event) -> None:
    if proc.poll() is None:
        expired.set()
        proc.kill()


def _pump(
    stream: QueryStream,
    cmd: List[str],
    env: Optional[Mapping[str, str]],
    question: str,
    timeout: Optional[float],
    transform: Callable[[str], object],
) -> None:
    logger.debug("stream exec: %s", shlex.join(cmd))
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=dict(env) if env is not None else None,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as e:
        stream._finish(RAGError(f"Failed to start command {cmd[0]}: {e}"))
        return
    stream._attach(proc)

    stderr_chunks: List[str] = []
    writer = threading.Thread(target=_write_input, args=(proc.stdin, question), name="ragclient-stdin", daemon=True)
    drainer = threading.Thread(target=_drain, args=(proc.stderr, stderr_chunks), name="ragclient-stderr", daemon=True)
    writer.start()
    drainer.start()

    expired = threading.Event()
    watchdog = None
    if timeout:
        watchdog = threading.Timer(timeout, _expire, args=(proc, expired))
        watchdog.daemon = True
        watchdog.start()

    error: Optional[RAGError] = None
    try:
        for raw in proc.stdout:
            item = transform(raw.rstrip("\r\n"))
            if item is SKIP:
                continue
            if not stream._publish(item):
                break
    except (OSError, ValueError) as e:
        error = RAGError(f"Failed to read output: {e}")
        proc.kill()
    except Exception as e:  # noqa: BLE001
        error = RAGError(f"Stream processing failed: {e}")
        proc.kill()

    returncode = proc.wait()
    if watchdog is not None:
        watchdog.cancel()
    writer.join()
    drainer.join()
    proc.stdout.close()

    stderr_text = "".join(stderr_chunks).strip()
    if error is None and not stream._cancelled.is_set():
        if expired.is_set():
            error = ExecutionError(
                f"Command timed out after {timeout}s (command: {cmd[0]})",
                exit_code=TIMEOUT_EXIT_CODE,
                output=stderr_text,
                timed_out=True,
            )
        elif returncode != 0:
            error = ExecutionError(failure_message(cmd[0], returncode, stderr_text), exit_code=returncode, output=stderr_text)
    logger.debug("stream %s exited with %d (skipped %d lines)", cmd[0], returncode, stream.skipped_lines)
    stream._finish(error)


def start_stream(
    cmd: List[str],
    env: Optional[Mapping[str, str]],
    question: str,
    timeout: Optional[float] = None,
    transform: Optional[Callable[[str], object]] = None,
    stream: Optional[QueryStream] = None,
) -> QueryStream:
    """Spawn cmd on a background thread and return the stream it feeds.

    ``transform`` maps each stdout line to the published item, or to SKIP to
    drop the line.
    """
    stream = stream if stream is not None else QueryStream()
    thread = threading.Thread(
        target=_pump,
        args=(stream, cmd, env, question, timeout, transform or (lambda line: line)),
        name="ragclient-stream",
        daemon=True,
    )
    stream._thread = thread
    thread.start()
    return stream
