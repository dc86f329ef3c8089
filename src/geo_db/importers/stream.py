"""
Streaming stages of the dump import: source, decompression, chunking, parsing.

Dump format:
- File: `latest-all.json.bz2` (~100GB compressed)
- Format: JSON array where each line is a separate entity (after first `[` line)
- Each line: `{"type":"item","id":"Q123","labels":{...},"claims":{...}},`
- The last entity has no trailing comma, followed by a `]` line

Decompression runs in an external process (`bzip2 -dc` by default). A reader
thread drains its output into a bounded buffer, and writes into the process
block while that buffer is above the watermark, so a fast download cannot
outrun the parse+insert chain.
"""

import collections
import http.client
import logging
import subprocess
import threading
import time
import urllib.request
from pathlib import Path
from typing import Callable, Iterator, NamedTuple, Optional, Sequence

import orjson

from ..models import Entity

logger = logging.getLogger(__name__)

DUMP_URL = "https://dumps.wikimedia.org/wikidatawiki/entities/latest-all.json.bz2"
USER_AGENT = "geo-db/0.1 (Wikidata dump importer)"

DEFAULT_DECOMPRESSOR: tuple[str, ...] = ("bzip2", "-dc")
DEFAULT_WATERMARK = 2 * 1024 * 1024   # 2 MiB of decompressed, unread output
DEFAULT_READ_SIZE = 64 * 1024         # decompressed bytes per reader-thread read
DEFAULT_CHUNK_SIZE = 1024 * 1024      # compressed bytes per source read
DEFAULT_POLL_INTERVAL = 0.05          # seconds between backpressure checks
DEFAULT_PROGRESS_INTERVAL = 10.0      # seconds between progress samples


class DecompressionError(RuntimeError):
    """The decompression process failed or its pipes broke."""


# =============================================================================
# SOURCE STREAM
# =============================================================================

class SourceStream:
    """
    A single long-lived read of the compressed dump.

    `location` is either an http(s) URL (streamed with one GET) or a local
    file path.
    """

    def __init__(self, location: str | Path):
        self.location = str(location)
        self.total_size: Optional[int] = None
        self._handle = None

    @property
    def is_remote(self) -> bool:
        return self.location.startswith(("http://", "https://"))

    def open(self) -> "SourceStream":
        if self.is_remote:
            logger.info(f"Opening dump stream {self.location}")
            req = urllib.request.Request(self.location, headers={"User-Agent": USER_AGENT})
            response = urllib.request.urlopen(req)
            length = response.headers.get("content-length")
            self.total_size = int(length) if length else None
            self._handle = response
        else:
            path = Path(self.location)
            logger.info(f"Opening dump file {path}")
            self.total_size = path.stat().st_size
            self._handle = open(path, "rb")
        if self.total_size:
            logger.info(f"Dump size: {self.total_size / (1024 ** 3):.1f} GB")
        return self

    def chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        """
        Yield raw chunks until the source is exhausted.

        Raises:
            OSError: if a remote stream ends before its declared Content-Length
        """
        if self._handle is None:
            self.open()
        received = 0
        while True:
            try:
                chunk = self._handle.read(chunk_size)
            except http.client.IncompleteRead as e:
                raise OSError(f"dump stream ended early: {e!r}") from e
            if not chunk:
                break
            received += len(chunk)
            yield chunk
        # http.client returns b"" rather than raising when the peer closes early
        if self.is_remote and self.total_size is not None and received < self.total_size:
            raise OSError(
                f"dump stream ended after {received:,} of {self.total_size:,} bytes: {self.location}"
            )

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "SourceStream":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()


# =============================================================================
# DECOMPRESSION BRIDGE
# =============================================================================

class DecompressionBridge:
    """
    Proxy to an external decompression process with a bounded output buffer.

    `write()` feeds compressed bytes to the process and does not return while
    more than `watermark` bytes of decompressed output are waiting to be
    `read()`. The reader thread also stops draining the process while the
    buffer is above the watermark, so buffered output never exceeds
    `watermark + read_size`.
    """

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_DECOMPRESSOR,
        watermark: int = DEFAULT_WATERMARK,
        read_size: int = DEFAULT_READ_SIZE,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.command = list(command)
        self.watermark = watermark
        self.read_size = read_size
        self.poll_interval = poll_interval

        self._process: Optional[subprocess.Popen] = None
        self._reader: Optional[threading.Thread] = None
        self._cond = threading.Condition()
        self._buffer: collections.deque[bytes] = collections.deque()
        self._buffered = 0
        self._eof = False
        self._error: Optional[BaseException] = None
        self._closed = False
        # Peak buffered bytes, for diagnostics and tests
        self.max_buffered = 0

    @property
    def buffered(self) -> int:
        with self._cond:
            return self._buffered

    def start(self) -> "DecompressionBridge":
        logger.debug(f"Starting decompressor: {' '.join(self.command)}")
        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise DecompressionError(f"could not start {self.command[0]}: {e}") from e
        self._reader = threading.Thread(target=self._drain, name="decompress-reader", daemon=True)
        self._reader.start()
        return self

    def _drain(self) -> None:
        """Reader thread: move process output into the buffer, pausing above the watermark."""
        stdout = self._process.stdout
        try:
            while True:
                with self._cond:
                    while self._buffered > self.watermark and not self._closed:
                        self._cond.wait(self.poll_interval)
                    if self._closed:
                        return
                chunk = stdout.read1(self.read_size)
                with self._cond:
                    if not chunk:
                        self._eof = True
                        self._cond.notify_all()
                        return
                    self._buffer.append(chunk)
                    self._buffered += len(chunk)
                    self.max_buffered = max(self.max_buffered, self._buffered)
                    self._cond.notify_all()
        except (OSError, ValueError) as e:
            with self._cond:
                if self._error is None and not self._closed:
                    self._error = DecompressionError(f"error reading decompressor output: {e}")
                self._cond.notify_all()

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise self._error
        if self._process is not None and self._process.poll() not in (None, 0):
            raise DecompressionError(self._exit_message())

    def _exit_message(self) -> str:
        stderr = b""
        if self._process.stderr is not None:
            try:
                stderr = self._process.stderr.read() or b""
            except (OSError, ValueError):
                pass
        detail = stderr.decode("utf-8", "replace").strip()
        message = f"{self.command[0]} exited with code {self._process.returncode}"
        return f"{message}: {detail}" if detail else message

    def write(self, chunk: bytes) -> None:
        """Feed compressed bytes; blocks while the output buffer is above the watermark."""
        if self._process is None:
            raise DecompressionError("bridge not started")
        with self._cond:
            while self._buffered > self.watermark and not self._closed:
                self._raise_if_failed()
                self._cond.wait(self.poll_interval)
            if self._closed:
                raise DecompressionError("bridge closed")
            self._raise_if_failed()
        try:
            self._process.stdin.write(chunk)
            self._process.stdin.flush()
        except (BrokenPipeError, ValueError, OSError) as e:
            self._process.wait()
            raise DecompressionError(f"decompressor input closed: {e}; {self._exit_message()}") from e

    def close_input(self) -> None:
        """Signal end of compressed input."""
        if self._process is not None and self._process.stdin and not self._process.stdin.closed:
            try:
                self._process.stdin.close()
            except BrokenPipeError:
                pass

    def abort(self, error: BaseException) -> None:
        """Inject a fatal producer-side error; the next read() re-raises it."""
        with self._cond:
            if self._error is None:
                self._error = error
            self._cond.notify_all()

    def read(self) -> bytes:
        """Next chunk of decompressed bytes, or b"" at end of stream."""
        with self._cond:
            while not self._buffer:
                if self._error is not None:
                    raise self._error
                if self._eof:
                    break
                self._cond.wait(self.poll_interval)
            if self._buffer:
                chunk = self._buffer.popleft()
                self._buffered -= len(chunk)
                self._cond.notify_all()
                return chunk

        returncode = self._process.wait()
        if returncode != 0:
            raise DecompressionError(self._exit_message())
        return b""

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        if self._process is None:
            return
        # Kill before closing stdin: a feeder blocked on a full pipe holds the stdin lock
        if self._process.poll() is None:
            self._process.kill()
        self._process.wait()
        self.close_input()
        for pipe in (self._process.stdout, self._process.stderr):
            if pipe is not None:
                pipe.close()
        if self._reader is not None:
            self._reader.join(timeout=5)

    def __enter__(self) -> "DecompressionBridge":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.close()


def pump(
    source: SourceStream,
    bridge: DecompressionBridge,
    meter: Optional["ThroughputMeter"] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    stop_event: Optional[threading.Event] = None,
) -> None:
    """
    Feeder thread body: copy source chunks into the bridge.

    Always closes the bridge input; any error is handed to the bridge so the
    consumer sees it on its next read.
    """
    try:
        for chunk in source.chunks(chunk_size):
            if stop_event is not None and stop_event.is_set():
                logger.debug("Feeder: stop requested")
                break
            bridge.write(chunk)
            if meter is not None:
                meter.add_compressed(len(chunk))
    except Exception as e:
        if stop_event is None or not stop_event.is_set():
            bridge.abort(e)
    finally:
        bridge.close_input()


# =============================================================================
# THROUGHPUT METER
# =============================================================================

class ThroughputSample(NamedTuple):
    """Progress snapshot handed to the observer."""
    bytes_read: int            # compressed bytes consumed from the source
    total_bytes: Optional[int]
    bytes_per_sec: float
    decompressed_per_sec: float
    records: int
    elapsed: float

    @property
    def percent(self) -> Optional[float]:
        if not self.total_bytes:
            return None
        return 100.0 * self.bytes_read / self.total_bytes

    @property
    def eta_seconds(self) -> Optional[float]:
        if not self.total_bytes or self.bytes_per_sec <= 0:
            return None
        return max(self.total_bytes - self.bytes_read, 0) / self.bytes_per_sec


def format_eta(seconds: Optional[float]) -> str:
    if seconds is None:
        return "?"
    eta = seconds / 60
    unit = "m"
    if eta > 60:
        eta /= 60
        unit = "h"
        if eta > 24:
            eta /= 24
            unit = "d"
    return f"{eta:.1f}{unit}"


def log_progress(sample: ThroughputSample) -> None:
    """Default observer: one INFO line per sample."""
    pct = f"{sample.percent:05.2f}%" if sample.percent is not None else "?%"
    total_mb = f"{sample.total_bytes / 1_000_000:.2f} MB" if sample.total_bytes else "? MB"
    logger.info(
        f"{pct} (ETA: {format_eta(sample.eta_seconds)}) | "
        f"{sample.bytes_read / 1_000_000:.2f} MB of {total_mb} "
        f"at {sample.bytes_per_sec / 1_000_000:.2f} MB/s "
        f"({sample.decompressed_per_sec / 1_000_000:.2f} MB/s data) | "
        f"{sample.records:,} records"
    )


class ThroughputMeter:
    """
    Byte and record counters sampled on a fixed cadence.

    Counters may be updated from the feeder thread; sampling happens on the
    consumer side via `maybe_sample()`.
    """

    def __init__(
        self,
        observer: Optional[Callable[[ThroughputSample], None]] = log_progress,
        interval: float = DEFAULT_PROGRESS_INTERVAL,
        total_bytes: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.observer = observer
        self.interval = interval
        self.total_bytes = total_bytes
        self._clock = clock
        self._lock = threading.Lock()
        self.compressed = 0
        self.decompressed = 0
        self.records = 0
        self._start = clock()
        self._last_time = self._start
        self._last_compressed = 0
        self._last_decompressed = 0

    def add_compressed(self, n: int) -> None:
        with self._lock:
            self.compressed += n

    def add_decompressed(self, n: int) -> None:
        with self._lock:
            self.decompressed += n

    def add_record(self) -> None:
        self.records += 1

    def sample(self) -> ThroughputSample:
        now = self._clock()
        with self._lock:
            compressed = self.compressed
            decompressed = self.decompressed
        elapsed = max(now - self._last_time, 1e-9)
        result = ThroughputSample(
            bytes_read=compressed,
            total_bytes=self.total_bytes,
            bytes_per_sec=(compressed - self._last_compressed) / elapsed,
            decompressed_per_sec=(decompressed - self._last_decompressed) / elapsed,
            records=self.records,
            elapsed=now - self._start,
        )
        self._last_time = now
        self._last_compressed = compressed
        self._last_decompressed = decompressed
        return result

    def maybe_sample(self) -> Optional[ThroughputSample]:
        """Invoke the observer if at least `interval` seconds passed since the last sample."""
        if self._clock() - self._last_time < self.interval:
            return None
        result = self.sample()
        if self.observer is not None:
            self.observer(result)
        return result


# =============================================================================
# CHUNKER AND PARSER
# =============================================================================

def iter_lines(
    read: Callable[[], bytes],
    meter: Optional[ThroughputMeter] = None,
) -> Iterator[bytes]:
    """
    Split a decompressed byte stream into lines.

    `read` returns the next chunk, or b"" at end of stream. The final line is
    yielded even without a trailing newline.
    """
    pending = b""
    while True:
        chunk = read()
        if not chunk:
            break
        if meter is not None:
            meter.add_decompressed(len(chunk))
        pending += chunk
        if b"\n" not in chunk:
            continue
        *lines, pending = pending.split(b"\n")
        yield from lines
    if pending:
        yield pending


def parse_record(line: bytes | str) -> Optional[Entity]:
    """
    Parse one dump line into an Entity.

    Returns None for array brackets, blank lines and anything that does not
    parse as an entity object.
    """
    line = line.strip()
    if line.endswith(b"," if isinstance(line, bytes) else ","):
        line = line[:-1]
    if len(line) <= 1:
        # empty line or one of the [ or ] array boundary lines
        return None
    try:
        return Entity.from_json(orjson.loads(line))
    except orjson.JSONDecodeError as e:
        logger.debug(f"JSON decode error: {e}")
    except ValueError as e:
        logger.debug(f"not an entity: {e}")
    return None
