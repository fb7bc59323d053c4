from __future__ import annotations

import contextlib
import logging
import queue
import threading
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence

from .errors import ArchiveStreamError


logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_QUEUE_DEPTH = 8

# How often a blocked producer re-checks for an abandoned consumer.
_PUT_POLL_SECONDS = 0.1


@dataclass(frozen=True)
class ArchiveEntry:
    """One archive member: either a file on disk or an in-memory buffer."""

    name: str
    path: Optional[Path] = None
    data: Optional[bytes] = None

    def __post_init__(self) -> None:
        if (self.path is None) == (self.data is None):
            raise ValueError("ArchiveEntry needs exactly one of path or data")


class _ConsumerGone(Exception):
    pass


@dataclass(frozen=True)
class _Failure:
    error: Exception
    entry_name: Optional[str]


_DONE = object()


class _QueueSink:
    """Write-only, non-seekable file object feeding a bounded queue.

    ZipFile falls back to data descriptors when the target has no tell(),
    so entries are emitted as soon as they are compressed.
    """

    def __init__(self, chunks: queue.Queue, cancelled: threading.Event, chunk_size: int) -> None:
        self._chunks = chunks
        self._cancelled = cancelled
        self._chunk_size = chunk_size
        self._buffer = bytearray()

    def write(self, data) -> int:
        if self._cancelled.is_set():
            raise _ConsumerGone()
        self._buffer += data
        while len(self._buffer) >= self._chunk_size:
            self._push(bytes(self._buffer[: self._chunk_size]))
            del self._buffer[: self._chunk_size]
        return len(data)

    def flush(self) -> None:
        if self._buffer:
            self._push(bytes(self._buffer))
            self._buffer.clear()

    def _push(self, item: object) -> None:
        while True:
            if self._cancelled.is_set():
                raise _ConsumerGone()
            try:
                self._chunks.put(item, timeout=_PUT_POLL_SECONDS)
                return
            except queue.Full:
                continue

    def finish(self, item: object) -> None:
        self._push(item)


def _append_entry(zf: zipfile.ZipFile, entry: ArchiveEntry) -> None:
    if entry.path is not None:
        zf.write(entry.path, arcname=entry.name)
    else:
        zf.writestr(entry.name, entry.data)


def _produce(
    entries: Sequence[ArchiveEntry],
    sink: _QueueSink,
    compresslevel: int,
) -> None:
    zf: Optional[zipfile.ZipFile] = None
    current: Optional[str] = None
    try:
        zf = zipfile.ZipFile(
            sink,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=compresslevel,
            # Files older than 1980 get a clamped date instead of failing the archive.
            strict_timestamps=False,
        )
        for entry in entries:
            current = entry.name
            _append_entry(zf, entry)
        current = None
        # Writes the central directory; only reached when every entry succeeded.
        zf.close()
        sink.flush()
        sink.finish(_DONE)
    except _ConsumerGone:
        logger.info("Archive consumer went away; stopped at entry %r", current)
        _discard(zf)
    except Exception as exc:
        logger.exception("Archive entry %r failed; aborting archive", current)
        _discard(zf)
        with contextlib.suppress(_ConsumerGone):
            sink.finish(_Failure(exc, current))


def _discard(zf: Optional[zipfile.ZipFile]) -> None:
    # Drop the handle so close() (or __del__) never writes a central directory.
    if zf is not None:
        zf.fp = None


def stream_archive(
    entries: Sequence[ArchiveEntry],
    *,
    compresslevel: int = 9,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    queue_depth: int = DEFAULT_QUEUE_DEPTH,
) -> Iterator[bytes]:
    """Yield a ZIP archive of ``entries`` as it is being built.

    Entries are appended in the given order by a producer thread. At most
    ``queue_depth`` chunks are buffered ahead of the consumer. A failing entry
    raises :class:`ArchiveStreamError` from the iterator and the archive is
    never finalized. Closing the iterator early stops the producer.
    """
    chunks: queue.Queue = queue.Queue(maxsize=queue_depth)
    cancelled = threading.Event()
    sink = _QueueSink(chunks, cancelled, chunk_size)
    producer = threading.Thread(
        target=_produce,
        args=(list(entries), sink, compresslevel),
        name="archive-producer",
        daemon=True,
    )

    logger.info("Streaming archive with %d entries", len(entries))
    producer.start()
    try:
        while True:
            item = chunks.get()
            if item is _DONE:
                return
            if isinstance(item, _Failure):
                raise ArchiveStreamError(f"Archive stream aborted at entry {item.entry_name!r}.") from item.error
            yield item
    finally:
        cancelled.set()
        producer.join()
