"""Streaming pipe adapter.

SDK transfer calls are push or pull shaped: an upload wants a readable
file object it can pull from, a download wants a writable file object it
can push into. Callers want the opposite. ``open_for_write`` and
``open_for_read`` run the SDK call on a background thread against one end
of an in-memory ``Pipe`` and hand the other end back as a handle, so the
producer and consumer run concurrently without buffering the whole object.

Handles must always be closed (use them as context managers); closing is
what releases the paired background thread.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from datamold.errors import TransferAbortedError

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_PIPE_BUFFER",
    "Pipe",
    "ReadHandle",
    "WriteHandle",
    "open_for_read",
    "open_for_write",
]

DEFAULT_PIPE_BUFFER = 1024 * 1024


class Pipe:
    """Bounded in-memory byte pipe shared by exactly two threads.

    ``write`` blocks while the buffer is full, ``read`` blocks while it is
    empty. Either end can be closed with an error, which is then raised to
    the other end.
    """

    def __init__(self, buffer_size: int = DEFAULT_PIPE_BUFFER) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        self._cond = threading.Condition()
        self._buffer = bytearray()
        self._capacity = buffer_size
        self._write_closed = False
        self._write_error: Optional[BaseException] = None
        self._read_closed = False
        self._read_error: Optional[BaseException] = None

    @property
    def write_closed(self) -> bool:
        return self._write_closed

    @property
    def read_closed(self) -> bool:
        return self._read_closed

    def write(self, data: Any) -> int:
        view = memoryview(data).cast("B")
        total = len(view)
        written = 0
        with self._cond:
            while True:
                if self._write_closed:
                    raise ValueError("write to closed pipe")
                if self._read_closed:
                    if self._read_error is not None:
                        raise self._read_error
                    raise BrokenPipeError("read end of pipe is closed")
                if written >= total:
                    return written
                room = self._capacity - len(self._buffer)
                if room <= 0:
                    self._cond.wait()
                    continue
                chunk = view[written : written + room]
                self._buffer.extend(chunk)
                written += len(chunk)
                self._cond.notify_all()

    def read(self, size: Optional[int] = -1) -> bytes:
        """Read ``size`` bytes, or fewer only at end of stream.

        ``size`` of None or below zero reads until end of stream.
        """
        wanted = -1 if size is None or size < 0 else size
        out = bytearray()
        with self._cond:
            while wanted < 0 or len(out) < wanted:
                if self._read_closed:
                    raise ValueError("read from closed pipe")
                if self._buffer:
                    take = len(self._buffer) if wanted < 0 else wanted - len(out)
                    out += self._buffer[:take]
                    del self._buffer[:take]
                    self._cond.notify_all()
                    continue
                if self._write_closed:
                    # A short read means EOF to the consumer, so a failed
                    # writer must not hand back partial data.
                    if self._write_error is not None:
                        raise self._write_error
                    break
                self._cond.wait()
        return bytes(out)

    def close_write(self, error: Optional[BaseException] = None) -> None:
        with self._cond:
            if self._write_closed:
                return
            self._write_closed = True
            self._write_error = error
            self._cond.notify_all()

    def close_read(self, error: Optional[BaseException] = None) -> None:
        with self._cond:
            if self._read_closed:
                return
            self._read_closed = True
            self._read_error = error
            self._buffer.clear()
            self._cond.notify_all()


class _PipeReader:
    """Read end given to a pull-style SDK call (e.g. upload_fileobj)."""

    def __init__(self, pipe: Pipe) -> None:
        self._pipe = pipe

    def read(self, size: Optional[int] = -1) -> bytes:
        return self._pipe.read(size)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False


class _PipeWriter:
    """Write end given to a push-style SDK call (e.g. download_fileobj)."""

    def __init__(self, pipe: Pipe) -> None:
        self._pipe = pipe

    def write(self, data: Any) -> int:
        return self._pipe.write(data)

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def flush(self) -> None:
        pass


class ReadHandle:
    """Synchronous reader fed by a background download.

    Transfer failures surface from ``read``; ``close`` never raises them.
    """

    def __init__(self, pipe: Pipe, name: str) -> None:
        self._pipe = pipe
        self.name = name
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, size: Optional[int] = -1) -> bytes:
        return self._pipe.read(size)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        # Releases a producer blocked on a full pipe.
        self._pipe.close_read()

    def __enter__(self) -> "ReadHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ReadHandle(name={self.name!r}, closed={self._closed})"


class WriteHandle:
    """Synchronous writer drained by a background upload.

    ``close`` waits for the upload and raises its error exactly once;
    later calls return None.
    """

    def __init__(self, pipe: Pipe, name: str) -> None:
        self._pipe = pipe
        self.name = name
        self._lock = threading.Lock()
        self._closed = False
        self._done = threading.Event()
        self._error: Optional[BaseException] = None
        self._position = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: Any) -> int:
        if self._closed:
            raise ValueError(f"write to closed handle {self.name!r}")
        written = self._pipe.write(data)
        self._position += written
        return written

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def tell(self) -> int:
        return self._position

    def flush(self) -> None:
        pass

    def _finish(self, error: Optional[BaseException]) -> None:
        self._error = error
        self._done.set()

    def _mark_closed(self) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            return True

    def close(self) -> None:
        if not self._mark_closed():
            return
        self._pipe.close_write()
        self._done.wait()
        if self._error is not None:
            raise self._error

    def abort(self, reason: Optional[BaseException] = None) -> None:
        """Abandon the transfer so no partial object is committed."""
        if not self._mark_closed():
            return
        self._pipe.close_write(TransferAbortedError(name=self.name, cause=reason))
        self._done.wait()
        if self._error is not None:
            logger.debug("Aborted transfer of %s: %s", self.name, self._error)

    def __enter__(self) -> "WriteHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc is not None:
            self.abort(exc)
        else:
            self.close()

    def __repr__(self) -> str:
        return f"WriteHandle(name={self.name!r}, closed={self._closed})"


def open_for_read(
    produce: Callable[[_PipeWriter], Any],
    name: str,
    *,
    buffer_size: int = DEFAULT_PIPE_BUFFER,
) -> ReadHandle:
    """Run a push-style ``produce`` call in the background, return a reader.

    Args:
        produce: Blocking call that writes the object into the file object
            it is given (e.g. ``client.download_fileobj``)
        name: Object name, used for the thread name and logging
        buffer_size: Pipe capacity in bytes
    """
    pipe = Pipe(buffer_size)
    handle = ReadHandle(pipe, name)

    def _run() -> None:
        error: Optional[BaseException] = None
        try:
            produce(_PipeWriter(pipe))
        except Exception as exc:
            error = exc
            if not pipe.read_closed:
                logger.debug("Background read of %s failed: %s", name, exc)
        except BaseException as exc:
            # Recorded so the reader never sees a clean EOF, then re-raised.
            error = exc
            raise
        finally:
            pipe.close_write(error)

    threading.Thread(target=_run, name=f"datamold-read-{name}", daemon=True).start()
    return handle


def open_for_write(
    consume: Callable[[_PipeReader], Any],
    name: str,
    *,
    buffer_size: int = DEFAULT_PIPE_BUFFER,
) -> WriteHandle:
    """Run a pull-style ``consume`` call in the background, return a writer.

    Args:
        consume: Blocking call that reads the object from the file object
            it is given until EOF (e.g. ``client.upload_fileobj``)
        name: Object name, used for the thread name and logging
        buffer_size: Pipe capacity in bytes
    """
    pipe = Pipe(buffer_size)
    handle = WriteHandle(pipe, name)

    def _run() -> None:
        error: Optional[BaseException] = None
        try:
            consume(_PipeReader(pipe))
        except Exception as exc:
            error = exc
            logger.debug("Background write of %s failed: %s", name, exc)
        except BaseException as exc:
            # Recorded so close() never reports success, then re-raised.
            error = exc
            raise
        finally:
            # Releases a producer still blocked in write().
            pipe.close_read(error)
            handle._finish(error)

    threading.Thread(target=_run, name=f"datamold-write-{name}", daemon=True).start()
    return handle
