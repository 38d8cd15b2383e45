"""Tests for the streaming pipe adapter."""

import threading
import time

import pytest

from datamold.errors import TransferAbortedError
from datamold.storage.pipe import Pipe, open_for_read, open_for_write


class WorkerKilled(BaseException):
    """Stands in for SystemExit or KeyboardInterrupt in a background thread."""


def _drain(fileobj, chunk=7):
    data = bytearray()
    while True:
        piece = fileobj.read(chunk)
        if not piece:
            return bytes(data)
        data += piece


class TestPipe:
    """Tests for the bounded in-memory pipe."""

    def test_rejects_empty_buffer(self):
        with pytest.raises(ValueError):
            Pipe(0)

    def test_read_returns_full_chunks_until_eof(self):
        pipe = Pipe(4)
        payload = b"abcdefghijklmnopqrstuvwxyz"

        def writer():
            pipe.write(payload)
            pipe.close_write()

        thread = threading.Thread(target=writer)
        thread.start()
        assert pipe.read(10) == payload[:10]
        assert pipe.read(10) == payload[10:20]
        assert pipe.read(10) == payload[20:]
        assert pipe.read(10) == b""
        thread.join(timeout=5)

    def test_read_all(self):
        pipe = Pipe(8)
        threading.Thread(target=lambda: (pipe.write(b"x" * 100), pipe.close_write())).start()
        assert pipe.read() == b"x" * 100

    def test_write_error_discards_buffered_bytes(self):
        pipe = Pipe()
        pipe.write(b"partial")
        error = RuntimeError("producer failed")
        pipe.close_write(error)

        with pytest.raises(RuntimeError, match="producer failed"):
            pipe.read(100)

    def test_write_after_read_closed_raises_reader_error(self):
        pipe = Pipe()
        pipe.close_read(OSError("upload rejected"))

        with pytest.raises(OSError, match="upload rejected"):
            pipe.write(b"data")

    def test_write_after_read_closed_without_error(self):
        pipe = Pipe()
        pipe.close_read()

        with pytest.raises(BrokenPipeError):
            pipe.write(b"data")

    def test_write_after_write_closed(self):
        pipe = Pipe()
        pipe.close_write()

        with pytest.raises(ValueError):
            pipe.write(b"data")

    def test_first_close_wins(self):
        pipe = Pipe()
        pipe.close_write(RuntimeError("first"))
        pipe.close_write(RuntimeError("second"))

        with pytest.raises(RuntimeError, match="first"):
            pipe.read()

    def test_closing_read_end_releases_blocked_writer(self):
        pipe = Pipe(1)
        raised = []

        def writer():
            try:
                pipe.write(b"more than one byte")
            except BrokenPipeError as e:
                raised.append(e)

        thread = threading.Thread(target=writer)
        thread.start()
        time.sleep(0.05)
        pipe.close_read()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert len(raised) == 1


class TestWriteHandle:
    """Tests for open_for_write."""

    def test_consumer_receives_everything(self):
        received = []
        handle = open_for_write(lambda f: received.append(_drain(f)), "obj", buffer_size=16)

        with handle:
            handle.write(b"hello ")
            handle.write(b"world" * 20)

        assert received == [b"hello " + b"world" * 20]
        assert handle.tell() == 106

    def test_zero_length_object(self):
        received = []
        handle = open_for_write(lambda f: received.append(_drain(f)), "empty")
        handle.close()

        assert received == [b""]

    def test_close_is_idempotent(self):
        handle = open_for_write(_drain, "obj")
        handle.write(b"data")

        assert handle.close() is None
        assert handle.close() is None
        assert handle.closed

    def test_background_error_unblocks_writer(self):
        def consume(fileobj):
            fileobj.read(4)
            raise OSError("access denied")

        handle = open_for_write(consume, "obj", buffer_size=4)

        with pytest.raises(OSError, match="access denied"):
            handle.write(b"x" * 1000)
        with pytest.raises(OSError, match="access denied"):
            handle.close()
        assert handle.close() is None

    def test_background_error_raised_on_close(self):
        def consume(fileobj):
            raise OSError("no such bucket")

        handle = open_for_write(consume, "obj")
        time.sleep(0.05)

        with pytest.raises(OSError, match="no such bucket"):
            handle.close()
        assert handle.close() is None

    @pytest.mark.filterwarnings("ignore::pytest.PytestUnhandledThreadExceptionWarning")
    def test_base_exception_in_consumer_is_not_success(self):
        def consume(fileobj):
            fileobj.read(1)
            raise WorkerKilled()

        handle = open_for_write(consume, "obj")
        handle.write(b"x")

        with pytest.raises(WorkerKilled):
            handle.close()

    def test_write_after_close(self):
        handle = open_for_write(_drain, "obj")
        handle.close()

        with pytest.raises(ValueError):
            handle.write(b"late")

    def test_abort_delivers_error_to_consumer(self):
        seen = []

        def consume(fileobj):
            try:
                _drain(fileobj)
            except TransferAbortedError as e:
                seen.append(e)
                raise

        handle = open_for_write(consume, "obj")
        handle.write(b"partial content")
        handle.abort(RuntimeError("encoder failed"))

        assert len(seen) == 1
        assert seen[0].name == "obj"
        assert handle.closed
        assert handle.close() is None

    def test_exception_in_with_block_aborts(self):
        committed = []

        def consume(fileobj):
            committed.append(_drain(fileobj))

        with pytest.raises(RuntimeError):
            with open_for_write(consume, "obj") as handle:
                handle.write(b"half")
                raise RuntimeError("boom")

        assert committed == []

    def test_background_thread_is_named(self):
        names = []
        handle = open_for_write(
            lambda f: names.append(threading.current_thread().name), "artifact_0.txt"
        )
        handle.close()

        assert names == ["datamold-write-artifact_0.txt"]


class TestReadHandle:
    """Tests for open_for_read."""

    def test_reads_produced_bytes(self):
        def produce(fileobj):
            for _ in range(10):
                fileobj.write(b"0123456789")

        with open_for_read(produce, "obj", buffer_size=8) as handle:
            assert _drain(handle, chunk=3) == b"0123456789" * 10

    def test_empty_object(self):
        with open_for_read(lambda f: None, "obj") as handle:
            assert handle.read() == b""

    def test_producer_error_surfaces_from_read(self):
        def produce(fileobj):
            fileobj.write(b"abc")
            raise OSError("connection reset")

        handle = open_for_read(produce, "obj")
        with pytest.raises(OSError, match="connection reset"):
            _drain(handle)
        handle.close()

    def test_close_never_raises_and_is_idempotent(self):
        def produce(fileobj):
            raise OSError("not found")

        handle = open_for_read(produce, "obj")
        assert handle.close() is None
        assert handle.close() is None
        assert handle.closed

    def test_early_close_releases_producer(self):
        finished = threading.Event()

        def produce(fileobj):
            try:
                while True:
                    fileobj.write(b"x" * 64)
            finally:
                finished.set()

        handle = open_for_read(produce, "obj", buffer_size=16)
        handle.read(4)
        handle.close()

        assert finished.wait(timeout=5)

    @pytest.mark.filterwarnings("ignore::pytest.PytestUnhandledThreadExceptionWarning")
    def test_base_exception_in_producer_is_not_eof(self):
        def produce(fileobj):
            fileobj.write(b"abc")
            raise WorkerKilled()

        handle = open_for_read(produce, "obj")
        with pytest.raises(WorkerKilled):
            _drain(handle)
        handle.close()
