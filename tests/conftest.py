import os
import shutil
import threading

import pytest

SHELL = shutil.which("sh") or "/bin/sh"
SHELL_ENV = {"PATH": os.defpath, "PS1": "$ ", "TERM": "dumb", "HOME": "/"}
TIMEOUT = 10


class OutputSink:
    """Pipe whose read end is drained on a background thread."""

    def __init__(self):
        self.read_fd, self.fd = os.pipe()
        self.data = bytearray()
        self.closed = False
        self._thread = threading.Thread(target=self._drain, daemon=True)
        self._thread.start()

    def _drain(self):
        while True:
            chunk = os.read(self.read_fd, 1024)
            if not chunk:
                return
            self.data.extend(chunk)

    def close(self):
        if self.closed:
            return bytes(self.data)
        self.closed = True
        os.close(self.fd)
        self._thread.join(TIMEOUT)
        os.close(self.read_fd)
        return bytes(self.data)


@pytest.fixture
def shell():
    if not os.access(SHELL, os.X_OK):
        pytest.skip("no POSIX shell available")
    return SHELL


@pytest.fixture
def output_sink():
    sink = OutputSink()
    yield sink
    sink.close()


@pytest.fixture
def input_pipe():
    """(read_fd, write_fd) standing in for the local keyboard."""
    read_fd, write_fd = os.pipe()
    yield read_fd, write_fd
    for fd in (read_fd, write_fd):
        try:
            os.close(fd)
        except OSError:
            pass
