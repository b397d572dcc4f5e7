import fcntl
import logging
import os
import pty
import queue
import select
import signal
import subprocess
import sys
import termios
import threading
import tty
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Sequence, runtime_checkable

from session_errors import SpawnError

logger = logging.getLogger(__name__)

InputObserver = Callable[[int], None]

READ_SIZE = 1024
POLL_INTERVAL = 0.1
DRAIN_TIMEOUT = 1.0
WINSIZE_BUFFER = b'\x00' * 8

_STOP = object()


@runtime_checkable
class Screen(Protocol):
    """A shell attached to a pty that mirrors the local terminal."""

    def start(self) -> None:
        """Start relaying between the local terminal and the shell."""

    def stop(self) -> None:
        """Kill the shell."""

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the shell exits."""

    def register_input_observer(self, observer: InputObserver) -> None:
        """Call observer with every byte typed before it reaches the shell."""

    def write(self, data: bytes) -> int:
        """Send bytes to the shell without notifying observers."""


@contextmanager
def raw_mode(fd: int) -> Iterator[None]:
    """Put a terminal into raw mode for the duration of the block."""
    if not os.isatty(fd):
        yield
        return
    original_tty_settings = termios.tcgetattr(fd)
    tty.setraw(fd)
    try:
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, original_tty_settings)


def copy_geometry(src_fd: int, dst_fd: int) -> bool:
    """Copy rows, columns and pixel size from one terminal to another."""
    try:
        winsize = fcntl.ioctl(src_fd, termios.TIOCGWINSZ, WINSIZE_BUFFER)
        fcntl.ioctl(dst_fd, termios.TIOCSWINSZ, winsize)
    except OSError as e:
        logger.debug("Cannot copy window size from fd %d to fd %d: %s", src_fd, dst_fd, e)
        return False
    return True


def _write_all(fd: int, data: bytes) -> int:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]
    return len(data)


def _attach_controlling_tty() -> None:
    # Runs in the child after setsid(): the pty follower is already on fd 0.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class PtySession:
    """Runs a shell on a pseudo-terminal and relays it to the local terminal.

    After start() four daemon threads run until the shell exits: a resize
    watcher, an output relay (pty -> output_fd), an input relay
    (input_fd -> observers -> pty) and an exit watcher.
    """

    def __init__(self, process: subprocess.Popen, master_fd: int,
                 input_fd: Optional[int] = None, output_fd: Optional[int] = None,
                 observers: Sequence[InputObserver] = ()):
        self.process = process
        self.master_fd = master_fd
        self.input_fd = sys.stdin.fileno() if input_fd is None else input_fd
        self.output_fd = sys.stdout.fileno() if output_fd is None else output_fd
        self._observers: List[InputObserver] = list(observers)
        self._done = threading.Event()
        self._resizes: "queue.Queue[object]" = queue.Queue(maxsize=1)
        self._wakeup_r, self._wakeup_w = os.pipe()
        self._threads: Dict[str, threading.Thread] = {}
        self._previous_sigwinch = None
        self._watching_resize = False
        self._started = False
        self._closed = False

    @classmethod
    def spawn(cls, shell_command: str, input_fd: Optional[int] = None,
              output_fd: Optional[int] = None, env: Optional[Dict[str, str]] = None,
              observers: Sequence[InputObserver] = ()) -> "PtySession":
        """Start shell_command on a new pty. Raises SpawnError on failure."""
        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(shell_command, f"cannot allocate pty: {e}") from e

        session_input = sys.stdin.fileno() if input_fd is None else input_fd
        copy_geometry(session_input, master_fd)

        try:
            process = subprocess.Popen(
                [shell_command],
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                env=env,
                start_new_session=True,
                preexec_fn=_attach_controlling_tty,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnError(shell_command, str(e)) from e
        finally:
            os.close(slave_fd)

        logger.info("Spawned %s (pid %d)", shell_command, process.pid)
        return cls(process, master_fd, input_fd=input_fd, output_fd=output_fd,
                   observers=observers)

    def __enter__(self) -> "PtySession":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def started(self) -> bool:
        return self._started

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def exit_status(self) -> Optional[int]:
        return self.process.returncode if self._done.is_set() else None

    def register_input_observer(self, observer: InputObserver) -> None:
        """Add an observer. Observers are fixed once the session starts."""
        if self._started:
            raise RuntimeError("cannot register an input observer after start()")
        self._observers.append(observer)

    def start(self) -> None:
        if self._started:
            raise RuntimeError("session already started")
        self._started = True
        self._install_resize_handler()
        self._resize()

        for name, target in (("resize-watcher", self._watch_resize),
                             ("output-relay", self._relay_output),
                             ("input-relay", self._relay_input),
                             ("exit-watcher", self._watch_exit)):
            thread = threading.Thread(target=target, name=name, daemon=True)
            self._threads[name] = thread
            thread.start()

    def write(self, data: bytes) -> int:
        return _write_all(self.master_fd, data)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the shell exits. Returns False if timeout expires first."""
        if not self._started:
            try:
                self.process.wait(timeout)
            except subprocess.TimeoutExpired:
                return False
            self._done.set()
            return True
        if not self._done.wait(timeout):
            return False
        self._join_relays()
        return True

    def stop(self) -> None:
        """Kill the shell. A shell that already exited is left alone."""
        if self.process.returncode is None:
            logger.info("Killing pid %d", self.process.pid)
            try:
                self.process.kill()
            except ProcessLookupError:
                pass

    def close(self) -> None:
        """Kill the shell if still running, let output drain, release the pty."""
        if self._closed:
            return
        self._closed = True
        if not self._done.is_set():
            self.stop()
            self.wait()
        self._join_relays()
        output_relay = self._threads.get("output-relay")
        if output_relay is not None:
            output_relay.join(DRAIN_TIMEOUT)
        self._restore_resize_handler()
        os.close(self.master_fd)
        os.close(self._wakeup_r)
        os.close(self._wakeup_w)

    def _join_relays(self) -> None:
        # Once these return no observer runs and nothing else writes to the pty.
        for name in ("input-relay", "resize-watcher"):
            thread = self._threads.get(name)
            if thread is not None and thread is not threading.current_thread():
                thread.join(DRAIN_TIMEOUT)

    def _resize(self) -> None:
        copy_geometry(self.input_fd, self.master_fd)

    def _notify_resize(self, signum, frame) -> None:
        try:
            self._resizes.put_nowait(signum)
        except queue.Full:
            # A resize is already pending and re-reads the current size.
            pass

    def _install_resize_handler(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, SIGWINCH is not watched")
            return
        self._previous_sigwinch = signal.signal(signal.SIGWINCH, self._notify_resize)
        self._watching_resize = True

    def _restore_resize_handler(self) -> None:
        if not self._watching_resize:
            return
        if threading.current_thread() is threading.main_thread():
            previous = signal.SIG_DFL if self._previous_sigwinch is None else self._previous_sigwinch
            signal.signal(signal.SIGWINCH, previous)
        self._watching_resize = False

    def _watch_resize(self) -> None:
        while True:
            item = self._resizes.get()
            if item is _STOP:
                return
            self._resize()

    def _relay_output(self) -> None:
        while True:
            try:
                data = os.read(self.master_fd, READ_SIZE)
            except OSError:
                # EIO once the shell side of the pty is closed
                return
            if not data:
                return
            try:
                _write_all(self.output_fd, data)
            except OSError as e:
                logger.debug("Output relay stopped: %s", e)
                return

    def _relay_input(self) -> None:
        while not self._done.is_set():
            try:
                ready_fds, _, _ = select.select([self.input_fd, self._wakeup_r], [], [], POLL_INTERVAL)
                if self._wakeup_r in ready_fds or self._done.is_set():
                    return
                if not ready_fds:
                    continue
                data = os.read(self.input_fd, READ_SIZE)
            except (OSError, ValueError) as e:
                logger.debug("Input relay stopped: %s", e)
                return
            if not data:
                return
            for key in data:
                for observer in self._observers:
                    observer(key)
            try:
                _write_all(self.master_fd, data)
            except OSError as e:
                logger.debug("Input relay stopped: %s", e)
                return

    def _watch_exit(self) -> None:
        status = self.process.wait()
        logger.info("Shell pid %d exited with status %d", self.process.pid, status)
        self._done.set()
        os.write(self._wakeup_w, b"\0")
        self._resizes.put(_STOP)
