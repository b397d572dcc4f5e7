"""
Tests for the record and play operations.
"""

import errno
import os
import pty
import termios

import pytest

import playback_session
from input_recorder import InputEvent, InputRecorder
from playback_session import play_session
from pty_session import PtySession
from record_session import record_session
from session_errors import DecodeError, SpawnError, WriteError


@pytest.fixture
def host_tty():
    master_fd, slave_fd = pty.openpty()
    yield slave_fd
    os.close(master_fd)
    os.close(slave_fd)


def write_session(path, keys, delay=1_000_000):
    events = [InputEvent(key, 0 if i == 0 else delay) for i, key in enumerate(keys)]
    with open(path, "w") as f:
        InputRecorder(events).save(f)


class TestRecordSession:
    """Tests for capturing a session to a file."""

    def test_records_typed_keys(self, shell, tmp_path, input_pipe, output_sink):
        """Every typed byte is saved in order with a zero first delay."""
        os.write(input_pipe[1], b"echo hi\nexit\n")
        path = tmp_path / "demo.session"

        recorder = record_session(path, shell, input_fd=input_pipe[0], output_fd=output_sink.fd)

        assert [event.key for event in recorder.events] == list(b"echo hi\nexit\n")
        lines = path.read_text().splitlines()
        assert len(lines) == 13
        assert lines[0] == "101 0"

        loaded = InputRecorder()
        with open(path) as f:
            loaded.load(f)
        assert loaded.events == recorder.events

    def test_spawn_error_restores_terminal(self, tmp_path, host_tty, output_sink):
        """A shell that cannot start leaves the terminal as it was."""
        before = termios.tcgetattr(host_tty)
        path = tmp_path / "demo.session"
        with pytest.raises(SpawnError):
            record_session(path, str(tmp_path / "missing"), input_fd=host_tty, output_fd=output_sink.fd)
        assert termios.tcgetattr(host_tty) == before
        assert path.read_text() == ""

    def test_unwritable_output_fails_before_spawn(self, tmp_path, input_pipe, monkeypatch):
        """The output file is opened before the shell starts."""
        def no_spawn(*args, **kwargs):
            raise AssertionError("shell should not be spawned")

        monkeypatch.setattr(PtySession, "spawn", no_spawn)
        with pytest.raises(OSError):
            record_session(tmp_path / "missing-dir" / "demo.session", "/bin/sh", input_fd=input_pipe[0])


class TestPlaySession:
    """Tests for replaying a session file."""

    def test_replays_into_shell(self, shell, tmp_path, input_pipe, output_sink):
        """Recorded keys are typed into a new shell."""
        path = tmp_path / "demo.session"
        write_session(path, b"echo played-$((6 * 7))\nexit\n")

        recorder = play_session(path, shell, input_fd=input_pipe[0], output_fd=output_sink.fd)

        assert len(recorder) == len(b"echo played-$((6 * 7))\nexit\n")
        assert b"played-42" in output_sink.close()

    def test_decode_error_before_spawn(self, tmp_path, input_pipe, monkeypatch):
        """A malformed file is rejected without starting a shell."""
        class NoSession:
            @classmethod
            def spawn(cls, *args, **kwargs):
                raise AssertionError("shell should not be spawned")

        monkeypatch.setattr(playback_session, "PtySession", NoSession)
        path = tmp_path / "bad.session"
        path.write_text("97 0\n97 x\n")

        with pytest.raises(DecodeError) as excinfo:
            play_session(path, "/bin/sh", input_fd=input_pipe[0])
        assert excinfo.value.line_number == 2

    def test_write_error_stops_shell_and_restores_terminal(self, shell, tmp_path, host_tty,
                                                           output_sink, monkeypatch):
        """A failed replay write aborts, kills the shell and restores raw mode."""
        sessions = []
        original_spawn = PtySession.spawn

        def tracking_spawn(*args, **kwargs):
            session = original_spawn(*args, **kwargs)
            sessions.append(session)
            return session

        def broken_write(self, data):
            raise OSError(errno.EIO, "Input/output error")

        monkeypatch.setattr(PtySession, "spawn", tracking_spawn)
        monkeypatch.setattr(PtySession, "write", broken_write)
        path = tmp_path / "demo.session"
        write_session(path, b"exit\n")
        before = termios.tcgetattr(host_tty)

        with pytest.raises(WriteError):
            play_session(path, shell, input_fd=host_tty, output_fd=output_sink.fd)

        assert termios.tcgetattr(host_tty) == before
        assert sessions[0].done
        assert sessions[0].exit_status is not None
