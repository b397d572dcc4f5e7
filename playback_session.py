import logging
import sys
from pathlib import Path
from typing import Optional, Union

from input_recorder import InputRecorder
from pty_session import PtySession, raw_mode
from session_errors import WriteError

logger = logging.getLogger(__name__)


def play_session(session_file: Union[str, Path], shell_command: str,
                 input_fd: Optional[int] = None,
                 output_fd: Optional[int] = None) -> InputRecorder:
    """Replay a recorded session into a fresh shell, keeping its timing.

    The file is parsed before the shell is spawned. After the last keystroke
    the shell keeps running until it exits, so a session that does not end
    with an exit can be finished by hand.
    """
    recorder = InputRecorder()
    with open(session_file, 'r', encoding='ascii', errors='replace') as f:
        recorder.load(f)

    stdin_fd = sys.stdin.fileno() if input_fd is None else input_fd

    with raw_mode(stdin_fd):
        with PtySession.spawn(shell_command, input_fd=stdin_fd, output_fd=output_fd) as session:
            session.start()
            try:
                recorder.play(session)
            except WriteError:
                session.stop()
                raise
            logger.info("Replayed %d keystrokes, waiting for %s to exit", len(recorder), shell_command)
            session.wait()

    return recorder
