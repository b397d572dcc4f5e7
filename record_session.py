import logging
import sys
from pathlib import Path
from typing import Optional, Union

from input_recorder import InputRecorder
from pty_session import PtySession, raw_mode

logger = logging.getLogger(__name__)


def record_session(output_file: Union[str, Path], shell_command: str,
                   input_fd: Optional[int] = None,
                   output_fd: Optional[int] = None) -> InputRecorder:
    """Record the keystrokes typed into shell_command until it exits.

    The output file is opened (and truncated) before the shell starts, and
    the captured session is written to it once the shell has exited.
    """
    stdin_fd = sys.stdin.fileno() if input_fd is None else input_fd
    recorder = InputRecorder()

    with open(output_file, 'w', encoding='ascii') as session_file:
        with raw_mode(stdin_fd):
            with PtySession.spawn(shell_command, input_fd=stdin_fd, output_fd=output_fd,
                                  observers=[recorder]) as session:
                session.start()
                session.wait()
                logger.info("Recorded %d keystrokes from %s", len(recorder), shell_command)

        recorder.save(session_file)

    return recorder
