from typing import Optional


class CmdplayError(Exception):
    """Base class for errors that abort a record or play operation."""


class SpawnError(CmdplayError):
    """The pty could not be allocated or the shell could not be started."""

    def __init__(self, shell_command: str, reason: str):
        self.shell_command = shell_command
        self.reason = reason
        super().__init__(f"cannot start '{shell_command}': {reason}")


class DecodeError(CmdplayError):
    """A session file record could not be parsed."""

    def __init__(self, line_number: int, line: str, reason: str):
        self.line_number = line_number
        self.line = line
        self.reason = reason
        super().__init__(f"line {line_number}: {reason}: {line!r}")


class WriteError(CmdplayError):
    """Writing a replayed keystroke or a session record failed."""

    def __init__(self, message: str, events_written: Optional[int] = None):
        self.events_written = events_written
        super().__init__(message)
