import logging
import time
from typing import Iterable, List, NamedTuple, Optional, Protocol, TextIO, runtime_checkable

from session_errors import DecodeError, WriteError

logger = logging.getLogger(__name__)

NANOSECONDS = 1_000_000_000


class InputEvent(NamedTuple):
    """One captured keystroke and the nanoseconds since the previous one."""

    key: int
    delay: int


class Destination(Protocol):
    def write(self, data: bytes) -> int: ...


@runtime_checkable
class Recorder(Protocol):
    """Captures keystrokes with timing and reproduces them."""

    def input(self, key: int) -> None:
        """Record a keystroke."""

    def play(self, destination: Destination) -> None:
        """Write the recorded keystrokes to destination with their timing."""

    def save(self, destination: TextIO) -> None:
        """Persist the recorded keystrokes."""

    def load(self, source: Iterable[str]) -> None:
        """Replace the recorded keystrokes with a persisted session."""


def format_event(event: InputEvent) -> str:
    return f"{event.key} {event.delay}\n"


def dump_events(events: Iterable[InputEvent], destination: TextIO) -> int:
    """Write events one per line. Returns the number of records written."""
    count = 0
    for event in events:
        try:
            destination.write(format_event(event))
        except (OSError, ValueError) as e:
            raise WriteError(f"cannot save event {count + 1}: {e}", count) from e
        count += 1
    try:
        destination.flush()
    except (OSError, ValueError) as e:
        raise WriteError(f"cannot save session: {e}", count) from e
    return count


def _parse_decimal(field: str) -> Optional[int]:
    # int() also accepts signs, underscores and non-ASCII digits
    if not (field.isascii() and field.isdigit()):
        return None
    return int(field)


def parse_events(source: Iterable[str]) -> List[InputEvent]:
    """Parse session records, stopping at the first malformed line.

    Each line holds the byte value (0-255) and the delay in nanoseconds,
    separated by whitespace. Blank lines are only accepted at the end.
    """
    events: List[InputEvent] = []
    blank_line = None
    for line_number, line in enumerate(source, 1):
        fields = line.split()
        if not fields:
            if blank_line is None:
                blank_line = line_number
            continue
        if blank_line is not None:
            raise DecodeError(blank_line, "", "blank line before end of session")
        if len(fields) != 2:
            raise DecodeError(line_number, line.rstrip("\n"), f"expected 2 fields, got {len(fields)}")

        key = _parse_decimal(fields[0])
        if key is None or key > 255:
            raise DecodeError(line_number, line.rstrip("\n"), "key is not a byte value")
        delay = _parse_decimal(fields[1])
        if delay is None:
            raise DecodeError(line_number, line.rstrip("\n"), "delay is not a non-negative integer")

        events.append(InputEvent(key, delay))
    return events


class InputRecorder:
    """Records raw input bytes with inter-key delays and replays them."""

    def __init__(self, events: Optional[Iterable[InputEvent]] = None):
        self._events: List[InputEvent] = list(events or [])
        self._last: Optional[int] = None

    def __len__(self) -> int:
        return len(self._events)

    def __call__(self, key: int) -> None:
        self.input(key)

    @property
    def events(self) -> List[InputEvent]:
        return list(self._events)

    @property
    def duration(self) -> int:
        """Total replay time in nanoseconds."""
        return sum(event.delay for event in self._events)

    def input(self, key: int) -> None:
        if not 0 <= key <= 255:
            raise ValueError(f"key must be a byte value, got {key}")
        now = time.monotonic_ns()
        delay = 0 if self._last is None else now - self._last
        self._last = now
        self._events.append(InputEvent(key, delay))

    def play(self, destination: Destination) -> None:
        """Sleep for each event's delay, then write its byte to destination.

        A failed write aborts the replay with WriteError; events already
        written stay written.
        """
        logger.info("Playing %d events (%.3fs)", len(self._events), self.duration / NANOSECONDS)
        for index, event in enumerate(self._events):
            if event.delay:
                time.sleep(event.delay / NANOSECONDS)
            try:
                destination.write(bytes((event.key,)))
            except (OSError, ValueError) as e:
                logger.info("Replay aborted after %d of %d events", index, len(self._events))
                raise WriteError(f"replay aborted at event {index + 1}: {e}", index) from e

    def save(self, destination: TextIO) -> None:
        count = dump_events(self._events, destination)
        logger.info("Saved %d events", count)

    def load(self, source: Iterable[str]) -> None:
        self._events = parse_events(source)
        self._last = None
        logger.info("Loaded %d events", len(self._events))
