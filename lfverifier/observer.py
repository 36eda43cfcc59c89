"""Test result notifications and a summary printed when execution ends."""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass

log = logging.getLogger(__name__)

_CHECKED = "\u2611"
_UNCHECKED = "\u2610"


@dataclass(frozen=True)
class ExecutionStart:
    """Signals that test execution has begun."""


@dataclass(frozen=True)
class ExecutionEnd:
    """Signals that test execution has finished."""


@dataclass
class ComparisonResult:
    """Outcome of one test case comparison."""

    name: str = ""
    status: bool = False
    explain: str = ""
    path: str = ""
    event_index: int = 0


class _Node:
    __slots__ = ("value", "next", "changed")

    def __init__(self, value):
        self.value = value
        self.next = None
        self.changed = threading.Event()


class _Stream:
    """A reader of a Property's successive values, none of which it misses."""

    def __init__(self, node: _Node):
        self._node = node

    @property
    def value(self):
        return self._node.value

    def has_next(self) -> bool:
        return self._node.changed.is_set()

    def next(self, timeout=None):
        """Wait for the following value, advance to it and return it."""
        if not self._node.changed.wait(timeout):
            raise TimeoutError("no new value was published")
        self._node = self._node.next
        return self._node.value


class Property:
    """A value that can be updated and observed from other threads."""

    def __init__(self, value=None):
        self._node = _Node(value)
        self._lock = threading.Lock()

    @property
    def value(self):
        return self._node.value

    def update(self, value) -> None:
        """Publish a new value to all observers."""
        with self._lock:
            node = _Node(value)
            current = self._node
            current.next = node
            self._node = node
            current.changed.set()

    def observe(self) -> _Stream:
        """Return a stream starting at the current value."""
        with self._lock:
            return _Stream(self._node)


@dataclass
class _Tally:
    ok: int = 0
    not_ok: int = 0

    @property
    def total(self) -> int:
        return self.ok + self.not_ok


def get_icon_status(number_not_ok) -> str:
    """Return a checked box when nothing failed, an empty box otherwise."""
    if number_not_ok == 0:
        return _CHECKED
    return _UNCHECKED


class SummaryObserver:
    """Prints each test result and a per-file summary at the end of execution."""

    def __init__(self, prop, out=None):
        self._prop = prop
        self._out = sys.stdout if out is None else out
        self._done = threading.Event()

    def start(self) -> None:
        """Start consuming published values in a background thread."""
        stream = self._prop.observe()
        threading.Thread(target=self._run, args=(stream,), daemon=True).start()

    def finalize(self) -> None:
        """Wait until the summary has been printed."""
        self._done.wait()

    def _emit(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()

    def _run(self, stream: _Stream) -> None:
        results: dict[str, _Tally] = {}
        overall = _Tally()
        while True:
            data = stream.value
            if isinstance(data, ExecutionStart):
                results = {}
                overall = _Tally()
            elif isinstance(data, ExecutionEnd):
                lines = [
                    f"\nSummary: {get_icon_status(overall.not_ok)} "
                    f"All tests: {overall.ok}/{overall.total}\n"
                ]
                lines.extend(
                    f"\t {get_icon_status(tally.not_ok)} {path}: {tally.ok}/{tally.total}\n"
                    for path, tally in sorted(results.items())
                )
                self._emit("".join(lines))
                self._done.set()
            elif isinstance(data, ComparisonResult):
                tally = results.setdefault(data.path, _Tally())
                if data.status:
                    tally.ok += 1
                    overall.ok += 1
                    self._emit(f"{_CHECKED} {data.name} from {data.path}\n")
                else:
                    tally.not_ok += 1
                    overall.not_ok += 1
                    self._emit(f"{_UNCHECKED} {data.name} from {data.path}:\n{data.explain}\n")
            else:
                log.debug("Received data that can't be handled: %r", data)
            stream.next()