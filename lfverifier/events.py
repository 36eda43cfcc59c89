"""Reading Logstash events and the results of a Logstash run."""

from __future__ import annotations

import json
from dataclasses import dataclass, field


class BadLogstashOutputError(Exception):
    """Logstash emitted a line that can't be parsed as a JSON event.

    ``events`` holds the events read before the bad line.
    """

    def __init__(self, output: str, events=None):
        super().__init__(f"Logstash emitted this line which can't be parsed as JSON: {output}")
        self.output = output
        self.events = list(events or [])


def read_events(stream) -> list[dict]:
    """Read newline-separated JSON events from a readable stream."""
    data = stream.read()
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    lines = data.split("\n")
    if lines[-1] == "":
        lines.pop()
    events: list[dict] = []
    for line in lines:
        line = line.removesuffix("\r")
        try:
            event = json.loads(line)
        except ValueError:
            raise BadLogstashOutputError(line, events) from None
        if not isinstance(event, dict):
            raise BadLogstashOutputError(line, events)
        events.append(event)
    return events


@dataclass
class Result:
    """Outcome of a single Logstash run."""

    success: bool = False
    events: list = field(default_factory=list)
    log: str = ""
    output: str = ""


@dataclass
class ParallelResult:
    """Outcome of a Logstash run serving several test streams at once."""

    success: bool = False
    events: list = field(default_factory=list)
    log: str = ""
    output: str = ""