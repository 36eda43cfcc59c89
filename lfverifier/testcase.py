"""Test case files: loading them and comparing Logstash output with expectations."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass, field

import yaml

from lfverifier.fieldset import FieldSet, validate_fields
from lfverifier.helpers import parse_all_bracket_properties, remove_fields
from lfverifier.observer import ComparisonResult

log = logging.getLogger(__name__)

DUMMY_EVENT_INPUT_INDICATOR = "__lfv_dummy_event"
DEFAULT_IGNORED_FIELDS = ("@version",)
_CONFIG_TYPES = ("json", "yaml", "yml")
_COMPARE_NAME = "Compare actual event with expected event"
_JSON_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


class CaseSetError(ValueError):
    """A test case file is invalid or could not be processed."""


def _normalize_numbers(value):
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    if isinstance(value, dict):
        return {key: _normalize_numbers(inner) for key, inner in value.items()}
    if isinstance(value, list):
        return [_normalize_numbers(inner) for inner in value]
    return value


def _dump_json(value, indent=None) -> str:
    """Serialize with sorted keys and HTML-safe escaping; integral floats print as integers."""
    separators = (",", ": ") if indent else (",", ":")
    text = json.dumps(
        _normalize_numbers(value),
        indent=indent,
        sort_keys=True,
        ensure_ascii=False,
        allow_nan=False,
        separators=separators,
    )
    for raw, escaped in _JSON_ESCAPES:
        text = text.replace(raw, escaped)
    return text


@dataclass
class CaseDefinition:
    """Input lines and the events expected from them, with optional local fields."""

    input_lines: list = field(default_factory=list)
    input_fields: FieldSet = field(default_factory=FieldSet)
    expected_events: list = field(default_factory=list)
    description: str = ""


@dataclass
class CaseSet:
    """The contents of one test case file."""

    file: str = ""
    input_plugin: str = ""
    codec: str = "line"
    ignored_fields: list = field(default_factory=list)
    input_fields: FieldSet = field(default_factory=FieldSet)
    input_lines: list = field(default_factory=list)
    expected_events: list = field(default_factory=list)
    export_metadata: bool = False
    export_outputs: bool = False
    testcases: list = field(default_factory=list)
    events: list = field(default_factory=list)
    descriptions: list = field(default_factory=list)

    def convert_bracket_fields(self) -> None:
        """Turn bracket-notation keys into nested structures.

        Applies to input fields, expected events and, with the json_lines
        codec, to the JSON input lines.
        """
        self.input_fields = FieldSet(parse_all_bracket_properties(self.input_fields))
        for case in self.testcases:
            case.input_fields = FieldSet(parse_all_bracket_properties(case.input_fields))
        self.expected_events = [parse_all_bracket_properties(event) for event in self.expected_events]
        if self.codec == "json_lines":
            converted = []
            for line in self.input_lines:
                try:
                    obj = json.loads(line)
                except ValueError as exc:
                    raise CaseSetError(str(exc)) from exc
                if not isinstance(obj, dict):
                    raise CaseSetError(f"input line is not a JSON object: {line}")
                converted.append(_dump_json(parse_all_bracket_properties(obj)))
            self.input_lines = converted

    def compare(self, events, diff_command, live_producer) -> bool:
        """Compare events with the expected ones, publishing a ComparisonResult for each.

        Each pair is written as pretty-printed JSON and passed to the diff
        command. Returns whether every event matched; raises if the diff
        command can't be run or fails.
        """
        path = os.path.basename(self.file) or "."
        if len(self.expected_events) != len(events):
            received = _dump_json(list(events), indent=2)
            live_producer.update(
                ComparisonResult(
                    name=_COMPARE_NAME,
                    status=False,
                    explain=(
                        f"Expected {len(self.expected_events)} event(s), got {len(events)} instead.\n"
                        f"Received events: {received}"
                    ),
                    path=path,
                    event_index=0,
                )
            )
            return False

        if not events:
            live_producer.update(
                ComparisonResult(
                    name=_COMPARE_NAME, status=True, explain="Drop all events", path=path, event_index=0
                )
            )
            return True

        status = True
        with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tempdir:
            for index, actual in enumerate(events):
                description = self.descriptions[index] if index < len(self.descriptions) else ""
                name = f"Comparing message {index + 1} of {len(events)}"
                if description:
                    name += f" ({description})"

                for ignored in self.ignored_fields:
                    remove_fields(ignored, actual)

                # $TMP/<random>/<test case file>/<event #>/<actual|expected>
                result_dir = os.path.join(tempdir, path, str(index + 1))
                actual_path = os.path.join(result_dir, "actual")
                marshal_to_file(actual, actual_path)
                expected_path = os.path.join(result_dir, "expected")
                marshal_to_file(self.expected_events[index], expected_path)

                matched, explain = run_diff_command(diff_command, expected_path, actual_path)
                if not matched:
                    status = False
                live_producer.update(
                    ComparisonResult(
                        name=name, status=matched, explain=explain, path=path, event_index=index
                    )
                )
        return status


def _take(doc: dict, key: str, kinds, default):
    value = doc.get(key)
    if value is None:
        return default
    if not isinstance(value, kinds):
        raise CaseSetError(f"{key!r} has an unexpected type: {type(value).__name__}")
    return value


def _string_list(doc: dict, key: str) -> list:
    values = _take(doc, key, list, [])
    if not all(isinstance(value, str) for value in values):
        raise CaseSetError(f"{key!r} must be a list of strings")
    return list(values)


def _event_list(doc: dict, key: str) -> list:
    values = _take(doc, key, list, [])
    if not all(isinstance(value, dict) for value in values):
        raise CaseSetError(f"{key!r} must be a list of objects")
    return list(values)


def _parse_case(doc) -> CaseDefinition:
    if not isinstance(doc, dict):
        raise CaseSetError("each test case must be an object")
    return CaseDefinition(
        input_lines=_string_list(doc, "input"),
        input_fields=FieldSet(_take(doc, "fields", dict, {})),
        expected_events=_event_list(doc, "expected"),
        description=_take(doc, "description", str, ""),
    )


def _parse_document(doc) -> CaseSet:
    if doc is None:
        doc = {}
    if not isinstance(doc, dict):
        raise CaseSetError("test case file must contain an object")
    if "fields" in doc:
        fields = doc["fields"]
        if fields is not None and not isinstance(fields, dict):
            raise CaseSetError(f"'fields' has an unexpected type: {type(fields).__name__}")
    else:
        fields = {}
    try:
        validate_fields(fields)
    except ValueError as exc:
        raise CaseSetError(str(exc)) from exc
    return CaseSet(
        input_plugin=_take(doc, "input_plugin", str, ""),
        codec=_take(doc, "codec", str, "line"),
        ignored_fields=_string_list(doc, "ignore"),
        input_fields=FieldSet(fields),
        input_lines=_string_list(doc, "input"),
        expected_events=_event_list(doc, "expected"),
        export_metadata=_take(doc, "export_metadata", bool, False),
        export_outputs=_take(doc, "export_outputs", bool, False),
        testcases=[_parse_case(case) for case in _take(doc, "testcases", list, [])],
    )


def load_case_set(stream, config_type) -> CaseSet:
    """Read a test case set from a stream in json, yaml or yml format.

    The codec defaults to "line" and @version is always ignored in addition
    to the fields the file lists.
    """
    if config_type not in _CONFIG_TYPES:
        raise CaseSetError("Config type must be json or yaml or yml")
    data = stream.read()
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        doc = json.loads(data) if config_type == "json" else yaml.safe_load(data)
    except (ValueError, yaml.YAMLError) as exc:
        raise CaseSetError(str(exc)) from exc

    case_set = _parse_document(doc)
    case_set.convert_bracket_fields()

    case_set.ignored_fields = sorted([*case_set.ignored_fields, *DEFAULT_IGNORED_FIELDS])
    case_set.descriptions = [""] * len(case_set.expected_events)
    case_set.events = [case_set.input_fields.clone() for _ in case_set.input_lines]

    for case in case_set.testcases:
        lines = case.input_lines or [DUMMY_EVENT_INPUT_INDICATOR]
        case_set.input_lines.extend(lines)
        case_set.expected_events.extend(case.expected_events)
        for _ in lines:
            event_fields = case_set.input_fields.clone()
            event_fields.update(case.input_fields)
            case_set.events.append(event_fields)
        case_set.descriptions.extend(case.description for _ in case.expected_events)

    log.debug("Current test case set after converting fields: %r", case_set)
    return case_set


def load_case_set_file(path) -> CaseSet:
    """Read a test case set from a file, its format given by the extension."""
    abspath = os.path.abspath(path)
    extension = os.path.splitext(abspath)[1].lstrip(".")
    log.debug("Reading test case file: %s (%s)", path, abspath)
    with open(path, "rb") as handle:
        try:
            case_set = load_case_set(handle, extension)
        except (CaseSetError, UnicodeDecodeError) as exc:
            raise CaseSetError(f"Error reading/unmarshalling {path}: {exc}") from exc
    case_set.file = abspath
    return case_set


def marshal_to_file(event, filename) -> None:
    """Write an event as pretty-printed JSON, creating parent directories."""
    try:
        text = _dump_json(event, indent=2)
    except (TypeError, ValueError) as exc:
        raise CaseSetError(f"Failed to marshal {event!r} as JSON: {exc}") from exc
    os.makedirs(os.path.dirname(filename), mode=0o700, exist_ok=True)
    with open(filename, "w", encoding="utf-8") as handle:
        handle.write(text + "\n")


def run_diff_command(command, file1, file2) -> tuple[bool, str]:
    """Run a diff command on two files and return (equal, combined output).

    Exit status 1 means the files differ; any other non-zero status raises
    CalledProcessError.
    """
    full_command = [*command, file1, file2]
    completed = subprocess.run(
        full_command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
    )
    output = completed.stdout.decode("utf-8", errors="replace")
    if completed.returncode == 0:
        return True, output
    if completed.returncode == 1:
        return False, output
    raise subprocess.CalledProcessError(completed.returncode, full_command, output=output)