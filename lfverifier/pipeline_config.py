"""Preparing a directory of pipeline configuration files for Logstash."""

from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass, field

from lfverifier.files import copy_file

log = logging.getLogger(__name__)

_SECTION_KINDS = ("input", "filter", "output")
_FIELD_REF = re.compile(r"\[[^\[\]\s,\"']+\]")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_BAREWORD = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_OPERATORS = ("=>", "==", "!=", "<=", ">=", "=~", "!~", "{", "}", "[", "]", "(", ")", ",", "<", ">", "!")
_INDENT = "  "


class PipelineConfigError(Exception):
    """A pipeline configuration could not be prepared or parsed."""


@dataclass
class _Token:
    kind: str
    text: str
    start: int
    end: int


@dataclass
class _Plugin:
    name: str
    attributes: list = field(default_factory=list)


@dataclass
class _Hash:
    entries: list = field(default_factory=list)


@dataclass
class _Array:
    values: list = field(default_factory=list)


@dataclass
class _Branch:
    clauses: list = field(default_factory=list)


@dataclass
class _Section:
    kind: str
    body: list = field(default_factory=list)


def _scan_quoted(text: str, pos: int, quote: str) -> int:
    i = pos + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        i += 1
    raise PipelineConfigError(f"unterminated literal starting at offset {pos}")


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(text):
        ch = text[pos]
        if ch.isspace():
            pos += 1
            continue
        if ch == "#":
            newline = text.find("\n", pos)
            pos = len(text) if newline < 0 else newline + 1
            continue
        if ch in "\"'/":
            end = _scan_quoted(text, pos, ch)
            tokens.append(_Token("regex" if ch == "/" else "string", text[pos:end], pos, end))
            pos = end
            continue
        if ch == "[":
            match = _FIELD_REF.match(text, pos)
            if match:
                tokens.append(_Token("ref", match.group(), pos, match.end()))
                pos = match.end()
                continue
        for kind, pattern in (("number", _NUMBER), ("bareword", _BAREWORD)):
            match = pattern.match(text, pos)
            if match:
                tokens.append(_Token(kind, match.group(), pos, match.end()))
                pos = match.end()
                break
        else:
            for op in _OPERATORS:
                if text.startswith(op, pos):
                    tokens.append(_Token("op", op, pos, pos + len(op)))
                    pos += len(op)
                    break
            else:
                raise PipelineConfigError(f"unexpected character {ch!r} at offset {pos}")
    return tokens


class _Parser:
    def __init__(self, text: str):
        self._text = text
        self._tokens = _tokenize(text)
        self._index = 0

    def _peek(self, offset: int = 0) -> _Token | None:
        index = self._index + offset
        return self._tokens[index] if index < len(self._tokens) else None

    def _next(self) -> _Token:
        token = self._peek()
        if token is None:
            raise PipelineConfigError("unexpected end of configuration")
        self._index += 1
        return token

    @staticmethod
    def _is_op(token: _Token | None, text: str) -> bool:
        return token is not None and token.kind == "op" and token.text == text

    @staticmethod
    def _is_word(token: _Token | None, text: str) -> bool:
        return token is not None and token.kind == "bareword" and token.text == text

    def _expect(self, text: str) -> _Token:
        token = self._next()
        if not self._is_op(token, text):
            raise PipelineConfigError(f"expected {text!r} at offset {token.start}, found {token.text!r}")
        return token

    def parse(self) -> list[_Section]:
        sections = []
        while self._peek() is not None:
            token = self._next()
            if token.kind != "bareword" or token.text not in _SECTION_KINDS:
                raise PipelineConfigError(
                    f"expected input, filter or output at offset {token.start}, found {token.text!r}"
                )
            self._expect("{")
            sections.append(_Section(token.text, self._parse_body()))
        return sections

    def _parse_body(self) -> list:
        items = []
        while True:
            token = self._peek()
            if token is None:
                raise PipelineConfigError("unexpected end of configuration")
            if self._is_op(token, "}"):
                self._next()
                return items
            if self._is_word(token, "if"):
                items.append(self._parse_branch())
            elif token.kind == "bareword":
                items.append(self._parse_plugin())
            else:
                raise PipelineConfigError(f"unexpected {token.text!r} at offset {token.start}")

    def _parse_plugin(self) -> _Plugin:
        plugin = _Plugin(self._next().text)
        self._expect("{")
        while True:
            token = self._next()
            if self._is_op(token, "}"):
                return plugin
            if token.kind not in ("bareword", "string", "number"):
                raise PipelineConfigError(f"unexpected {token.text!r} at offset {token.start}")
            self._expect("=>")
            plugin.attributes.append((token.text, self._parse_value()))

    def _parse_value(self):
        token = self._peek()
        if token is None:
            raise PipelineConfigError("unexpected end of configuration")
        if token.kind == "bareword" and self._is_op(self._peek(1), "{"):
            return self._parse_plugin()
        if token.kind in ("string", "number", "bareword", "ref"):
            return self._next().text
        if self._is_op(token, "["):
            return self._parse_array()
        if self._is_op(token, "{"):
            return self._parse_hash()
        raise PipelineConfigError(f"unexpected {token.text!r} at offset {token.start}")

    def _parse_array(self) -> _Array:
        self._expect("[")
        array = _Array()
        if self._is_op(self._peek(), "]"):
            self._next()
            return array
        while True:
            array.values.append(self._parse_value())
            token = self._next()
            if self._is_op(token, "]"):
                return array
            if not self._is_op(token, ","):
                raise PipelineConfigError(f"unexpected {token.text!r} at offset {token.start}")

    def _parse_hash(self) -> _Hash:
        self._expect("{")
        result = _Hash()
        while True:
            token = self._next()
            if self._is_op(token, "}"):
                return result
            if self._is_op(token, ","):
                continue
            if token.kind not in ("bareword", "string", "number"):
                raise PipelineConfigError(f"unexpected {token.text!r} at offset {token.start}")
            self._expect("=>")
            result.entries.append((token.text, self._parse_value()))

    def _parse_condition(self) -> str:
        first = self._peek()
        last = None
        depth = 0
        while True:
            token = self._peek()
            if token is None:
                raise PipelineConfigError("unexpected end of configuration")
            if token.kind == "op":
                if depth == 0 and token.text == "{":
                    break
                if token.text in ("(", "["):
                    depth += 1
                elif token.text in (")", "]"):
                    depth -= 1
            last = self._next()
        if last is None:
            raise PipelineConfigError(f"empty condition at offset {first.start}")
        return self._text[first.start:last.end].strip()

    def _parse_branch(self) -> _Branch:
        self._next()
        branch = _Branch()
        condition = self._parse_condition()
        self._expect("{")
        branch.clauses.append(("if", condition, self._parse_body()))
        while self._is_word(self._peek(), "else"):
            self._next()
            if self._is_word(self._peek(), "if"):
                self._next()
                condition = self._parse_condition()
                self._expect("{")
                branch.clauses.append(("else if", condition, self._parse_body()))
            else:
                self._expect("{")
                branch.clauses.append(("else", None, self._parse_body()))
                break
        return branch


def _render_value(value, depth: int) -> str:
    pad = _INDENT * depth
    if isinstance(value, _Plugin):
        if not value.attributes:
            return f"{value.name} {{}}"
        lines = [f"{value.name} {{"]
        lines.extend(
            f"{pad}{_INDENT}{name} => {_render_value(inner, depth + 1)}"
            for name, inner in value.attributes
        )
        lines.append(f"{pad}}}")
        return "\n".join(lines)
    if isinstance(value, _Hash):
        if not value.entries:
            return "{}"
        lines = ["{"]
        lines.extend(
            f"{pad}{_INDENT}{key} => {_render_value(inner, depth + 1)}" for key, inner in value.entries
        )
        lines.append(f"{pad}}}")
        return "\n".join(lines)
    if isinstance(value, _Array):
        return "[" + ", ".join(_render_value(inner, depth) for inner in value.values) + "]"
    return value


def _render_item(item, depth: int) -> str:
    pad = _INDENT * depth
    if isinstance(item, _Plugin):
        return pad + _render_value(item, depth)
    lines = []
    for position, (keyword, condition, body) in enumerate(item.clauses):
        head = keyword if condition is None else f"{keyword} {condition}"
        lines.append(f"{pad}{head} {{" if position == 0 else f"{pad}}} {head} {{")
        lines.extend(_render_item(inner, depth + 1) for inner in body)
    lines.append(f"{pad}}}")
    return "\n".join(lines)


def _render_section(section: _Section) -> str:
    if not section.body:
        return f"{section.kind} {{}}"
    lines = [f"{section.kind} {{"]
    lines.extend(_render_item(item, 1) for item in section.body)
    lines.append("}")
    return "\n".join(lines)


def remove_input_output(path) -> None:
    """Rewrite a Logstash configuration file in place without its input and output sections."""
    with open(path, encoding="utf-8") as handle:
        text = handle.read()
    sections = _Parser(text).parse()
    kept = [section for section in sections if section.kind not in ("input", "output")]
    with open(path, "w", encoding="utf-8") as handle:
        handle.write("".join(_render_section(section) + "\n" for section in kept))


def get_files_in_dir(directory, include_dir) -> list[str]:
    """Return the sorted names of the non-directory entries in a directory.

    With ``include_dir`` the names are joined to the directory path.
    """
    with os.scandir(directory) as entries:
        names = [
            os.path.join(directory, entry.name) if include_dir else entry.name
            for entry in entries
            if not entry.is_dir(follow_symlinks=False)
        ]
    return sorted(names)


def flatten_filenames(filenames) -> list[str]:
    """Replace directories with the files directly inside them (not recursively)."""
    result: list[str] = []
    for name in filenames:
        if os.path.isdir(name):
            result.extend(get_files_in_dir(name, True))
        else:
            os.stat(name)
            result.append(name)
    return result


def get_pipeline_config_dir(directory, configs) -> None:
    """Copy configuration files into a directory, stripped of inputs and outputs.

    Raises PipelineConfigError on I/O problems or if two files share a
    basename; the directory is removed on failure.
    """
    try:
        all_files = flatten_filenames(configs)
    except OSError as exc:
        raise PipelineConfigError(f"Error listing configuration files: {exc}") from exc
    log.debug("Preparing configuration file directory %s with these files: %s", directory, all_files)
    for source in all_files:
        base = os.path.basename(source)
        dest = os.path.join(directory, base)
        try:
            os.stat(dest)
        except FileNotFoundError:
            pass
        except OSError:
            shutil.rmtree(directory, ignore_errors=True)
            raise
        else:
            shutil.rmtree(directory, ignore_errors=True)
            raise PipelineConfigError(
                "The collected list of configuration files contains "
                f"two files with the name {base!r} which isn't allowed."
            )
        try:
            copy_file(source, dest)
        except OSError as exc:
            shutil.rmtree(directory, ignore_errors=True)
            raise PipelineConfigError(f"Config file copy failed: {exc}") from exc
        try:
            remove_input_output(dest)
        except (OSError, UnicodeDecodeError, PipelineConfigError) as exc:
            shutil.rmtree(directory, ignore_errors=True)
            raise PipelineConfigError(f"Failed to remove the input and output sections: {exc}") from exc