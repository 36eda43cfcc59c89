"""Conversion between bracket field notation and nested event structures."""

from __future__ import annotations

import re

_BRACKET_KEY = re.compile(r"(\[[^\[\],]+\])+")
_BRACKET_FIELD = re.compile(r"\[([^\[\],]+)\]")


def extract_bracket_fields(key) -> list[str]:
    """Split ``[a][b][c]`` into ``["a", "b", "c"]``; other keys stay whole."""
    if _BRACKET_KEY.fullmatch(key):
        return _BRACKET_FIELD.findall(key)
    return [key]


def parse_bracket_property(keys, value, result) -> None:
    """Store a value in ``result`` under the nested path given by ``keys``."""
    head, *rest = keys
    if not rest:
        result[head] = value
        return
    child = result.setdefault(head, {})
    if not isinstance(child, dict):
        raise TypeError(f"field {head!r} is not a hash and can't hold nested fields")
    parse_bracket_property(rest, value, child)


def parse_all_bracket_properties(data) -> dict:
    """Return a copy of a mapping with bracket-notation keys turned into nested mappings."""
    result: dict = {}
    for key, value in (data or {}).items():
        if isinstance(value, dict):
            value = parse_all_bracket_properties(value)
        parse_bracket_property(extract_bracket_fields(key), value, result)
    return result


def remove_field(keys, data) -> None:
    """Delete the field at a nested path, dropping mappings left empty."""
    head, *rest = keys
    if not rest:
        data.pop(head, None)
        return
    child = data.get(head)
    if not isinstance(child, dict):
        return
    remove_field(rest, child)
    if not child:
        del data[head]


def remove_fields(key, data) -> None:
    """Delete a field given in plain or bracket notation from a nested mapping."""
    remove_field(extract_bracket_fields(key), data)