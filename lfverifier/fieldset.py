"""Event field sets and their rendering as Logstash hash literals."""

from __future__ import annotations

import copy
import math
from decimal import Decimal

_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
}


def _quote(text: str) -> str:
    """Return a double-quoted, escaped string literal."""
    parts = ['"']
    for ch in text:
        if ch == '"':
            parts.append('\\"')
        elif ch == "\\":
            parts.append("\\\\")
        elif ch in _ESCAPES:
            parts.append(_ESCAPES[ch])
        elif ch.isprintable():
            parts.append(ch)
        else:
            code = ord(ch)
            if code < 0x80:
                parts.append(f"\\x{code:02x}")
            elif code < 0x10000:
                parts.append(f"\\u{code:04x}")
            else:
                parts.append(f"\\U{code:08x}")
    parts.append('"')
    return "".join(parts)


def _format_float(value: float) -> str:
    """Render a float without exponential notation, which Logstash rejects."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    shortest = Decimal(repr(value))
    exponent = shortest.adjusted()
    if exponent < -4 or exponent >= 6:
        return f"{value:.6f}"
    return format(shortest.normalize(), "f")


def serialize_as_logstash_literal(key, value):
    """Serialize one field into parallel lists of bracketed keys and literals.

    Nested mappings are flattened into keys such as ``[a][b]``. Raises
    ValueError for values Logstash cannot accept.
    """
    key = f"[{key}]"
    if isinstance(value, bool):
        return [key], ["true" if value else "false"]
    if isinstance(value, float):
        return [key], [_format_float(value)]
    if isinstance(value, int):
        return [key], [str(value)]
    if isinstance(value, str):
        return [key], [_quote(value)]
    if isinstance(value, (list, tuple)):
        literals = []
        for element in value:
            if isinstance(element, dict):
                raise ValueError(
                    f"Unsupported type {type(element).__name__} in "
                    f"{type(value).__name__}: {element!r}"
                )
            _, rendered = serialize_as_logstash_literal(key, element)
            literals.append(rendered[0])
        return [key], ["[" + ", ".join(literals) + "]"]
    if isinstance(value, dict):
        keys: list[str] = []
        literals = []
        for inner_key, inner_value in value.items():
            inner_keys, inner_literals = serialize_as_logstash_literal(inner_key, inner_value)
            keys.extend(key + k for k in inner_keys)
            literals.extend(inner_literals)
        return keys, literals
    raise ValueError(f"Unsupported type {type(value).__name__}: {value!r}")


class FieldSet(dict):
    """Fields to add to a Logstash event."""

    def logstash_hash(self) -> str:
        """Render as ``{ "key1" => value1 ... }``, entries sorted.

        Raises ValueError if a value cannot be expressed in Logstash.
        """
        entries = []
        for name, value in self.items():
            try:
                keys, literals = serialize_as_logstash_literal(name, value)
            except ValueError as exc:
                raise ValueError(
                    f"Problem converting field {_quote(name)} to Logstash format: {exc}"
                ) from exc
            for key, literal in zip(keys, literals):
                if key.rfind("[") == 0:
                    key = key.strip("[]")
                entries.append(f"{_quote(key)} => {literal}")
        entries.sort()
        return "{ " + " ".join(entries) + " }"

    def is_valid(self) -> bool:
        """Return whether every field can be rendered for Logstash."""
        try:
            self.logstash_hash()
        except ValueError:
            return False
        return True

    def clone(self) -> "FieldSet":
        """Return a deep copy."""
        return FieldSet(copy.deepcopy(dict(self)))


def validate_fields(fields) -> None:
    """Raise ValueError if the fields are missing or unacceptable to Logstash."""
    if fields is None:
        raise ValueError('Fields must not be "null".')
    FieldSet(fields).logstash_hash()