import pytest

from lfverifier.helpers import (
    extract_bracket_fields,
    parse_all_bracket_properties,
    parse_bracket_property,
    remove_field,
    remove_fields,
)


@pytest.mark.parametrize(
    "key, expected",
    [
        ("[log][file][path]", ["log", "file", "path"]),
        ("message", ["message"]),
        ("[log]badformat", ["[log]badformat"]),
    ],
)
def test_extract_bracket_fields(key, expected):
    assert extract_bracket_fields(key) == expected


def test_extract_bracket_fields_trailing_newline_not_nested():
    assert extract_bracket_fields("[a][b]\n") == ["[a][b]\n"]


@pytest.mark.parametrize(
    "keys, value, expected",
    [
        (
            ["log", "file", "path"],
            "/tmp/test.log",
            {"log": {"file": {"path": "/tmp/test.log"}}},
        ),
        (["message"], "/tmp/test.log", {"message": "/tmp/test.log"}),
    ],
)
def test_parse_bracket_property(keys, value, expected):
    result = {}
    parse_bracket_property(keys, value, result)
    assert result == expected


def test_parse_bracket_property_into_scalar_fails():
    with pytest.raises(TypeError):
        parse_bracket_property(["a", "b"], 1, {"a": "scalar"})


def test_parse_all_bracket_properties():
    data = {
        "message": "my message",
        "[log][file][path]": "/tmp/test.log",
        "[log][origin][line]": 2,
    }
    expected = {
        "message": "my message",
        "log": {
            "file": {"path": "/tmp/test.log"},
            "origin": {"line": 2},
        },
    }
    assert parse_all_bracket_properties(data) == expected


def test_parse_all_bracket_properties_nested_maps_and_none():
    assert parse_all_bracket_properties({"a": {"[b][c]": 1}}) == {"a": {"b": {"c": 1}}}
    assert parse_all_bracket_properties(None) == {}


def _sample():
    return {
        "message": "my message",
        "log": {"file": {"path": "/tmp/file.log"}},
        "source": "test",
    }


def test_remove_field_plain():
    data = _sample()
    remove_field(["message"], data)
    assert data == {"log": {"file": {"path": "/tmp/file.log"}}, "source": "test"}


def test_remove_field_last_nested_field_removes_parents():
    data = _sample()
    remove_field(["log", "file", "path"], data)
    assert data == {"message": "my message", "source": "test"}


def test_remove_field_with_siblings():
    data = {
        "message": "my message",
        "log": {"file": {"path": "/tmp/file.log", "size": "test"}},
        "source": "test",
    }
    remove_field(["log", "file", "path"], data)
    assert data == {
        "message": "my message",
        "log": {"file": {"size": "test"}},
        "source": "test",
    }


def test_remove_field_missing_or_scalar_path_is_noop():
    data = {"a": "scalar"}
    remove_field(["a", "b"], data)
    remove_field(["x", "y"], data)
    assert data == {"a": "scalar"}


def test_remove_fields_plain():
    data = _sample()
    remove_fields("message", data)
    assert data == {"log": {"file": {"path": "/tmp/file.log"}}, "source": "test"}


def test_remove_fields_bracket():
    data = _sample()
    remove_fields("[log][file][path]", data)
    assert data == {"message": "my message", "source": "test"}