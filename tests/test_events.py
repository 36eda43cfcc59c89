import io

import pytest

from lfverifier.events import BadLogstashOutputError, read_events


@pytest.mark.parametrize(
    "text, expected",
    [
        ("", []),
        ('{"a": 1}', [{"a": 1}]),
        ('{"a": 1}\n{"b": 2}', [{"a": 1}, {"b": 2}]),
        ('{"a": 1}\n{"b": 2}\n', [{"a": 1}, {"b": 2}]),
    ],
)
def test_read_events(text, expected):
    assert read_events(io.StringIO(text)) == expected


def test_bytes_stream_is_decoded():
    assert read_events(io.BytesIO(b'{"a": "b"}\r\n')) == [{"a": "b"}]


def test_broken_json_is_reported():
    with pytest.raises(BadLogstashOutputError) as info:
        read_events(io.StringIO("this is not JSON"))
    assert info.value.events == []
    assert info.value.output == "this is not JSON"
    assert str(info.value) == "Logstash emitted this line which can't be parsed as JSON: this is not JSON"


def test_collected_events_are_kept_on_error():
    with pytest.raises(BadLogstashOutputError) as info:
        read_events(io.StringIO('{"a": 1}\nthis is not JSON'))
    assert info.value.events == [{"a": 1}]


def test_non_object_json_is_rejected():
    with pytest.raises(BadLogstashOutputError) as info:
        read_events(io.StringIO("[1, 2]"))
    assert info.value.output == "[1, 2]"