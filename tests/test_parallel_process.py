import io
import os
import subprocess
import sys
from types import SimpleNamespace

import pytest
from packaging.version import Version

from lfverifier.events import BadLogstashOutputError
from lfverifier.fieldset import FieldSet
from lfverifier.files import DeletedTempFile
from lfverifier.invocation import Invocation
from lfverifier.parallel_process import (
    CaseStream,
    ParallelProcess,
    cleanup_streams,
    get_socket_in_out_plugins,
)

ECHO_SOCKET = (
    "import os, socket, sys\n"
    "s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)\n"
    "s.connect(os.environ['TEST_SOCKET'])\n"
    "chunks = []\n"
    "while True:\n"
    "    b = s.recv(4096)\n"
    "    if not b:\n"
    "        break\n"
    "    chunks.append(b)\n"
    "sys.stdout.write(b''.join(chunks).decode())\n"
)

WRITE_OUTPUT = (
    "import os\n"
    "with open(os.environ['TEST_OUT'], 'w') as f:\n"
    "    f.write(os.environ['TEST_CONTENT'])\n"
)


def _env(**extra):
    env = [f"{k}={v}" for k, v in os.environ.items()]
    env.extend(f"{k}={v}" for k, v in extra.items())
    return env


@pytest.fixture
def receiver():
    with DeletedTempFile() as f:
        yield f


def _stream(path, codec, fields, receiver):
    return SimpleNamespace(sender_path=path, input_codec=codec, fields=fields, receiver=receiver)


def _output(index, receiver):
    return (
        f'if [@metadata][__lfv_testcase] == "{index}" '
        f'{{ file {{ path => "{receiver.name}" codec => "json_lines" }} }}'
    )


def test_plugins_single_stream(receiver):
    inputs, outputs = get_socket_in_out_plugins([_stream("/tmp/foo", "any_codec", FieldSet(), receiver)])
    assert inputs == [
        'unix { mode => "client" path => "/tmp/foo" codec => any_codec '
        'add_field => { "[@metadata][__lfv_testcase]" => "0" } }'
    ]
    assert outputs == [_output(0, receiver)]


def test_plugins_multiple_streams(receiver):
    streams = [
        _stream("/tmp/foo", "any_codec", FieldSet(), receiver),
        _stream("/tmp/bar", "other_codec", FieldSet(), receiver),
    ]
    inputs, outputs = get_socket_in_out_plugins(streams)
    assert inputs == [
        'unix { mode => "client" path => "/tmp/foo" codec => any_codec '
        'add_field => { "[@metadata][__lfv_testcase]" => "0" } }',
        'unix { mode => "client" path => "/tmp/bar" codec => other_codec '
        'add_field => { "[@metadata][__lfv_testcase]" => "1" } }',
    ]
    assert outputs == [_output(0, receiver), _output(1, receiver)]


def test_plugins_with_extra_metadata(receiver):
    fields = FieldSet({"@metadata": {"foo": "bar"}})
    inputs, outputs = get_socket_in_out_plugins([_stream("/tmp/foo", "any_codec", fields, receiver)])
    assert inputs == [
        'unix { mode => "client" path => "/tmp/foo" codec => any_codec '
        'add_field => { "[@metadata][__lfv_testcase]" => "0" "[@metadata][foo]" => "bar" } }'
    ]
    assert outputs == [_output(0, receiver)]


def test_plugins_non_mapping_metadata_rejected(receiver):
    fields = FieldSet({"@metadata": "foo"})
    with pytest.raises(ValueError) as info:
        get_socket_in_out_plugins([_stream("/tmp/foo", "any_codec", fields, receiver)])
    assert str(info.value) == (
        "the supplied contents of the @metadata field must be a hash (found string instead)"
    )


def test_parallel_process_echoes_socket_input():
    ts = CaseStream("Codec", FieldSet(), 5)
    p = ParallelProcess(sys.executable, ["-c", ECHO_SOCKET], _env(TEST_SOCKET=ts.sender_path), io.BytesIO())
    p.streams = [ts]
    try:
        p.start()
        assert ts.write(b"test line\n") == len(b"test line\n")
        ts.close()
        result = p.wait()
    finally:
        p.release()
    assert result.output == "test line\n"
    assert result.success is True
    assert result.events == [[]]


def test_wait_strips_socket_path_only():
    ts = CaseStream("line", FieldSet(), 5)
    content = f'{{"path": "{ts.sender_path}", "a": 1}}\n{{"path": "/other"}}\n'
    env = _env(TEST_OUT=ts.receiver.name, TEST_CONTENT=content)
    p = ParallelProcess(sys.executable, ["-c", WRITE_OUTPUT], env, io.BytesIO(b"log text"))
    p.streams = [ts]
    try:
        p.start()
        result = p.wait()
    finally:
        p.release()
    assert result.events == [[{"a": 1}, {"path": "/other"}]]
    assert result.log == "log text"
    assert result.success is True


def test_wait_reports_bad_output():
    ts = CaseStream("line", FieldSet(), 5)
    env = _env(TEST_OUT=ts.receiver.name, TEST_CONTENT='{"a": 1}\nnot json\n')
    p = ParallelProcess(sys.executable, ["-c", WRITE_OUTPUT], env, io.BytesIO())
    p.streams = [ts]
    try:
        p.start()
        with pytest.raises(BadLogstashOutputError) as info:
            p.wait()
    finally:
        p.release()
    assert info.value.result.success is False
    assert info.value.result.events == [[{"a": 1}]]


def test_wait_failure_raises():
    ts = CaseStream("line", FieldSet(), 5)
    p = ParallelProcess(sys.executable, ["-c", "import sys; sys.exit(1)"], None, io.BytesIO(b"boom"))
    p.streams = [ts]
    try:
        p.start()
        with pytest.raises(subprocess.CalledProcessError) as info:
            p.wait()
    finally:
        p.release()
    assert info.value.returncode == 1
    assert info.value.result.success is False
    assert info.value.result.log == "boom"


def test_wait_tolerates_unix_input_ioerror():
    ts = CaseStream("line", FieldSet(), 5)
    log_file = io.BytesIO(b"An unexpected error occurred! closed stream (IOError)")
    p = ParallelProcess(sys.executable, ["-c", "import sys; sys.exit(1)"], None, log_file)
    p.streams = [ts]
    try:
        p.start()
        result = p.wait()
    finally:
        p.release()
    assert result.success is True
    assert result.events == [[]]


def test_wait_before_start_fails():
    p = ParallelProcess(sys.executable, [], None, io.BytesIO())
    try:
        with pytest.raises(RuntimeError):
            p.wait()
    finally:
        p.release()


def test_write_times_out_without_connection():
    ts = CaseStream("line", FieldSet(), 0.1)
    try:
        with pytest.raises(TimeoutError):
            ts.write(b"data")
    finally:
        ts.cleanup()


def test_cleanup_removes_resources():
    ts = CaseStream("line", FieldSet(), 1)
    socket_dir = os.path.dirname(ts.sender_path)
    receiver_path = ts.receiver.name
    assert os.path.basename(ts.sender_path) == "socket"
    assert os.path.exists(ts.sender_path)
    cleanup_streams([ts])
    assert not os.path.exists(socket_dir)
    assert not os.path.exists(receiver_path)


def test_create_writes_io_config(tmp_path):
    config = tmp_path / "filters.conf"
    config.write_text("")
    inv = Invocation(str(tmp_path / "logstash"), [], Version("2.4.0"), str(config))
    ts = CaseStream("line", FieldSet(), 1)
    try:
        p = ParallelProcess.create(inv, [ts], [])
        with open(inv.io_config_path, encoding="utf-8") as handle:
            contents = handle.read()
        expected_input = (
            f'input {{ unix {{ mode => "client" path => "{ts.sender_path}" codec => line '
            'add_field => { "[@metadata][__lfv_testcase]" => "0" } } } '
        )
        assert contents == expected_input + "\n" + f"output {{ {_output(0, ts.receiver)} }}"
        assert p.env["TZ"] == "UTC"
        assert p.command == str(tmp_path / "logstash")
        assert p.streams == [ts]
        p.release()
    finally:
        inv.release()


def test_create_cleans_up_on_error(tmp_path):
    config = tmp_path / "filters.conf"
    config.write_text("")
    inv = Invocation(str(tmp_path / "logstash"), [], Version("2.4.0"), str(config))
    ts = CaseStream("line", FieldSet({"@metadata": 5}), 1)
    socket_dir = os.path.dirname(ts.sender_path)
    try:
        with pytest.raises(ValueError):
            ParallelProcess.create(inv, [ts], [])
    finally:
        inv.release()
    assert not os.path.exists(socket_dir)