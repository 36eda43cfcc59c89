"""Running Logstash with several test cases fed through Unix domain sockets."""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import socket
import subprocess
import tempfile
import threading

from lfverifier.environment import get_limited_environment
from lfverifier.events import BadLogstashOutputError, ParallelResult, read_events
from lfverifier.fieldset import FieldSet
from lfverifier.files import DeletedTempFile

log = logging.getLogger(__name__)

_ACCEPT_POLL = 0.2
_UNIX_INPUT_IOERROR = re.compile(r"An unexpected error occurred.*closed stream.*IOError")
_TYPE_NAMES = {
    str: "string",
    bool: "bool",
    int: "int",
    float: "float64",
    list: "[]interface {}",
    type(None): "<nil>",
}


def _decode(data) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def _type_name(value) -> str:
    return _TYPE_NAMES.get(type(value), type(value).__name__)


class CaseStream:
    """Input socket and output file for the events of one test case.

    Logstash connects to the socket at ``sender_path`` as a client; events
    written to the stream are sent over that connection. Logstash writes the
    resulting events to ``receiver``. ``timeout`` is the number of seconds
    ``write`` waits for Logstash to connect.
    """

    def __init__(self, input_codec, fields, timeout):
        self.input_codec = input_codec
        self.fields = fields
        self.timeout = timeout
        self.sender = None
        self.receiver = None
        self._ready = threading.Event()
        self._stopped = threading.Event()
        self._dir = tempfile.mkdtemp()
        self.sender_path = os.path.join(self._dir, "socket")
        self._listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            self._listener.bind(self.sender_path)
            self._listener.listen(1)
            self._listener.settimeout(_ACCEPT_POLL)
            # Logstash's stdout carries other noise, so events go to a file.
            self.receiver = DeletedTempFile()
        except BaseException:
            self._listener.close()
            shutil.rmtree(self._dir, ignore_errors=True)
            raise
        threading.Thread(target=self._accept, daemon=True).start()

    def _accept(self) -> None:
        try:
            while not self._stopped.is_set():
                try:
                    conn, _ = self._listener.accept()
                except socket.timeout:
                    continue
                if self._stopped.is_set():
                    conn.close()
                    return
                conn.settimeout(None)
                self.sender = conn
                return
        except OSError as exc:
            if not self._stopped.is_set():
                log.error("Error while accept unix socket: %s", exc)
        finally:
            self._listener.close()
            self._ready.set()

    def write(self, data) -> int:
        """Send data to the connected Logstash input.

        Raises TimeoutError if Logstash doesn't connect within the timeout.
        """
        if not self._ready.wait(self.timeout):
            raise TimeoutError("Write timeout error")
        if self.sender is None:
            raise ConnectionError("no connection was accepted on the test case socket")
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.sender.sendall(data)
        return len(data)

    def close(self) -> None:
        """Close the connection to Logstash, signalling the end of input."""
        if self.sender is not None:
            sender, self.sender = self.sender, None
            sender.close()

    def cleanup(self) -> None:
        """Close the socket and remove every temporary resource."""
        self._stopped.set()
        self._listener.close()
        self.close()
        shutil.rmtree(self._dir, ignore_errors=True)
        if self.receiver is not None:
            self.receiver.close()

    def __enter__(self) -> "CaseStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()


def cleanup_streams(streams) -> None:
    """Clean up every stream in the iterable."""
    for stream in streams:
        stream.cleanup()


def get_socket_in_out_plugins(streams) -> tuple[list[str], list[str]]:
    """Return the Logstash input and output plugin definitions for the streams.

    Each stream's fields gain ``[@metadata][__lfv_testcase]`` holding its
    index, which routes its events to its own output file. Raises ValueError
    if a stream's ``@metadata`` field is not a mapping.
    """
    inputs: list[str] = []
    outputs: list[str] = []
    for index, stream in enumerate(streams):
        metadata = stream.fields.get("@metadata")
        if "@metadata" in stream.fields:
            if not isinstance(metadata, dict):
                raise ValueError(
                    "the supplied contents of the @metadata field must be a hash "
                    f"(found {_type_name(metadata)} instead)"
                )
            metadata["__lfv_testcase"] = str(index)
        else:
            stream.fields["@metadata"] = {"__lfv_testcase": str(index)}

        field_hash = FieldSet(stream.fields).logstash_hash()
        inputs.append(
            f'unix {{ mode => "client" path => {json.dumps(stream.sender_path)} '
            f"codec => {stream.input_codec} add_field => {field_hash} }}"
        )
        outputs.append(
            f'if [@metadata][__lfv_testcase] == "{index}" '
            f'{{ file {{ path => {json.dumps(stream.receiver.name)} codec => "json_lines" }} }}'
        )
    return inputs, outputs


class ParallelProcess:
    """A Logstash child process serving several test case streams at once.

    ``env`` is a list of ``KEY=value`` strings, or None to inherit the current
    environment; ``log_file`` is a readable stream with the Logstash log.
    """

    def __init__(self, command, args, env, log_file):
        self.command = command
        self.arguments = list(args)
        self.env = None if env is None else dict(item.partition("=")[::2] for item in env)
        self.streams: list = []
        self._log_file = log_file
        self._child = None
        # Early startup failures (e.g. JVM problems) end up on stdout/stderr.
        self._stdio = tempfile.TemporaryFile()

    @classmethod
    def create(cls, invocation, streams, kept_env_vars) -> "ParallelProcess":
        """Prepare, but don't start, a Logstash process for the streams.

        The streams are cleaned up if preparation fails.
        """
        streams = list(streams)
        try:
            inputs, outputs = get_socket_in_out_plugins(streams)
            env = get_limited_environment(
                [f"{key}={value}" for key, value in os.environ.items()], kept_env_vars
            )
            args = invocation.args(
                f"input {{ {' '.join(inputs)} }} ", f"output {{ {' '.join(outputs)} }}"
            )
        except BaseException:
            cleanup_streams(streams)
            raise
        process = cls(invocation.logstash_path, args, env, invocation.log_file)
        process.streams = streams
        return process

    def start(self) -> None:
        """Start the child process; raises OSError if it can't be run."""
        log.info("Starting %r with args %r.", self.command, self.arguments)
        executable = self.command
        if os.sep not in executable:
            executable = shutil.which(executable) or executable
        self._child = subprocess.Popen(
            [executable, *self.arguments],
            stdin=subprocess.DEVNULL,
            stdout=self._stdio,
            stderr=subprocess.STDOUT,
            env=self.env,
        )

    def wait(self) -> ParallelResult:
        """Wait for the child to exit and collect the events of every stream.

        Raises CalledProcessError on a non-zero exit status (unless the log
        shows the harmless unix input shutdown error) and
        BadLogstashOutputError on unparseable events; both carry ``result``.
        """
        if self._child is None:
            raise RuntimeError("can't wait on an unborn process")
        log.debug("Waiting for child with pid %d to terminate.", self._child.pid)
        returncode = self._child.wait()

        try:
            log_text = _decode(self._log_file.read())
        except OSError as exc:
            log.error("Error reading the Logstash logfile: %s", exc)
            log_text = ""
        self._stdio.seek(0)
        output_text = _decode(self._stdio.read())

        result = ParallelResult(success=returncode == 0, events=[], log=log_text, output=output_text)
        if returncode != 0:
            if _UNIX_INPUT_IOERROR.search(log_text):
                log.warning(
                    "Workaround for IOError in the unix input on stop, processing result anyway."
                )
                result.success = True
            else:
                error = subprocess.CalledProcessError(
                    returncode, [self.command, *self.arguments], output=output_text
                )
                error.result = result
                raise error

        last_error = None
        for stream in self.streams:
            try:
                events = read_events(stream.receiver)
                last_error = None
            except BadLogstashOutputError as exc:
                events = exc.events
                last_error = exc
            stream.receiver.close()
            result.success = last_error is None
            # The unix input adds the socket path as "path"; drop it only
            # when it is exactly that path so user-supplied paths survive.
            for event in events:
                if event.get("path") == stream.sender_path:
                    del event["path"]
            result.events.append(events)

        if last_error is not None:
            last_error.result = result
            raise last_error
        return result

    def release(self) -> None:
        """Clean up the streams and the captured stdout/stderr."""
        cleanup_streams(self.streams)
        self._stdio.close()

    def __enter__(self) -> "ParallelProcess":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()