"""Running Logstash with events fed on standard input."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import tempfile

from lfverifier.environment import get_limited_environment
from lfverifier.events import BadLogstashOutputError, Result, read_events
from lfverifier.fieldset import FieldSet
from lfverifier.files import DeletedTempFile

log = logging.getLogger(__name__)


def _decode(data) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class Process:
    """A Logstash child process that reads stdin and writes JSON events to a file.

    ``log_file`` and ``output`` are readable streams holding the Logstash log
    and the emitted events; ``env`` is a list of ``KEY=value`` strings, or
    None to inherit the current environment.
    """

    def __init__(self, command, args, env, log_file, output):
        self.command = command
        self.arguments = list(args)
        self.env = None if env is None else dict(item.partition("=")[::2] for item in env)
        self._log_file = log_file
        self._output = output
        self._child = None
        # Early startup failures (e.g. JVM problems) end up on stdout/stderr.
        self._stdio = tempfile.TemporaryFile()

    @classmethod
    def create(cls, invocation, input_codec, fields, kept_env_vars) -> "Process":
        """Prepare, but don't start, a Logstash process for an invocation."""
        output_file = DeletedTempFile()
        try:
            field_hash = FieldSet(fields or {}).logstash_hash()
            inputs = f"input {{ stdin {{ codec => {input_codec} add_field => {field_hash} }} }}"
            outputs = f'output {{ file {{ path => {json.dumps(output_file.name)} codec => "json_lines" }} }}'
            env = get_limited_environment([f"{k}={v}" for k, v in os.environ.items()], kept_env_vars)
            args = invocation.args(inputs, outputs)
        except BaseException:
            output_file.close()
            raise
        return cls(invocation.logstash_path, args, env, invocation.log_file, output_file)

    def start(self) -> None:
        """Start the child process; raises OSError if it can't be run."""
        log.info("Starting %r with args %r.", self.command, self.arguments)
        executable = self.command
        if os.sep not in executable:
            executable = shutil.which(executable) or executable
        self._child = subprocess.Popen(
            [executable, *self.arguments],
            stdin=subprocess.PIPE,
            stdout=self._stdio,
            stderr=subprocess.STDOUT,
            env=self.env,
        )

    def _started(self) -> subprocess.Popen:
        if self._child is None:
            raise RuntimeError("process has not been started")
        return self._child

    def write(self, data) -> int:
        """Write data to the child's standard input."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        child = self._started()
        written = child.stdin.write(data)
        child.stdin.flush()
        return written

    def close_input(self) -> None:
        """Close the child's standard input so that it can terminate."""
        self._started().stdin.close()

    def wait(self) -> Result:
        """Wait for the child to exit and collect its events, log and output.

        Raises CalledProcessError on a non-zero exit status and
        BadLogstashOutputError on unparseable events; both carry the
        partial ``result``.
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

        result = Result(success=returncode == 0, events=[], log=log_text, output=output_text)
        if returncode != 0:
            error = subprocess.CalledProcessError(
                returncode, [self.command, *self.arguments], output=output_text
            )
            error.result = result
            raise error

        try:
            result.events = read_events(self._output)
        except BadLogstashOutputError as exc:
            result.success = False
            result.events = exc.events
            exc.result = result
            raise
        return result

    def release(self) -> None:
        """Close the event output and the captured stdout/stderr."""
        self._output.close()
        self._stdio.close()

    def __enter__(self) -> "Process":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()