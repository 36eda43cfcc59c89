"""Detection of the installed Logstash version."""

from __future__ import annotations

import logging
import os
import re
import subprocess

from packaging.version import InvalidVersion, Version

from lfverifier.environment import get_limited_environment

log = logging.getLogger(__name__)

_VERSION_LINE = re.compile(r"^Logstash v?(\d+\.\S+)", re.IGNORECASE)


class VersionDetectionError(Exception):
    """The Logstash version could not be determined."""


def _environment(kept_env_vars) -> dict[str, str]:
    current = [f"{key}={value}" for key, value in os.environ.items()]
    return dict(item.split("=", 1) for item in get_limited_environment(current, kept_env_vars))


def detect_version(logstash_path, kept_env_vars) -> Version:
    """Run ``logstash --version`` and parse the version it reports."""
    try:
        completed = subprocess.run(
            [logstash_path, "--version"],
            env=_environment(kept_env_vars),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except OSError as exc:
        raise VersionDetectionError(
            f'error running "{logstash_path} --version": {exc}, process output: {""!r}'
        ) from exc
    output = completed.stdout.decode("utf-8", errors="replace")
    if completed.returncode != 0:
        raise VersionDetectionError(
            f'error running "{logstash_path} --version": exit status {completed.returncode}, '
            f"process output: {output!r}"
        )
    return parse_logstash_version_output(output)


def parse_logstash_version_output(process_output: str) -> Version:
    """Return the first parseable version from ``Logstash <version>`` lines."""
    for line in process_output.split("\n"):
        match = _VERSION_LINE.match(line)
        if not match:
            continue
        try:
            return Version(match.group(1))
        except InvalidVersion as exc:
            log.warning(
                "Found potential version number %r in line %r in the Logstash version output, "
                "but the string couldn't be parsed as version number (%s).",
                match.group(1),
                line,
                exc,
            )
    raise VersionDetectionError(
        f"unable to find version number in output from Logstash: {process_output}"
    )