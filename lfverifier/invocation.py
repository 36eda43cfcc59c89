"""Preparation of the arguments and directories for one Logstash run."""

from __future__ import annotations

import os
import shutil
import tempfile

from packaging.version import Version

from lfverifier.files import copy_all_files
from lfverifier.pipeline_config import get_pipeline_config_dir

_BATCH_SIZE_VERSION = Version("2.2.0")
_LOG_DIR_VERSION = Version("5.0.0")


def copy_config_files(logstash_path, config_dir) -> str:
    """Copy jvm.options and log4j2.properties from the Logstash installation.

    Returns the directory where they were found.
    """
    bin_dir = os.path.dirname(logstash_path)
    source_dirs = [
        os.path.normpath(os.path.join(bin_dir, "../config")),
        os.path.normpath(os.path.join(bin_dir, "../etc/logstash")),
        "/etc/logstash",
    ]
    return copy_all_files(source_dirs, ["jvm.options", "log4j2.properties"], config_dir)


class Invocation:
    """A Logstash command line with its temporary pipeline, data and log directories."""

    def __init__(self, logstash_path, logstash_args, logstash_version, *args):
        configs = list(args)
        if not configs:
            raise ValueError("must provide non-empty list of configuration file or directory names")
        if not isinstance(logstash_version, Version):
            logstash_version = Version(str(logstash_version))

        self.logstash_path = logstash_path
        self.log_file = None
        self._io_config = None
        self.temp_dir = tempfile.mkdtemp()
        try:
            self._prepare(logstash_version, list(logstash_args), configs)
        except BaseException:
            self.release()
            raise

    def _prepare(self, version: Version, logstash_args: list, configs: list) -> None:
        config_dir = os.path.join(self.temp_dir, "config")
        data_dir = os.path.join(self.temp_dir, "data")
        self.log_dir = os.path.join(self.temp_dir, "log")
        pipeline_dir = os.path.join(self.temp_dir, "pipeline.d")
        for directory in (config_dir, data_dir, self.log_dir, pipeline_dir):
            os.mkdir(directory, 0o700)

        log_path = os.path.join(self.log_dir, "logstash-plain.log")
        self.log_file = open(log_path, "w+b")

        get_pipeline_config_dir(pipeline_dir, configs)

        # Logstash 6+ refuses both -e and -f, so inputs and outputs go in a file.
        fd, self.io_config_path = tempfile.mkstemp(dir=pipeline_dir, prefix="ioconfig.", suffix=".conf")
        self._io_config = os.fdopen(fd, "r+b")

        args = ["-w", "1", "--debug", "-f", pipeline_dir]
        if version >= _BATCH_SIZE_VERSION:
            # A batch size of one keeps the event order deterministic.
            args += ["-b", "1"]
        if version >= _LOG_DIR_VERSION:
            args += ["-l", self.log_dir]
            copy_config_files(self.logstash_path, config_dir)
            with open(os.path.join(config_dir, "logstash.yml"), "wb"):
                pass
            args += ["--path.settings", config_dir, "--path.data", data_dir]
        else:
            args += ["-l", log_path]
        args += logstash_args
        self._args = args

    def args(self, inputs, outputs) -> list[str]:
        """Write the input and output configuration and return the command arguments."""
        data = f"{inputs}\n{outputs}".encode("utf-8")
        self._io_config.seek(0)
        self._io_config.write(data)
        self._io_config.truncate(len(data))
        self._io_config.flush()
        return list(self._args)

    def release(self) -> None:
        """Close the files and remove the temporary directory."""
        for handle in (self._io_config, self.log_file):
            if handle is not None:
                handle.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def __enter__(self) -> "Invocation":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()