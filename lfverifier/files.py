"""File helpers: copying configuration files and self-deleting temp files."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile

log = logging.getLogger(__name__)


def all_files_exist(directory, filenames) -> bool:
    """Return True if every file can be stat'ed inside the directory."""
    for filename in filenames:
        try:
            os.stat(os.path.join(directory, filename))
        except OSError:
            return False
    return True


def copy_file(source_path, dest_path) -> None:
    """Copy file contents, overwriting the destination. Modes are not copied."""
    with open(source_path, "rb") as reader, open(dest_path, "wb") as writer:
        shutil.copyfileobj(reader, writer)


def copy_all_files(source_dirs, source_files, dest) -> str:
    """Copy the files from the first directory that holds all of them.

    Returns that directory; raises FileNotFoundError if none does.
    """
    source_dirs = list(source_dirs)
    source_files = list(source_files)
    for source_dir in source_dirs:
        if not all_files_exist(source_dir, source_files):
            continue
        for name in source_files:
            copy_file(os.path.join(source_dir, name), os.path.join(dest, name))
        return source_dir
    raise FileNotFoundError(
        f"couldn't find the wanted files ({', '.join(source_files)}) "
        f"in any of these directories: {', '.join(source_dirs)}"
    )


class DeletedTempFile:
    """A temporary file that is deleted when closed."""

    def __init__(self, directory=None, prefix=""):
        fd, path = tempfile.mkstemp(dir=directory, prefix=prefix)
        self._file = os.fdopen(fd, "r+b")
        self.name = path
        self._closed = False

    def read(self) -> bytes:
        """Read the rest of the file."""
        return self._file.read()

    def close(self) -> None:
        """Close and delete the file; closing again does nothing."""
        if self._closed:
            return
        self._closed = True
        try:
            self._file.close()
        finally:
            try:
                os.remove(self.name)
            except OSError as exc:
                log.error("Problem deleting temporary file: %s", exc)

    def __enter__(self) -> "DeletedTempFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()