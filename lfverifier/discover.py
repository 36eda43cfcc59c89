"""Finding test case files on disk."""

from __future__ import annotations

import os

from lfverifier.testcase import CaseSet, load_case_set_file

_EXTENSIONS = (".json", ".yaml", ".yml")


def _discover_directory(path) -> list[CaseSet]:
    try:
        with os.scandir(path) as entries:
            candidates = sorted(
                (entry for entry in entries if not entry.is_dir()),
                key=lambda entry: entry.name,
            )
    except OSError as exc:
        raise OSError(f"Error discovering test case files: {exc}") from exc
    return [
        load_case_set_file(os.path.join(path, entry.name))
        for entry in candidates
        if entry.name.endswith(_EXTENSIONS)
    ]


def discover_tests(path) -> list[CaseSet]:
    """Load the test case sets at a path.

    A file is read as a single test case set. For a directory, every
    .json, .yaml and .yml file directly inside it is read, in name order.
    Raises OSError if the path can't be read.
    """
    if os.path.isdir(path):
        return _discover_directory(path)
    os.stat(path)
    return [load_case_set_file(path)]