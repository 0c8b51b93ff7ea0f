"""
Atomic file-write utilities.

Network artifacts are only useful when complete: a GraphML file cut off
mid-write still parses up to the truncation point in some readers. Every
output is therefore written to a temporary file in the destination directory
and moved into place with ``os.replace()`` (POSIX rename guarantee). Readers
see either the previous file or the finished new one, never a partial one.
"""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from typing import IO, Any, Iterator

import pandas as pd

__all__ = [
    'atomic_writer',
    'atomic_write_json',
    'atomic_write_text',
    'atomic_write_csv',
]


@contextmanager
def atomic_writer(path: str | os.PathLike, mode: str = "w") -> Iterator[IO]:
    """Yield a temp-file handle that replaces *path* only on clean exit.

    Parent directories are created as needed. If the body raises, the
    temporary file is removed and *path* is left untouched.

    Parameters
    ----------
    path:
        Destination file path.
    mode:
        ``"w"`` for text, ``"wb"`` for binary.
    """
    path = os.fspath(path)
    dir_path = os.path.dirname(path) or "."
    os.makedirs(dir_path, exist_ok=True)

    tmp_path: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode=mode, dir=dir_path, suffix=".tmp", delete=False
        ) as tmp:
            tmp_path = tmp.name
            yield tmp
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any failure
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def atomic_write_json(path: str | os.PathLike, data: Any, *, indent: int = 2) -> None:
    """Write *data* as JSON atomically via temp-file + rename."""
    with atomic_writer(path) as tmp:
        json.dump(data, tmp, indent=indent)


def atomic_write_text(path: str | os.PathLike, content: str) -> None:
    """Write *content* as text atomically via temp-file + rename."""
    with atomic_writer(path) as tmp:
        tmp.write(content)


def atomic_write_csv(path: str | os.PathLike, df: pd.DataFrame, **kwargs: Any) -> None:
    """Write a DataFrame as CSV atomically; kwargs go to ``DataFrame.to_csv``."""
    with atomic_writer(path) as tmp:
        df.to_csv(tmp, **kwargs)
