"""Utility modules for network construction."""

from coexnet.utils.fileio import (
    atomic_writer,
    atomic_write_csv,
    atomic_write_json,
    atomic_write_text,
)

__all__ = [
    'atomic_writer',
    'atomic_write_csv',
    'atomic_write_json',
    'atomic_write_text',
]
