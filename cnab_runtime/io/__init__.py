"""File I/O helpers."""

from .files import read_with_retry
from .files import write_atomic
from .files import write_with_backup
from .yaml import parse_document
from .yaml import read_document
from .yaml import read_yaml

__all__ = [
    "read_with_retry",
    "write_atomic",
    "write_with_backup",
    "parse_document",
    "read_document",
    "read_yaml",
]
