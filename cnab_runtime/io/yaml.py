"""YAML/JSON document reading."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .files import read_with_retry

JSON_SUFFIXES = (".json",)
YAML_SUFFIXES = (".yaml", ".yml")


def parse_document(content: str, *, fmt: str = "yaml") -> Any:
    """Decode JSON or YAML text.

    JSON is a subset of YAML, but decoding JSON with the json module keeps
    error messages pointing at the right line and column.

    Raises:
        json.JSONDecodeError: Invalid JSON when ``fmt`` is "json".
        yaml.YAMLError: Invalid YAML otherwise.
    """
    if fmt == "json":
        return json.loads(content)
    return yaml.safe_load(content)


async def read_yaml(path: Path) -> dict[str, Any] | None:
    """Read a YAML file.

    Returns:
        Parsed mapping, ``{}`` for an empty file, or None if the file doesn't exist.

    Raises:
        yaml.YAMLError: If the file contains invalid YAML.
        OSError: If the file can't be read.
    """
    if not path.exists():
        return None

    content = await read_with_retry(path)
    return yaml.safe_load(content) or {}


async def read_document(path: Path) -> Any:
    """Read a JSON or YAML file, choosing the decoder from the suffix."""
    content = await read_with_retry(path)
    fmt = "json" if path.suffix.lower() in JSON_SUFFIXES else "yaml"
    return parse_document(content, fmt=fmt)
