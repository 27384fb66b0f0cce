"""Load bundle definitions from local files."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import yaml

from cnab_runtime.bundle import Bundle
from cnab_runtime.exceptions import BundleLoadError
from cnab_runtime.io import read_document

logger = logging.getLogger(__name__)

# Searched in order when a directory is given
BUNDLE_FILENAMES = ("bundle.json", "bundle.yaml", "bundle.yml")


def find_bundle_file(path: Path) -> Path | None:
    """Return the bundle file at ``path`` (a file, or a directory holding one)."""
    if path.is_file():
        return path
    if path.is_dir():
        for filename in BUNDLE_FILENAMES:
            candidate = path / filename
            if candidate.is_file():
                return candidate
    return None


async def load_bundle(path: Path | str) -> Bundle:
    """Load a bundle from a file or a directory containing one.

    Args:
        path: bundle.json / bundle.yaml file, or a directory.

    Returns:
        Decoded Bundle.

    Raises:
        BundleLoadError: File missing, unreadable, or not a valid bundle document.
    """
    path = Path(path).expanduser()
    bundle_file = find_bundle_file(path)
    if bundle_file is None:
        if path.is_dir():
            raise BundleLoadError(
                f"no bundle found in {path}: expected one of {', '.join(BUNDLE_FILENAMES)}"
            )
        raise BundleLoadError(f"bundle file not found: {path}")

    try:
        data = await read_document(bundle_file)
    except (json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError) as e:
        raise BundleLoadError(f"could not parse {bundle_file}: {e}") from e
    except OSError as e:
        raise BundleLoadError(f"could not read {bundle_file}: {e}") from e

    bundle = Bundle.from_dict(data)
    logger.debug(f"Loaded bundle {bundle.identity} from {bundle_file}")
    return bundle
