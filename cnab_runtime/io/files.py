"""File I/O for bundle definitions and claim records.

- Reads retry on transient EIO (network and cloud-synced home directories)
- Writes are atomic (temp file + rename) and keep a backup of the previous file
"""

from __future__ import annotations

import asyncio
import contextlib
import errno
import logging
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


async def read_with_retry(
    path: Path,
    max_retries: int = 3,
    initial_delay: float = 0.1,
) -> str:
    """Read a text file, retrying transient I/O errors with backoff.

    Args:
        path: File to read.
        max_retries: Maximum number of attempts.
        initial_delay: Delay in seconds before the second attempt.

    Returns:
        File content.

    Raises:
        FileNotFoundError: If the file does not exist.
        OSError: If the file cannot be read after all attempts.
    """
    delay = initial_delay

    for attempt in range(max_retries):
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            if e.errno != errno.EIO or attempt == max_retries - 1:
                raise
            logger.warning(f"I/O error reading {path} (attempt {attempt + 1}), retrying")
            await asyncio.sleep(delay)
            delay *= 2

    raise OSError(f"Could not read {path}")


def write_atomic(path: Path, content: str) -> None:
    """Write a text file so readers see either the old or the new content.

    Raises:
        OSError: If the write or the rename fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.stem}_",
            suffix=".tmp",
            delete=False,
        ) as tmp_file:
            temp_path = Path(tmp_file.name)
            tmp_file.write(content)
            tmp_file.flush()

        temp_path.replace(path)
    except OSError as e:
        if temp_path:
            with contextlib.suppress(OSError):
                temp_path.unlink()
        raise OSError(f"Failed to write atomically to {path}: {e}") from e


def write_with_backup(path: Path, content: str, *, backup_suffix: str = ".backup") -> None:
    """Atomically write ``path``, first copying any existing file aside.

    Example:
        # leaves claim-0002.json.backup next to the rewritten file
        write_with_backup(Path("claim-0002.json"), payload)
    """
    if path.exists():
        backup_path = path.with_suffix(path.suffix + backup_suffix)
        try:
            shutil.copy2(path, backup_path)
        except OSError as e:
            logger.warning(f"Could not back up {path}: {e}")

    write_atomic(path, content)
