"""Bundle locators: turn a dependency's bundle reference into a Bundle.

Locators are tried in order by CompositeBundleLocator, first match wins:

- FileBundleLocator: aliases, file:// and local paths, then search paths
- HttpBundleLocator: http:// and https:// bundle documents
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol
from typing import runtime_checkable

import httpx
import yaml

from cnab_runtime.bundle import Bundle
from cnab_runtime.exceptions import BundleNotFoundError
from cnab_runtime.io import parse_document
from cnab_runtime.loader import find_bundle_file
from cnab_runtime.loader import load_bundle

logger = logging.getLogger(__name__)


@runtime_checkable
class ReferenceHandler(Protocol):
    """A locator that can say up front whether a reference is its business."""

    def can_locate(self, reference: str) -> bool: ...

    async def locate(self, reference: str) -> Bundle: ...


def _is_http(reference: str) -> bool:
    return reference.startswith(("http://", "https://"))


class FileBundleLocator:
    """Locate bundles on the local filesystem.

    A reference such as ``localhost:5000/nginx:1.19`` is tried, for each
    search path, as ``<path>/localhost:5000/nginx:1.19``, then
    ``<path>/localhost:5000/nginx/1.19`` and finally ``<path>/localhost:5000/nginx``.
    """

    def __init__(
        self,
        search_paths: Iterable[Path | str] = (),
        aliases: dict[str, str] | None = None,
        base_path: Path | None = None,
    ) -> None:
        self.base_path = base_path or Path.cwd()
        self.search_paths = [self._absolute(p) for p in search_paths]
        self.aliases = dict(aliases or {})

    def _absolute(self, path: Path | str) -> Path:
        path = Path(path).expanduser()
        return path if path.is_absolute() else self.base_path / path

    def can_locate(self, reference: str) -> bool:
        return not _is_http(reference)

    def candidates(self, reference: str) -> list[Path]:
        """Paths tried for a reference, in order."""
        if reference in self.aliases:
            return [self._absolute(self.aliases[reference])]
        if reference.startswith("file://"):
            return [self._absolute(reference[len("file://") :])]

        paths = [self._absolute(reference)]
        head, _, last = reference.rpartition("/")
        name, sep, tag = last.partition(":")
        for root in self.search_paths:
            paths.append(root / reference)
            if sep:
                stem = f"{head}/{name}" if head else name
                paths.append(root / stem / tag)
                paths.append(root / stem)
        return paths

    async def locate(self, reference: str) -> Bundle:
        """Load the first candidate that holds a bundle file.

        Raises:
            BundleNotFoundError: If no candidate holds a bundle.
        """
        for candidate in self.candidates(reference):
            if find_bundle_file(candidate) is not None:
                logger.debug(f"Located {reference} at {candidate}")
                return await load_bundle(candidate)
        raise BundleNotFoundError(f"bundle not found: {reference}")


class HttpBundleLocator:
    """Fetch bundle documents over HTTP(S) with httpx.

    Args:
        client: Shared client; when omitted a client is created per fetch.
        timeout: Request timeout in seconds for self-created clients.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 30.0) -> None:
        self.client = client
        self.timeout = timeout

    def can_locate(self, reference: str) -> bool:
        return _is_http(reference)

    async def _get(self, url: str) -> httpx.Response:
        if self.client is not None:
            return await self.client.get(url, follow_redirects=True)
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            return await client.get(url)

    async def locate(self, reference: str) -> Bundle:
        """Download and decode the bundle document at ``reference``.

        Raises:
            BundleNotFoundError: On transport errors, non-2xx responses or
                undecodable content.
        """
        try:
            response = await self._get(reference)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BundleNotFoundError(f"failed to fetch {reference}: {e}") from e

        content_type = response.headers.get("content-type", "")
        fmt = "json" if "json" in content_type or reference.endswith(".json") else "yaml"
        try:
            data = parse_document(response.text, fmt=fmt)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise BundleNotFoundError(f"{reference} is not a bundle document: {e}") from e

        logger.debug(f"Fetched bundle document from {reference}")
        return Bundle.from_dict(data)


class CompositeBundleLocator:
    """Try locators in order; the first that can handle a reference locates it."""

    def __init__(self, locators: Iterable[ReferenceHandler]) -> None:
        self._locators = list(locators)

    def add_locator(self, locator: ReferenceHandler) -> None:
        """Add a locator that takes priority over the existing ones."""
        self._locators.insert(0, locator)

    async def locate(self, reference: str) -> Bundle:
        for locator in self._locators:
            if locator.can_locate(reference):
                return await locator.locate(reference)
        raise BundleNotFoundError(f"no locator can handle bundle reference: {reference}")


def default_locator(
    search_paths: Iterable[Path | str] = (),
    aliases: dict[str, str] | None = None,
) -> CompositeBundleLocator:
    """Locator chain used by the command line."""
    return CompositeBundleLocator(
        [FileBundleLocator(search_paths, aliases), HttpBundleLocator()]
    )
