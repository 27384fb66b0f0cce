"""
Claim records and the stores that persist them.

A claim is one revision of an installation's history: which bundle was
acted on, with which (redacted) parameters, and what came of it. The
orchestrator only ever reads the latest claim and appends new revisions.

FileClaimStore layout::

    <base_dir>/<installation>/claim-0001.json
    <base_dir>/<installation>/claim-0002.json
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
import uuid
from datetime import UTC
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING
from typing import Any
from typing import Literal
from typing import Protocol
from typing import runtime_checkable

from pydantic import BaseModel
from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from cnab_runtime.bundle import Bundle
from cnab_runtime.exceptions import ClaimStoreError
from cnab_runtime.io import read_with_retry
from cnab_runtime.io import write_with_backup

if TYPE_CHECKING:
    from cnab_runtime.driver import ExecutionResult

logger = logging.getLogger(__name__)

REDACTED = "******"

_CLAIM_FILE = re.compile(r"^claim-(\d+)\.json$")

ClaimStatus = Literal["succeeded", "failed", "cancelled"]


class Claim(BaseModel):
    """One revision of an installation's record."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    installation: str
    revision: int = Field(ge=1)
    created: datetime = Field(default_factory=lambda: datetime.now(UTC))
    action: str
    status: ClaimStatus
    bundle: dict[str, Any] = Field(description="Bundle definition in its wire form")
    bundle_reference: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict, description="Sensitive values redacted")
    outputs: dict[str, Any] = Field(default_factory=dict)
    error: dict[str, Any] | None = None
    parent: str | None = Field(default=None, description="Installation that pulled this one in")

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    def bundle_definition(self) -> Bundle:
        """Decode the recorded bundle definition."""
        return Bundle.from_dict(self.bundle)

    @classmethod
    def next(
        cls,
        previous: Claim | None,
        *,
        installation: str,
        action: str,
        status: ClaimStatus,
        bundle: Bundle,
        bundle_reference: str | None = None,
        parameters: dict[str, Any] | None = None,
        result: ExecutionResult | None = None,
        error: dict[str, Any] | None = None,
        parent: str | None = None,
    ) -> Claim:
        """Build the revision that follows ``previous``.

        Parameters are redacted according to the bundle's definitions.
        Outputs of a failed or cancelled attempt are still recorded.
        """
        outputs: dict[str, Any] = {}
        if result is not None:
            outputs = redact(bundle.outputs, result.outputs)
            if error is None and result.error is not None:
                error = result.error.model_dump()
        return cls(
            installation=installation,
            revision=(previous.revision + 1) if previous else 1,
            action=action,
            status=status,
            bundle=bundle.to_dict(),
            bundle_reference=bundle_reference or (previous.bundle_reference if previous else None),
            parameters=redact(bundle.parameters, parameters or {}),
            outputs=outputs,
            error=error,
            parent=parent if parent is not None else (previous.parent if previous else None),
        )


def redact(definitions: dict[str, Any], values: dict[str, Any]) -> dict[str, Any]:
    """Replace values whose definition is marked sensitive."""
    result = {}
    for name, value in values.items():
        definition = definitions.get(name)
        result[name] = REDACTED if definition is not None and definition.sensitive else value
    return result


def check_installation_name(name: str) -> str | None:
    """Return why ``name`` cannot be used as an installation name, or None."""
    if not name or not name.strip():
        return "installation name cannot be empty"
    if "/" in name or "\\" in name or name in (".", "..") or name.startswith("."):
        return f"invalid installation name: {name}"
    return None


@runtime_checkable
class ClaimStore(Protocol):
    """Interface for claim persistence."""

    async def load_claim(self, installation: str) -> Claim | None:
        """Latest claim for the installation, or None if it has none."""
        ...

    async def save_claim(self, claim: Claim) -> None:
        """Append a claim revision.

        Raises:
            ClaimStoreError: If the claim cannot be written.
        """
        ...

    async def list_claims(self, installation: str) -> list[Claim]:
        """Every revision of the installation, oldest first."""
        ...

    async def delete_installation(self, installation: str) -> bool:
        """Remove every claim of the installation; True if anything was removed."""
        ...

    async def list_installations(self) -> list[str]:
        """Names of installations with at least one claim, sorted."""
        ...


class InMemoryClaimStore:
    """Claim store kept in process memory."""

    def __init__(self) -> None:
        self._claims: dict[str, list[Claim]] = {}

    async def load_claim(self, installation: str) -> Claim | None:
        claims = self._claims.get(installation)
        if not claims:
            return None
        return claims[-1].model_copy(deep=True)

    async def save_claim(self, claim: Claim) -> None:
        _require_valid_name(claim.installation)
        self._claims.setdefault(claim.installation, []).append(claim.model_copy(deep=True))

    async def list_claims(self, installation: str) -> list[Claim]:
        return [c.model_copy(deep=True) for c in self._claims.get(installation, [])]

    async def delete_installation(self, installation: str) -> bool:
        return self._claims.pop(installation, None) is not None

    async def list_installations(self) -> list[str]:
        return sorted(name for name, claims in self._claims.items() if claims)


class FileClaimStore:
    """
    Claim store on the local filesystem.

    Contract:
    - One directory per installation, one JSON file per revision
    - Writes are atomic with a backup of any file being replaced
    - Errors: ClaimStoreError for unreadable/corrupt files and disk issues
    """

    def __init__(self, base_dir: Path | str) -> None:
        self.base_dir = Path(base_dir).expanduser()

    def _installation_dir(self, installation: str) -> Path:
        _require_valid_name(installation)
        return self.base_dir / installation

    def _claim_files(self, installation_dir: Path) -> list[Path]:
        if not installation_dir.is_dir():
            return []
        numbered = []
        for path in installation_dir.glob("claim-*.json"):
            match = _CLAIM_FILE.match(path.name)
            if match:
                numbered.append((int(match.group(1)), path))
        return [path for _, path in sorted(numbered)]

    async def _read_claim(self, path: Path) -> Claim:
        try:
            content = await read_with_retry(path)
            return Claim.model_validate(json.loads(content))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, PydanticValidationError) as e:
            raise ClaimStoreError(f"could not read claim {path}: {e}") from e

    async def load_claim(self, installation: str) -> Claim | None:
        files = self._claim_files(self._installation_dir(installation))
        if not files:
            return None
        return await self._read_claim(files[-1])

    async def save_claim(self, claim: Claim) -> None:
        installation_dir = self._installation_dir(claim.installation)
        path = installation_dir / f"claim-{claim.revision:04d}.json"
        try:
            await asyncio.to_thread(write_with_backup, path, claim.model_dump_json(indent=2))
        except OSError as e:
            raise ClaimStoreError(f"could not save claim for {claim.installation}: {e}") from e
        logger.debug(f"Saved claim {claim.installation} revision {claim.revision} ({claim.status})")

    async def list_claims(self, installation: str) -> list[Claim]:
        return [await self._read_claim(p) for p in self._claim_files(self._installation_dir(installation))]

    async def delete_installation(self, installation: str) -> bool:
        installation_dir = self._installation_dir(installation)
        if not installation_dir.exists():
            return False
        try:
            await asyncio.to_thread(shutil.rmtree, installation_dir)
        except OSError as e:
            raise ClaimStoreError(f"could not delete claims for {installation}: {e}") from e
        logger.info(f"Deleted claims for installation {installation}")
        return True

    async def list_installations(self) -> list[str]:
        if not self.base_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.base_dir.iterdir()
            if entry.is_dir() and not entry.name.startswith(".") and self._claim_files(entry)
        )


def _require_valid_name(installation: str) -> None:
    problem = check_installation_name(installation)
    if problem:
        raise ClaimStoreError(problem)
