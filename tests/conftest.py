"""Shared fixtures for cnab-runtime tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from cnab_runtime.bundle import Bundle
from cnab_runtime.claims import InMemoryClaimStore
from cnab_runtime.driver import ExecutionResult
from cnab_runtime.driver import InvocationDocument
from cnab_runtime.exceptions import BundleNotFoundError
from cnab_runtime.extensions import DEPENDENCIES_KEY


def make_bundle(
    name: str,
    version: str = "1.0.0",
    *,
    requires: dict[str, Any] | None = None,
    sequence: list[str] | None = None,
    **extra: Any,
) -> Bundle:
    """Build a bundle from wire-form keyword arguments.

    ``requires`` maps dependency names to a reference string or a full
    dependency entry; ``sequence`` defaults to the order of ``requires``.
    """
    data: dict[str, Any] = {"name": name, "version": version, **extra}
    if requires:
        entries = {
            key: {"bundle": value} if isinstance(value, str) else value for key, value in requires.items()
        }
        custom = dict(data.get("custom") or {})
        custom[DEPENDENCIES_KEY] = {
            "sequence": sequence if sequence is not None else list(entries),
            "requires": entries,
        }
        data["custom"] = custom
        data.setdefault("requiredExtensions", []).append(DEPENDENCIES_KEY)
    return Bundle.from_dict(data)


class FakeLocator:
    """Bundle locator backed by a dict, with optional per-reference delays and failures."""

    def __init__(self, bundles: dict[str, Bundle] | None = None) -> None:
        self.bundles = dict(bundles or {})
        self.delays: dict[str, float] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []
        self.cancelled: list[str] = []

    def add(self, reference: str, bundle: Bundle) -> None:
        self.bundles[reference] = bundle

    async def locate(self, reference: str) -> Bundle:
        self.calls.append(reference)
        try:
            if reference in self.delays:
                await asyncio.sleep(self.delays[reference])
        except asyncio.CancelledError:
            self.cancelled.append(reference)
            raise
        if reference in self.failures:
            raise self.failures[reference]
        if reference not in self.bundles:
            raise BundleNotFoundError(f"bundle not found: {reference}")
        return self.bundles[reference]


class RecordingDriver:
    """Driver that records every invocation document.

    Args:
        outputs: Bundle name to outputs reported on success.
        fail: Bundle names whose invocation fails.
    """

    name = "recording"

    def __init__(
        self,
        outputs: dict[str, dict[str, Any]] | None = None,
        fail: set[str] | None = None,
    ) -> None:
        self.outputs = outputs or {}
        self.fail = fail or set()
        self.documents: list[InvocationDocument] = []

    @property
    def installations(self) -> list[str]:
        return [d.installation for d in self.documents]

    def document(self, installation: str) -> InvocationDocument:
        for document in self.documents:
            if document.installation == installation:
                return document
        raise KeyError(installation)

    async def run(self, document: InvocationDocument) -> ExecutionResult:
        self.documents.append(document)
        if document.bundle.name in self.fail:
            return ExecutionResult.failure(
                f"{document.bundle.name} exploded", code="boom", details={"step": 2}
            )
        return ExecutionResult.success(self.outputs.get(document.bundle.name))


class SlowDriver(RecordingDriver):
    """Driver that blocks on a bundle until cancelled, recording the cancellation."""

    name = "slow"

    def __init__(self, block: str, delay: float = 30.0) -> None:
        super().__init__()
        self.block = block
        self.delay = delay
        self.started = asyncio.Event()
        self.cancelled = False

    async def run(self, document: InvocationDocument) -> ExecutionResult:
        self.documents.append(document)
        if document.bundle.name != self.block:
            return ExecutionResult.success()
        self.started.set()
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return ExecutionResult.success()


class RaisingDriver(RecordingDriver):
    """Driver with a bug: raises instead of returning a result."""

    name = "raising"

    async def run(self, document: InvocationDocument) -> ExecutionResult:
        self.documents.append(document)
        raise RuntimeError("driver bug")


# =============================================================================
# Test fixtures
# =============================================================================


@pytest.fixture
def claim_store() -> InMemoryClaimStore:
    """Empty in-memory claim store."""
    return InMemoryClaimStore()


@pytest.fixture
def locator() -> FakeLocator:
    """Empty fake locator."""
    return FakeLocator()


@pytest.fixture
def driver() -> RecordingDriver:
    """Driver that succeeds for every bundle."""
    return RecordingDriver()
