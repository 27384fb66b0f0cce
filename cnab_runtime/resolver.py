"""Dependency resolver - turns a bundle and its dependency graph into an ordered plan.

The plan is dependency-first: every bundle appears after everything it
depends on, dependencies of one bundle keep their declared sequence order,
and the root bundle is last. A bundle reached twice is planned once (first
occurrence wins) as long as its version satisfies every constraint on it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Iterator
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Protocol
from typing import runtime_checkable

from cnab_runtime.bundle import Bundle
from cnab_runtime.exceptions import CircularDependencyError
from cnab_runtime.exceptions import CnabError
from cnab_runtime.exceptions import VersionConstraintError
from cnab_runtime.extensions.dependencies import Dependency
from cnab_runtime.extensions.registry import ExtensionProcessor
from cnab_runtime.extensions.registry import ProcessedExtensions
from cnab_runtime.validator import BundleValidator

logger = logging.getLogger(__name__)


@runtime_checkable
class BundleLocator(Protocol):
    """Resolves a bundle reference to a bundle definition."""

    async def locate(self, reference: str) -> Bundle:
        """
        Locate a bundle.

        Raises:
            BundleNotFoundError: If nothing exists at the reference
        """
        ...


@dataclass(frozen=True)
class PlanEntry:
    """One bundle to act on, in plan order.

    Attributes:
        position: 1-based position in the plan.
        name: Dependency name as declared (the bundle name for the root).
        address: Unique name of the entry in the plan, used by
            ``address#param`` overrides. The root's bundle name for the root,
            the dependency name for its direct dependencies, and
            ``parent/name`` further down (``web/db``).
        installation: Installation the claim is recorded under.
        bundle: Bundle definition.
        reference: Where the bundle was located from.
        parent: Installation of the bundle that first declared this one.
        extensions: Processed extensions of this bundle.
        is_root: True for the bundle the caller asked for.
    """

    position: int
    name: str
    address: str
    installation: str
    bundle: Bundle
    reference: str | None
    parent: str | None
    extensions: ProcessedExtensions
    is_root: bool = False


@dataclass
class Plan:
    """Ordered plan entries, root last."""

    entries: list[PlanEntry] = field(default_factory=list)

    @property
    def root(self) -> PlanEntry:
        return self.entries[-1]

    @property
    def dependencies(self) -> list[PlanEntry]:
        return self.entries[:-1]

    @property
    def installations(self) -> list[str]:
        return [entry.installation for entry in self.entries]

    def __iter__(self) -> Iterator[PlanEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


async def gather_or_cancel(*aws: Awaitable[Any]) -> list[Any]:
    """Run awaitables concurrently; the first failure cancels the rest and is re-raised."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@dataclass
class _Placed:
    name: str
    address: str
    installation: str
    bundle: Bundle
    reference: str | None
    parent: str | None
    extensions: ProcessedExtensions
    is_root: bool = False


class DependencyResolver:
    """Expands a bundle's dependencies into a Plan.

    Args:
        locator: Resolves dependency bundle references.
        processor: Extension processor applied to each located bundle.
        validator: Structural validator applied to each located bundle.
        allow_docker_host_access: Passed to extension processing of dependencies.
    """

    def __init__(
        self,
        locator: BundleLocator,
        processor: ExtensionProcessor | None = None,
        validator: BundleValidator | None = None,
        *,
        allow_docker_host_access: bool = False,
    ) -> None:
        self.locator = locator
        self.processor = processor or ExtensionProcessor()
        self.validator = validator or BundleValidator()
        self.allow_docker_host_access = allow_docker_host_access

    async def resolve(
        self,
        root: Bundle,
        *,
        installation: str,
        root_extensions: ProcessedExtensions | None = None,
        reference: str | None = None,
    ) -> Plan:
        """Build the plan for ``root``.

        Args:
            root: Bundle the caller asked for (already validated).
            installation: Installation name for the root bundle.
            root_extensions: Root's processed extensions; processed here if omitted.
            reference: Where the root bundle came from.

        Raises:
            CircularDependencyError: A bundle depends on itself, directly or not.
            VersionConstraintError: A located or shared bundle violates a constraint.
            BundleNotFoundError: A dependency reference cannot be located.
            ValidationError: A dependency bundle is malformed.
        """
        if root_extensions is None:
            root_extensions = self.processor.process(
                root, allow_docker_host_access=self.allow_docker_host_access
            )

        expansion = _Expansion(self)
        await expansion.expand(root, root_extensions, installation, chain=(root.name,), address=None)
        expansion.place(
            _Placed(
                name=root.name,
                address=root.name,
                installation=installation,
                bundle=root,
                reference=reference,
                parent=None,
                extensions=root_extensions,
                is_root=True,
            )
        )

        plan = Plan(
            [
                PlanEntry(
                    position=i,
                    name=p.name,
                    address=p.address,
                    installation=p.installation,
                    bundle=p.bundle,
                    reference=p.reference,
                    parent=p.parent,
                    extensions=p.extensions,
                    is_root=p.is_root,
                )
                for i, p in enumerate(expansion.order, start=1)
            ]
        )
        logger.info(f"Resolved plan for {root.identity}: {' -> '.join(e.address for e in plan)}")
        return plan


class _Expansion:
    """State of one resolve() call."""

    def __init__(self, resolver: DependencyResolver) -> None:
        self.resolver = resolver
        self.order: list[_Placed] = []
        self.placed: dict[str, _Placed] = {}
        self.located: dict[str, asyncio.Future[Bundle]] = {}

    def place(self, placed: _Placed) -> None:
        self.placed[placed.bundle.name] = placed
        self.order.append(placed)

    async def locate(self, reference: str) -> Bundle:
        # Share in-flight and finished lookups of the same reference
        if reference not in self.located:
            self.located[reference] = asyncio.ensure_future(self.resolver.locator.locate(reference))
        return await self.located[reference]

    async def expand(
        self,
        bundle: Bundle,
        extensions: ProcessedExtensions,
        installation: str,
        chain: tuple[str, ...],
        address: str | None,
    ) -> None:
        dependencies = extensions.dependencies
        if dependencies is None or len(dependencies) == 0:
            return

        declared = dependencies.list_by_sequence()
        try:
            located = await gather_or_cancel(*(self.locate(d.bundle) for d in declared))
        except CnabError as e:
            e.with_context(bundle=bundle.name)
            raise

        for dependency, found in zip(declared, located, strict=True):
            if found.name in chain:
                raise CircularDependencyError([*chain, found.name])

            existing = self.placed.get(found.name)
            if existing is not None:
                _check_version(dependency, existing.bundle, declared_by=bundle.name, shared=True)
                logger.debug(f"{dependency.name} of {bundle.name} already planned as {existing.installation}")
                continue

            _check_version(dependency, found, declared_by=bundle.name)
            self.resolver.validator.validate_or_raise(found)
            found_extensions = self.resolver.processor.process(
                found, allow_docker_host_access=self.resolver.allow_docker_host_access
            )
            dependency_installation = f"{installation}-{dependency.name}"
            dependency_address = f"{address}/{dependency.name}" if address else dependency.name

            await self.expand(
                found,
                found_extensions,
                dependency_installation,
                (*chain, found.name),
                address=dependency_address,
            )
            self.place(
                _Placed(
                    name=dependency.name,
                    address=dependency_address,
                    installation=dependency_installation,
                    bundle=found,
                    reference=dependency.bundle,
                    parent=installation,
                    extensions=found_extensions,
                )
            )


def _check_version(dependency: Dependency, bundle: Bundle, *, declared_by: str, shared: bool = False) -> None:
    try:
        satisfied = dependency.is_satisfied_by(bundle.version)
    except ValueError as e:
        raise VersionConstraintError(
            f"dependency {dependency.name}: cannot compare version {bundle.version!r}: {e}",
            bundle=declared_by,
        ) from e
    if satisfied:
        return

    wanted = dependency.version.describe() if dependency.version else "*"
    if shared:
        message = (
            f"dependency {dependency.name} requires {bundle.name} {wanted}, "
            f"but {bundle.name} {bundle.version} is already planned for another bundle"
        )
    else:
        message = (
            f"dependency {dependency.name} ({dependency.bundle}) requires version {wanted}, "
            f"found {bundle.version}"
        )
    raise VersionConstraintError(message, bundle=declared_by)
