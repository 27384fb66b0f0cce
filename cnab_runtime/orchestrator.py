"""
Action orchestrator - runs install/upgrade/invoke/uninstall for a bundle and its dependencies.

State machine per run::

    PLANNING -> RESOLVING -> EXECUTING -> SUCCEEDED | FAILED

- PLANNING: validate options, load the target bundle, validate it and
  process its extensions. Nothing has side effects yet.
- RESOLVING: expand dependencies into a plan and resolve every entry's
  parameter/credential values, so value errors surface before any driver runs.
- EXECUTING: run plan entries one at a time, dependency first. The first
  failure skips everything after it; nothing already executed is rolled back.

A RunSummary is returned in every case, including planning failures.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Any
from typing import TypeVar

from cnab_runtime.actions import Action
from cnab_runtime.actions import ActionOptions
from cnab_runtime.bundle import Bundle
from cnab_runtime.cancellation import CancellationToken
from cnab_runtime.claims import REDACTED
from cnab_runtime.claims import Claim
from cnab_runtime.claims import ClaimStatus
from cnab_runtime.claims import ClaimStore
from cnab_runtime.claims import check_installation_name
from cnab_runtime.driver import BundleInfo
from cnab_runtime.driver import Driver
from cnab_runtime.driver import ExecutionResult
from cnab_runtime.driver import ExecutionTarget
from cnab_runtime.driver import InvocationDocument
from cnab_runtime.exceptions import ActionValidationError
from cnab_runtime.exceptions import CnabError
from cnab_runtime.exceptions import DriverError
from cnab_runtime.exceptions import InstallationNotFoundError
from cnab_runtime.exceptions import RunCancelledError
from cnab_runtime.extensions.registry import ExtensionProcessor
from cnab_runtime.extensions.registry import ExtensionRegistry
from cnab_runtime.extensions.registry import ProcessedExtensions
from cnab_runtime.loader import load_bundle
from cnab_runtime.parameters import check_overrides
from cnab_runtime.parameters import resolve_credentials
from cnab_runtime.parameters import resolve_parameters
from cnab_runtime.resolver import BundleLocator
from cnab_runtime.resolver import DependencyResolver
from cnab_runtime.resolver import Plan
from cnab_runtime.resolver import PlanEntry
from cnab_runtime.validator import BundleValidator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunState(str, Enum):
    """Run-level states."""

    PLANNING = "planning"
    RESOLVING = "resolving"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class EntryStatus(str, Enum):
    """Per-entry outcomes."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class EntryOutcome:
    """What happened to one plan entry."""

    position: int
    name: str
    address: str
    installation: str
    bundle: str
    version: str
    action: str
    status: EntryStatus
    outputs: dict[str, Any] = field(default_factory=dict)
    error: CnabError | None = None
    reason: str | None = None
    claim_revision: int | None = None


@dataclass
class RunSummary:
    """Result of one orchestrated run, returned whatever the terminal state."""

    action: str
    installation: str | None = None
    status: RunState = RunState.PLANNING
    states: list[RunState] = field(default_factory=list)
    entries: list[EntryOutcome] = field(default_factory=list)
    error: CnabError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunState.SUCCEEDED

    @property
    def failed_entry(self) -> EntryOutcome | None:
        for entry in self.entries:
            if entry.status in (EntryStatus.FAILED, EntryStatus.CANCELLED):
                return entry
        return None

    def outcome(self, address: str) -> EntryOutcome | None:
        """Outcome of the entry at ``address`` (see PlanEntry.address)."""
        for entry in self.entries:
            if entry.address == address:
                return entry
        return None

    def enter(self, state: RunState) -> None:
        self.status = state
        self.states.append(state)
        logger.debug(f"Run {self.action} {self.installation or ''} -> {state.value}")

    def fail(self, error: CnabError) -> None:
        self.error = error
        self.enter(RunState.FAILED)

    def raise_for_status(self) -> None:
        """Raise the run's error if it failed."""
        if self.status == RunState.FAILED and self.error is not None:
            raise self.error


class InstallationLocks:
    """Per-installation locks; at most one run holds an installation lineage."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        """Installations currently held or waited on."""
        return len(self._locks)

    def locked(self, installation: str) -> bool:
        lock = self._locks.get(installation)
        return lock is not None and lock.locked()

    @contextlib.asynccontextmanager
    async def hold(
        self,
        installations: Iterable[str],
        *,
        guard: Callable[[Awaitable[bool]], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[None]:
        """Acquire every named lock, in sorted order so runs cannot deadlock.

        Args:
            installations: Installation names to lock.
            guard: Wraps each lock wait, e.g. to give up on cancellation. Locks
                already taken are released when the guard raises.
        """
        entered: list[str] = []
        acquired: list[asyncio.Lock] = []
        try:
            for name in sorted(set(installations)):
                lock = self._enter(name)
                entered.append(name)
                waiting = lock.acquire()
                await (guard(waiting) if guard is not None else waiting)
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for name in entered:
                self._leave(name)

    def _enter(self, name: str) -> asyncio.Lock:
        self._users[name] = self._users.get(name, 0) + 1
        return self._locks.setdefault(name, asyncio.Lock())

    def _leave(self, name: str) -> None:
        self._users[name] -= 1
        if self._users[name] == 0:
            del self._users[name]
            del self._locks[name]


@dataclass
class _Prepared:
    """Values resolved for one plan entry before execution starts."""

    entry: PlanEntry
    previous: Claim | None
    skip_reason: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    credentials: dict[str, str] = field(default_factory=dict)


class ActionOrchestrator:
    """Drives one action across a bundle's dependency plan.

    Args:
        claims: Claim store read for previous state and appended to per attempt.
        driver: Backend that executes each entry.
        locator: Resolves bundle references (``--reference`` and dependencies).
        registry: Extension handlers; defaults to the built-in ones.
        locks: Shared installation locks; share one instance (or one
            orchestrator) between concurrent runs to serialize them.
        driver_name: Name reported to drivers in the execution target.
    """

    def __init__(
        self,
        claims: ClaimStore,
        driver: Driver,
        locator: BundleLocator,
        *,
        registry: ExtensionRegistry | None = None,
        locks: InstallationLocks | None = None,
        driver_name: str | None = None,
    ) -> None:
        self.claims = claims
        self.driver = driver
        self.locator = locator
        self.processor = ExtensionProcessor(registry)
        self.validator = BundleValidator()
        self.locks = locks or InstallationLocks()
        self.driver_name = driver_name or getattr(driver, "name", "custom")

    async def execute(
        self,
        options: ActionOptions,
        *,
        cancellation: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> RunSummary:
        """Run the action described by ``options``.

        The run works on its own child of ``cancellation``, so a run deadline
        cancels this run without cancelling the caller's token.

        Args:
            options: Action options (validated here).
            cancellation: Caller-controlled cancellation token.
            timeout: Seconds for the whole run; defaults to ``options.timeout``.

        Returns:
            RunSummary; inspect ``status`` or call ``raise_for_status()``.
        """
        token = CancellationToken()
        if cancellation is not None:
            cancellation.register_child(token)
        try:
            return await self._execute(options, token, cancellation or token, timeout)
        finally:
            if cancellation is not None:
                cancellation.unregister_child(token)

    async def _execute(
        self,
        options: ActionOptions,
        token: CancellationToken,
        caller: CancellationToken,
        timeout: float | None,
    ) -> RunSummary:
        timeout = timeout if timeout is not None else options.timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None

        summary = RunSummary(action=options.action_name or options.action.value, installation=options.installation)
        summary.enter(RunState.PLANNING)

        def guard(aw: Awaitable[T]) -> Awaitable[T]:
            return self._race(aw, token, deadline, timeout)

        plan: Plan | None = None
        try:
            options.validate()
            summary.action = options.action_name

            bundle, reference, installation, extensions = await guard(self._plan(options))
            summary.installation = installation

            summary.enter(RunState.RESOLVING)
            resolver = DependencyResolver(
                self.locator,
                self.processor,
                self.validator,
                allow_docker_host_access=options.allow_docker_host_access,
            )
            plan = await guard(
                resolver.resolve(bundle, installation=installation, root_extensions=extensions, reference=reference)
            )
            check_overrides(
                options.parameters, {e.address: list(e.bundle.parameters) for e in plan}, "parameter"
            )
            check_overrides(
                options.credentials, {e.address: list(e.bundle.credentials) for e in plan}, "credential"
            )

            async with self.locks.hold(plan.installations, guard=guard):
                prepared = await self._prepare(plan, options)
                summary.enter(RunState.EXECUTING)
                await self._run_plan(prepared, options, summary, token, deadline, timeout)

        except CnabError as e:
            if plan is not None and not summary.entries:
                summary.entries = [
                    _outcome(entry, options.action_name, EntryStatus.SKIPPED, reason="not started")
                    for entry in plan
                ]
            if isinstance(e, RunCancelledError):
                await caller.trigger_callbacks()
            logger.error(f"{options.action_name or options.action.value} failed: {e.describe()}")
            summary.fail(e)
            return summary

        summary.enter(RunState.SUCCEEDED)
        logger.info(f"{summary.action} {summary.installation} succeeded")
        return summary

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    async def _plan(self, options: ActionOptions) -> tuple[Bundle, str | None, str, ProcessedExtensions]:
        action = options.action
        existing: Claim | None = None

        if options.file:
            bundle = await load_bundle(options.file)
            reference = options.reference or str(options.file)
        elif options.reference:
            bundle = await self.locator.locate(options.reference)
            reference = options.reference
        else:
            existing = await self._require_claim(options.installation or "")
            bundle = existing.bundle_definition()
            reference = existing.bundle_reference

        installation = options.installation or _default_installation(bundle.name)
        problem = check_installation_name(installation)
        if problem:
            raise ActionValidationError(problem, bundle=bundle.name)

        self.validator.validate_or_raise(bundle)

        if action is Action.INVOKE and not bundle.supports_action(options.action_name):
            raise ActionValidationError(
                f"bundle {bundle.name} does not define action {options.action_name}",
                bundle=bundle.name,
                action=options.action_name,
            )

        stateless = _is_stateless(bundle, options.action_name)
        if action is not Action.INSTALL and existing is None and not stateless:
            await self._require_claim(installation)

        extensions = self.processor.process(
            bundle, allow_docker_host_access=options.allow_docker_host_access
        )
        logger.info(f"Planned {options.action_name} of {bundle.identity} as {installation}")
        return bundle, reference, installation, extensions

    async def _require_claim(self, installation: str) -> Claim:
        claim = await self.claims.load_claim(installation)
        if claim is None:
            raise InstallationNotFoundError(f"installation {installation} not found")
        return claim

    # -------------------------------------------------------------------------
    # Resolving
    # -------------------------------------------------------------------------

    async def _prepare(self, plan: Plan, options: ActionOptions) -> list[_Prepared]:
        action = options.action_name
        prepared: list[_Prepared] = []
        for entry in plan:
            previous = await self.claims.load_claim(entry.installation)
            item = _Prepared(entry=entry, previous=previous)
            item.skip_reason = _skip_reason(entry, previous, options)
            if item.skip_reason is None:
                outputs = {k: v for k, v in (previous.outputs if previous else {}).items() if v != REDACTED}
                item.parameters = resolve_parameters(
                    entry.bundle,
                    action,
                    options.parameters,
                    target=entry.address,
                    previous_outputs=outputs,
                    sources=entry.extensions.parameter_sources,
                )
                item.credentials = resolve_credentials(
                    entry.bundle, action, options.credentials, target=entry.address
                )
            prepared.append(item)
        return prepared

    # -------------------------------------------------------------------------
    # Executing
    # -------------------------------------------------------------------------

    async def _run_plan(
        self,
        prepared: list[_Prepared],
        options: ActionOptions,
        summary: RunSummary,
        token: CancellationToken,
        deadline: float | None,
        timeout: float | None,
    ) -> None:
        action = options.action_name
        for index, item in enumerate(prepared):
            entry = item.entry

            if token.is_cancelled:
                error = RunCancelledError(token.reason or "cancelled")
                self._skip_rest(summary, prepared[index:], action, "run cancelled")
                raise error

            if item.skip_reason is not None:
                logger.warning(f"Skipping {entry.installation}: {item.skip_reason}")
                summary.entries.append(_outcome(entry, action, EntryStatus.SKIPPED, reason=item.skip_reason))
                continue

            try:
                outcome = await self._run_entry(item, options, token, deadline, timeout)
            except RunCancelledError as e:
                e.with_context(bundle=entry.bundle.name, action=action, position=entry.position)
                revision, reason = await self._record_cancelled(item, action, e.reason)
                summary.entries.append(
                    _outcome(entry, action, EntryStatus.CANCELLED, error=e, reason=reason, revision=revision)
                )
                self._skip_rest(summary, prepared[index + 1 :], action, "run cancelled")
                raise
            except CnabError as e:
                e.with_context(bundle=entry.bundle.name, action=action, position=entry.position)
                outcome = _outcome(entry, action, EntryStatus.FAILED, error=e)

            summary.entries.append(outcome)
            if outcome.status == EntryStatus.FAILED and outcome.error is not None:
                self._skip_rest(summary, prepared[index + 1 :], action, f"{entry.address} failed")
                raise outcome.error

    async def _run_entry(
        self,
        item: _Prepared,
        options: ActionOptions,
        token: CancellationToken,
        deadline: float | None,
        timeout: float | None,
    ) -> EntryOutcome:
        entry = item.entry
        action = options.action_name
        previous = item.previous
        stateless = _is_stateless(entry.bundle, action)
        revision = (previous.revision + 1) if previous else 1

        document = InvocationDocument(
            installation=entry.installation,
            revision=revision,
            action=action,
            bundle=BundleInfo(
                name=entry.bundle.name,
                version=entry.bundle.version,
                reference=entry.reference,
                steps=entry.bundle.steps_for(action),
            ),
            parameters=item.parameters,
            credentials=item.credentials,
            environment=ExecutionTarget(
                driver=self.driver_name,
                claim_revision=previous.revision if previous else None,
                allow_docker_host_access=options.allow_docker_host_access,
                docker_privileged=bool(entry.extensions.docker and entry.extensions.docker.privileged),
                labels={"installation": entry.installation, **({"parent": entry.parent} if entry.parent else {})},
            ),
        )

        logger.info(f"[{entry.position}] {action} {entry.installation} ({entry.bundle.identity})")
        result = await self._race(self._invoke(document), token, deadline, timeout)

        claim_revision = None
        if not stateless:
            claim = Claim.next(
                previous,
                installation=entry.installation,
                action=action,
                status="succeeded" if result.succeeded else "failed",
                bundle=entry.bundle,
                bundle_reference=entry.reference,
                parameters=item.parameters,
                result=result,
                parent=entry.parent,
            )
            try:
                await self.claims.save_claim(claim)
            except CnabError as e:
                e.with_context(bundle=entry.bundle.name, action=action, position=entry.position)
                return _outcome(entry, action, EntryStatus.FAILED, outputs=result.outputs, error=e)
            claim_revision = claim.revision

        if not result.succeeded:
            payload = result.error.model_dump() if result.error else {}
            error = DriverError(
                payload.get("message") or "driver reported failure",
                code=payload.get("code"),
                payload=payload,
            ).with_context(bundle=entry.bundle.name, action=action, position=entry.position)
            logger.error(f"[{entry.position}] {action} {entry.installation} failed: {error.message}")
            if options.force_delete and options.action is Action.UNINSTALL:
                problem = await self._delete_claims(entry, action)
                if problem is not None:
                    logger.error(f"[{entry.position}] could not delete claims of {entry.installation}: {problem}")
            return _outcome(entry, action, EntryStatus.FAILED, outputs=result.outputs, error=error, revision=claim_revision)

        if options.action is Action.UNINSTALL and (options.delete or options.force_delete):
            problem = await self._delete_claims(entry, action)
            if problem is not None:
                return _outcome(
                    entry, action, EntryStatus.FAILED, outputs=result.outputs, error=problem, revision=claim_revision
                )

        return _outcome(entry, action, EntryStatus.SUCCEEDED, outputs=result.outputs, revision=claim_revision)

    async def _invoke(self, document: InvocationDocument) -> ExecutionResult:
        try:
            return await self.driver.run(document)
        except CnabError as e:
            return ExecutionResult.failure(e.message, code=getattr(e, "code", None) or "execution-error")
        except Exception as e:
            # Driver bugs are reported as opaque execution errors for that entry
            logger.exception(f"Driver raised while running {document.action} {document.installation}")
            return ExecutionResult.failure(f"driver error: {e}")

    async def _delete_claims(self, entry: PlanEntry, action: str) -> CnabError | None:
        try:
            await self.claims.delete_installation(entry.installation)
        except CnabError as e:
            return e.with_context(bundle=entry.bundle.name, action=action, position=entry.position)
        return None

    async def _record_cancelled(self, item: _Prepared, action: str, reason: str) -> tuple[int | None, str]:
        """Save a cancelled claim; returns its revision and the outcome reason."""
        entry = item.entry
        if _is_stateless(entry.bundle, action):
            return None, reason
        status: ClaimStatus = "cancelled"
        claim = Claim.next(
            item.previous,
            installation=entry.installation,
            action=action,
            status=status,
            bundle=entry.bundle,
            bundle_reference=entry.reference,
            parameters=item.parameters,
            error={"code": "cancelled", "message": "run cancelled"},
            parent=entry.parent,
        )
        try:
            await self.claims.save_claim(claim)
        except CnabError as e:
            logger.error(f"[{entry.position}] could not record cancellation of {entry.installation}: {e}")
            return None, f"{reason}; claim not saved: {e}"
        return claim.revision, reason

    def _skip_rest(self, summary: RunSummary, rest: list[_Prepared], action: str, reason: str) -> None:
        for item in rest:
            summary.entries.append(_outcome(item.entry, action, EntryStatus.SKIPPED, reason=reason))

    async def _race(
        self,
        aw: Awaitable[T],
        token: CancellationToken,
        deadline: float | None,
        timeout: float | None,
    ) -> T:
        """Await ``aw`` unless the token fires or the deadline passes first.

        Raises:
            RunCancelledError: The in-flight work was cancelled.
        """
        if token.is_cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise RunCancelledError(token.reason or "cancelled")

        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(token.wait())
        remaining = None
        if deadline is not None:
            remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        try:
            done, _ = await asyncio.wait({task, waiter}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        if not token.is_cancelled:
            token.request(f"timed out after {timeout}s")
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise RunCancelledError(token.reason or "cancelled")


def _default_installation(bundle_name: str) -> str:
    return bundle_name.replace("/", "-").replace("\\", "-").lstrip(".") or "installation"


def _is_stateless(bundle: Bundle, action: str) -> bool:
    definition = bundle.actions.get(action)
    return definition is not None and definition.stateless


def _skip_reason(entry: PlanEntry, previous: Claim | None, options: ActionOptions) -> str | None:
    action = options.action_name
    if not entry.bundle.supports_action(action):
        return f"bundle {entry.bundle.name} does not define action {action}"
    if options.action is not Action.INSTALL and previous is None and not _is_stateless(entry.bundle, action):
        return f"installation {entry.installation} has no claim"
    return None


def _outcome(
    entry: PlanEntry,
    action: str,
    status: EntryStatus,
    *,
    outputs: dict[str, Any] | None = None,
    error: CnabError | None = None,
    reason: str | None = None,
    revision: int | None = None,
) -> EntryOutcome:
    return EntryOutcome(
        position=entry.position,
        name=entry.name,
        address=entry.address,
        installation=entry.installation,
        bundle=entry.bundle.name,
        version=entry.bundle.version,
        action=action,
        status=status,
        outputs=dict(outputs or {}),
        error=error,
        reason=reason,
        claim_revision=revision,
    )
