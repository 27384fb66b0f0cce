"""
Driver invocation protocol.

A driver is any backend that can execute one bundle action. The
orchestrator hands it an InvocationDocument and waits for an
ExecutionResult; it never looks inside driver-specific error payloads.
Uses Protocol classes for structural subtyping (no inheritance required).
"""

from __future__ import annotations

from typing import Any
from typing import Literal
from typing import Protocol
from typing import runtime_checkable

from pydantic import BaseModel
from pydantic import Field
from pydantic import model_validator

# Error code for failures the backend could not describe any better
EXECUTION_ERROR = "execution-error"
TIMEOUT_ERROR = "timeout"


class BundleInfo(BaseModel):
    """Identity of the bundle being acted on."""

    name: str
    version: str
    reference: str | None = Field(default=None, description="Where the bundle was located from")
    steps: list[dict[str, Any]] = Field(default_factory=list, description="Steps for the action")


class ExecutionTarget(BaseModel):
    """Execution-target metadata passed through to the backend."""

    driver: str
    claim_revision: int | None = Field(default=None, description="Revision of the claim being resumed")
    allow_docker_host_access: bool = False
    docker_privileged: bool = False
    labels: dict[str, str] = Field(default_factory=dict)


class InvocationDocument(BaseModel):
    """Everything a driver needs to execute one action for one installation."""

    installation: str
    revision: int = Field(description="Claim revision this invocation will be recorded as")
    action: str
    bundle: BundleInfo
    parameters: dict[str, Any] = Field(default_factory=dict)
    credentials: dict[str, str] = Field(default_factory=dict)
    environment: ExecutionTarget


class DriverErrorPayload(BaseModel):
    """Structured error reported by a driver, passed through unchanged."""

    code: str = EXECUTION_ERROR
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ExecutionResult(BaseModel):
    """Outcome of one driver invocation."""

    status: Literal["succeeded", "failed"]
    outputs: dict[str, Any] = Field(default_factory=dict)
    error: DriverErrorPayload | None = None

    @model_validator(mode="after")
    def _failure_has_error(self) -> ExecutionResult:
        if self.status == "failed" and self.error is None:
            self.error = DriverErrorPayload(message="driver reported failure without an error")
        return self

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @classmethod
    def success(cls, outputs: dict[str, Any] | None = None) -> ExecutionResult:
        return cls(status="succeeded", outputs=outputs or {})

    @classmethod
    def failure(
        cls,
        message: str,
        *,
        code: str = EXECUTION_ERROR,
        details: dict[str, Any] | None = None,
        outputs: dict[str, Any] | None = None,
    ) -> ExecutionResult:
        return cls(
            status="failed",
            outputs=outputs or {},
            error=DriverErrorPayload(code=code, message=message, details=details or {}),
        )


@runtime_checkable
class Driver(Protocol):
    """Interface for execution backends."""

    async def run(self, document: InvocationDocument) -> ExecutionResult:
        """
        Execute one action.

        Blocks until the backend reports completion. Cancellation arrives as
        ``asyncio.CancelledError``; the driver must release anything it
        started and let the error propagate.

        Args:
            document: Invocation document for the action

        Returns:
            Execution result; failures carry an error payload
        """
        ...
