"""Debug driver - logs the invocation document and reports success."""

from __future__ import annotations

import logging
from typing import Any

from cnab_runtime.driver import ExecutionResult
from cnab_runtime.driver import InvocationDocument

logger = logging.getLogger(__name__)


class DebugDriver:
    """Executes nothing; useful for dry runs and for checking resolved values.

    Config:
        outputs: Optional mapping of outputs to report for every invocation.
    """

    name = "debug"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        self.config = config or {}

    async def run(self, document: InvocationDocument) -> ExecutionResult:
        # Credentials never reach the log
        shown = document.model_dump(exclude={"credentials"})
        shown["credentials"] = sorted(document.credentials)
        logger.info(
            f"[debug] {document.action} {document.installation} "
            f"({document.bundle.name}:{document.bundle.version}) revision {document.revision}"
        )
        logger.debug(f"[debug] invocation document: {shown}")
        return ExecutionResult.success(dict(self.config.get("outputs") or {}))
