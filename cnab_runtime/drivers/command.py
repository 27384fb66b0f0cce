"""Command driver - runs a local executable for each invocation.

Protocol with the executable:

- The invocation document is written to stdin as JSON.
- The action is also passed in ``CNAB_ACTION`` / ``CNAB_INSTALLATION_NAME``.
- Optionally a result document (``{"status": ..., "outputs": ..., "error": ...}``)
  is written to stdout as JSON.
- Exit status 0 means success even when stdout is empty.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from cnab_runtime.driver import EXECUTION_ERROR
from cnab_runtime.driver import TIMEOUT_ERROR
from cnab_runtime.driver import ExecutionResult
from cnab_runtime.driver import InvocationDocument
from cnab_runtime.exceptions import ValidationError

logger = logging.getLogger(__name__)

# Characters of stderr kept in opaque error payloads
STDERR_TAIL = 2000


class CommandDriver:
    """Local process backend.

    Config:
        command: Executable and arguments (string or list). Required.
        timeout: Seconds before the process is killed and the invocation
            reported as failed with code ``timeout``.
        env: Extra environment variables for the process.
        cwd: Working directory.
    """

    name = "command"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        config = config or {}
        command = config.get("command")
        if isinstance(command, str):
            command = shlex.split(command)
        if not command:
            raise ValidationError("command driver requires a 'command' setting")
        self.command: list[str] = [str(c) for c in command]
        self.timeout: float | None = config.get("timeout")
        self.env: dict[str, str] = {str(k): str(v) for k, v in (config.get("env") or {}).items()}
        self.cwd: str | None = config.get("cwd")

    async def run(self, document: InvocationDocument) -> ExecutionResult:
        env = {
            **os.environ,
            **self.env,
            "CNAB_ACTION": document.action,
            "CNAB_INSTALLATION_NAME": document.installation,
            "CNAB_BUNDLE_NAME": document.bundle.name,
            "CNAB_BUNDLE_VERSION": document.bundle.version,
        }
        logger.debug(f"Running {self.command[0]} for {document.action} {document.installation}")

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self.cwd,
            )
        except OSError as e:
            return ExecutionResult.failure(f"could not start {self.command[0]}: {e}")

        payload = document.model_dump_json().encode()
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(payload), timeout=self.timeout)
        except TimeoutError:
            await _kill(process)
            return ExecutionResult.failure(
                f"{self.command[0]} did not finish within {self.timeout}s", code=TIMEOUT_ERROR
            )
        except asyncio.CancelledError:
            await _kill(process)
            raise

        return _interpret(process.returncode, stdout, stderr)


def _interpret(returncode: int | None, stdout: bytes, stderr: bytes) -> ExecutionResult:
    """Turn process exit status and output into an ExecutionResult."""
    emitted = _parse_result(stdout)
    if returncode == 0:
        if emitted is not None:
            return emitted
        return ExecutionResult.success()

    if emitted is not None and emitted.error is not None:
        return ExecutionResult(status="failed", outputs=emitted.outputs, error=emitted.error)

    tail = stderr.decode(errors="replace")[-STDERR_TAIL:]
    return ExecutionResult.failure(
        f"process exited with status {returncode}",
        code=EXECUTION_ERROR,
        details={"exit_code": returncode, "stderr": tail},
    )


def _parse_result(stdout: bytes) -> ExecutionResult | None:
    text = stdout.decode(errors="replace").strip()
    if not text:
        return None
    try:
        return ExecutionResult.model_validate(json.loads(text))
    except (json.JSONDecodeError, PydanticValidationError):
        logger.debug("Driver stdout is not a result document, ignoring it")
        return None


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        process.kill()
    await process.wait()
