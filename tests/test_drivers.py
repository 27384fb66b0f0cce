"""Tests for the driver protocol and built-in drivers."""

import sys
import textwrap

import pytest
from cnab_runtime.driver import BundleInfo
from cnab_runtime.driver import Driver
from cnab_runtime.driver import ExecutionResult
from cnab_runtime.driver import ExecutionTarget
from cnab_runtime.driver import InvocationDocument
from cnab_runtime.drivers import CommandDriver
from cnab_runtime.drivers import DebugDriver
from cnab_runtime.drivers import create_driver
from cnab_runtime.exceptions import DriverNotFoundError
from cnab_runtime.exceptions import ValidationError


@pytest.fixture
def document() -> InvocationDocument:
    """Invocation document for installing a small bundle."""
    return InvocationDocument(
        installation="demo",
        revision=1,
        action="install",
        bundle=BundleInfo(name="app", version="1.0.0", steps=[{"run": "echo hi"}]),
        parameters={"port": 8080},
        credentials={"token": "s3cret"},
        environment=ExecutionTarget(driver="command"),
    )


def python_command(script: str) -> list[str]:
    return [sys.executable, "-c", textwrap.dedent(script)]


class TestExecutionResult:
    """Tests for ExecutionResult."""

    def test_failure_without_error_gets_one(self) -> None:
        """A failed status always carries an error payload."""
        result = ExecutionResult(status="failed")
        assert result.error is not None
        assert result.error.code == "execution-error"

    def test_failure_helper(self) -> None:
        """failure() builds a structured payload."""
        result = ExecutionResult.failure("boom", code="quota", details={"n": 1})
        assert not result.succeeded
        assert result.error is not None
        assert result.error.model_dump() == {"code": "quota", "message": "boom", "details": {"n": 1}}


class TestCreateDriver:
    """Tests for create_driver."""

    def test_known_drivers(self) -> None:
        """Built-in drivers satisfy the Driver protocol."""
        assert isinstance(create_driver("debug"), Driver)
        assert isinstance(create_driver("command", {"command": "true"}), Driver)

    def test_unknown_driver(self) -> None:
        """Unknown names list the supported drivers."""
        with pytest.raises(DriverNotFoundError, match="expected one of command, debug"):
            create_driver("docker")

    def test_command_driver_needs_command(self) -> None:
        """The command driver cannot run without a command."""
        with pytest.raises(ValidationError, match="requires a 'command' setting"):
            CommandDriver({})


class TestDebugDriver:
    """Tests for DebugDriver."""

    @pytest.mark.asyncio
    async def test_reports_configured_outputs(self, document: InvocationDocument) -> None:
        """The debug driver succeeds with its configured outputs."""
        result = await DebugDriver({"outputs": {"url": "http://demo"}}).run(document)
        assert result.succeeded
        assert result.outputs == {"url": "http://demo"}


class TestCommandDriver:
    """Tests for CommandDriver."""

    @pytest.mark.asyncio
    async def test_reads_document_and_reports_result(self, document: InvocationDocument) -> None:
        """The document arrives on stdin; the result document is read from stdout."""
        script = """
            import json, os, sys
            doc = json.load(sys.stdin)
            print(json.dumps({
                "status": "succeeded",
                "outputs": {
                    "port": doc["parameters"]["port"],
                    "action": os.environ["CNAB_ACTION"],
                    "installation": os.environ["CNAB_INSTALLATION_NAME"],
                },
            }))
        """
        result = await CommandDriver({"command": python_command(script)}).run(document)

        assert result.succeeded
        assert result.outputs == {"port": 8080, "action": "install", "installation": "demo"}

    @pytest.mark.asyncio
    async def test_exit_zero_without_output(self, document: InvocationDocument) -> None:
        """A silent successful exit is a success."""
        result = await CommandDriver({"command": python_command("import sys; sys.stdin.read()")}).run(document)
        assert result.succeeded
        assert result.outputs == {}

    @pytest.mark.asyncio
    async def test_emitted_error_passed_through(self, document: InvocationDocument) -> None:
        """A structured error on stdout is kept unchanged."""
        script = """
            import json, sys
            sys.stdin.read()
            print(json.dumps({"status": "failed", "error": {"code": "quota", "message": "out of quota", "details": {"limit": 3}}}))
            sys.exit(3)
        """
        result = await CommandDriver({"command": python_command(script)}).run(document)

        assert not result.succeeded
        assert result.error is not None
        assert result.error.code == "quota"
        assert result.error.details == {"limit": 3}

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_opaque_failure(self, document: InvocationDocument) -> None:
        """Without a result document the exit status and stderr are reported."""
        script = """
            import sys
            sys.stdin.read()
            sys.stderr.write("disk full")
            sys.exit(2)
        """
        result = await CommandDriver({"command": python_command(script)}).run(document)

        assert not result.succeeded
        assert result.error is not None
        assert result.error.code == "execution-error"
        assert result.error.message == "process exited with status 2"
        assert result.error.details["exit_code"] == 2
        assert "disk full" in result.error.details["stderr"]

    @pytest.mark.asyncio
    async def test_timeout(self, document: InvocationDocument) -> None:
        """A process that outlives the driver timeout is killed and reported."""
        script = """
            import time
            time.sleep(30)
        """
        driver = CommandDriver({"command": python_command(script), "timeout": 0.5})
        result = await driver.run(document)

        assert not result.succeeded
        assert result.error is not None
        assert result.error.code == "timeout"

    @pytest.mark.asyncio
    async def test_missing_executable(self, document: InvocationDocument) -> None:
        """An executable that cannot start is a failure, not a crash."""
        result = await CommandDriver({"command": ["/nonexistent/cnab-driver"]}).run(document)
        assert not result.succeeded
        assert result.error is not None
        assert "could not start" in result.error.message
