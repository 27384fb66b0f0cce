"""Command line interface.

    cnab-runtime install -f ./bundle.json --name demo --param port=8080
    cnab-runtime invoke --name demo --action status
    cnab-runtime uninstall --name demo --delete
    cnab-runtime installation list -o json
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
import yaml
from rich.table import Table

from cnab_runtime.actions import Action
from cnab_runtime.actions import ActionOptions
from cnab_runtime.cancellation import CancellationToken
from cnab_runtime.claims import Claim
from cnab_runtime.claims import FileClaimStore
from cnab_runtime.config import RuntimeSettings
from cnab_runtime.config import load_settings
from cnab_runtime.console import console
from cnab_runtime.console import status_text
from cnab_runtime.drivers import create_driver
from cnab_runtime.exceptions import CnabError
from cnab_runtime.exceptions import ValidationError
from cnab_runtime.locators import default_locator
from cnab_runtime.orchestrator import ActionOrchestrator
from cnab_runtime.orchestrator import RunSummary

OUTPUT_FORMATS = ("table", "json", "yaml")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@click.group()
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Runtime home directory (default: $CNAB_RUNTIME_HOME or ~/.cnab-runtime)",
)
@click.option("--verbose", "-v", count=True, help="Increase log output (-v info, -vv debug)")
@click.pass_context
def cli(ctx: click.Context, home: Path | None, verbose: int) -> None:
    """cnab-runtime - install and manage application bundles."""
    settings = load_settings(home)
    if verbose > 1:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.getLevelName(settings.log_level)
        if not isinstance(level, int):
            level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT)
    ctx.obj = settings


def action_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by install, upgrade, invoke and uninstall."""
    decorators = [
        click.option("--file", "-f", "file", help="Path to the bundle file or directory"),
        click.option("--reference", help="Bundle reference resolved through the bundle locators"),
        click.option("--name", "installation", help="Installation name (default: the bundle name)"),
        click.option("--param", "params", multiple=True, help="Parameter value as NAME=VALUE (dep#NAME for a dependency)"),
        click.option("--param-file", "param_files", multiple=True, help="YAML/JSON file of parameter values"),
        click.option("--cred", "creds", multiple=True, help="Credential value as NAME=VALUE"),
        click.option("--cred-file", "cred_files", multiple=True, help="YAML/JSON file of credential values"),
        click.option("--driver", "-d", help="Driver that executes the bundle (default from settings)"),
        click.option(
            "--allow-docker-host-access",
            is_flag=True,
            help="Allow bundles that require the docker extension to access the docker host",
        ),
        click.option("--timeout", type=float, help="Cancel the run after this many seconds"),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def _options(action: Action, kwargs: dict[str, Any]) -> ActionOptions:
    return ActionOptions(
        action=action,
        custom_action=kwargs.get("custom_action"),
        installation=kwargs.get("installation"),
        file=kwargs.get("file"),
        reference=kwargs.get("reference"),
        params=list(kwargs.get("params") or ()),
        param_files=list(kwargs.get("param_files") or ()),
        creds=list(kwargs.get("creds") or ()),
        cred_files=list(kwargs.get("cred_files") or ()),
        driver=kwargs.get("driver"),
        allow_docker_host_access=bool(kwargs.get("allow_docker_host_access")),
        delete=bool(kwargs.get("delete")),
        force_delete=bool(kwargs.get("force_delete")),
        timeout=kwargs.get("timeout"),
    )


def _build_orchestrator(settings: RuntimeSettings, driver_name: str) -> ActionOrchestrator:
    driver = create_driver(driver_name, settings.driver_config(driver_name))
    return ActionOrchestrator(
        FileClaimStore(settings.claims_dir or settings.home / "claims"),
        driver,
        default_locator(settings.search_paths, settings.aliases),
        driver_name=driver_name,
    )


async def _execute(orchestrator: ActionOrchestrator, options: ActionOptions, timeout: float | None) -> RunSummary:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    # Signal handlers are unavailable on some platforms and outside the main thread
    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signal.SIGINT, token.request, "interrupted")
    try:
        return await orchestrator.execute(options, cancellation=token, timeout=timeout)
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.remove_signal_handler(signal.SIGINT)


def run_action(settings: RuntimeSettings, options: ActionOptions) -> None:
    """Validate, execute and report one action; exits 1 if the run failed."""
    try:
        options.validate()
        orchestrator = _build_orchestrator(settings, options.driver or settings.driver)
    except ValidationError as e:
        raise click.UsageError(e.message) from e

    summary = asyncio.run(_execute(orchestrator, options, options.timeout or settings.timeout))
    print_summary(summary)
    if not summary.succeeded:
        sys.exit(1)


def print_summary(summary: RunSummary) -> None:
    """Render a run summary on the shared console."""
    if summary.entries:
        table = Table(
            title=f"{summary.action} {summary.installation or ''}".strip(),
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("#", justify="right")
        table.add_column("Installation", style="green")
        table.add_column("Bundle")
        table.add_column("Status")
        table.add_column("Details", style="dim")
        for entry in summary.entries:
            details = entry.reason or ""
            if entry.error is not None:
                details = entry.error.message
            elif entry.claim_revision is not None:
                details = f"revision {entry.claim_revision}"
            table.add_row(
                str(entry.position),
                entry.installation,
                f"{entry.bundle}:{entry.version}",
                status_text(entry.status.value),
                details,
            )
        console.print(table)

    if summary.succeeded:
        console.print(f"[green]✓[/green] {summary.action} succeeded")
    elif summary.error is not None:
        console.print(f"[red]Error:[/red] {summary.error.describe()}")


@cli.command()
@action_options
@click.pass_obj
def install(settings: RuntimeSettings, **kwargs: Any) -> None:
    """Install a bundle and its dependencies."""
    run_action(settings, _options(Action.INSTALL, kwargs))


@cli.command()
@action_options
@click.pass_obj
def upgrade(settings: RuntimeSettings, **kwargs: Any) -> None:
    """Upgrade an installation and its dependencies."""
    run_action(settings, _options(Action.UPGRADE, kwargs))


@cli.command()
@action_options
@click.option("--action", "custom_action", help="Custom action to invoke (required)")
@click.pass_obj
def invoke(settings: RuntimeSettings, **kwargs: Any) -> None:
    """Invoke a custom action on an installation."""
    run_action(settings, _options(Action.INVOKE, kwargs))


@cli.command()
@action_options
@click.option("--delete", is_flag=True, help="Remove the installation's claims after a successful uninstall")
@click.option("--force-delete", is_flag=True, help="Remove the installation's claims even if the uninstall fails")
@click.pass_obj
def uninstall(settings: RuntimeSettings, **kwargs: Any) -> None:
    """Uninstall an installation and its dependencies."""
    run_action(settings, _options(Action.UNINSTALL, kwargs))


@cli.group()
def installation() -> None:
    """Inspect recorded installations."""


def _claim_row(claim: Claim) -> dict[str, Any]:
    bundle = claim.bundle
    return {
        "name": claim.installation,
        "bundle": bundle.get("name"),
        "version": bundle.get("version"),
        "action": claim.action,
        "status": claim.status,
        "revision": claim.revision,
        "modified": claim.created.isoformat(),
    }


def _echo_structured(data: Any, fmt: str) -> None:
    if fmt == "json":
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(yaml.safe_dump(data, sort_keys=False), nl=False)


@installation.command(name="list")
@click.option("--output", "-o", "fmt", default="table", help="Output format: table, json or yaml")
@click.pass_obj
def installation_list(settings: RuntimeSettings, fmt: str) -> None:
    """List installations and their latest claim."""
    if fmt not in OUTPUT_FORMATS:
        raise click.UsageError(f"invalid format: {fmt}")

    async def latest() -> list[Claim]:
        store = FileClaimStore(settings.claims_dir or settings.home / "claims")
        claims = []
        for name in await store.list_installations():
            claim = await store.load_claim(name)
            if claim is not None:
                claims.append(claim)
        return claims

    try:
        claims = asyncio.run(latest())
    except CnabError as e:
        raise click.ClickException(e.message) from e

    rows = [_claim_row(claim) for claim in claims]
    if fmt != "table":
        _echo_structured(rows, fmt)
        return

    if not rows:
        console.print("[yellow]No installations found.[/yellow]")
        return

    table = Table(title="Installations", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="green")
    table.add_column("Bundle")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Revision", justify="right")
    for row in rows:
        table.add_row(
            row["name"],
            f"{row['bundle']}:{row['version']}",
            row["action"],
            status_text(row["status"]),
            str(row["revision"]),
        )
    console.print(table)


@installation.command(name="show")
@click.argument("name")
@click.option("--output", "-o", "fmt", default="table", help="Output format: table, json or yaml")
@click.pass_obj
def installation_show(settings: RuntimeSettings, name: str, fmt: str) -> None:
    """Show every recorded revision of an installation."""
    if fmt not in OUTPUT_FORMATS:
        raise click.UsageError(f"invalid format: {fmt}")

    store = FileClaimStore(settings.claims_dir or settings.home / "claims")
    try:
        claims = asyncio.run(store.list_claims(name))
    except CnabError as e:
        raise click.ClickException(e.message) from e
    if not claims:
        raise click.ClickException(f"installation {name} not found")

    if fmt != "table":
        _echo_structured([claim.model_dump(mode="json") for claim in claims], fmt)
        return

    latest = claims[-1]
    console.print(f"[bold]{name}[/bold]  {latest.bundle.get('name')}:{latest.bundle.get('version')}")
    if latest.parent:
        console.print(f"[dim]dependency of {latest.parent}[/dim]")
    if latest.outputs:
        console.print("Outputs:")
        for key, value in latest.outputs.items():
            console.print(f"  {key}: {value}")

    table = Table(title="History", show_header=True, header_style="bold cyan")
    table.add_column("Revision", justify="right")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Created")
    table.add_column("Error", style="dim")
    for claim in claims:
        table.add_row(
            str(claim.revision),
            claim.action,
            status_text(claim.status),
            claim.created.strftime("%Y-%m-%d %H:%M:%S"),
            (claim.error or {}).get("message", ""),
        )
    console.print(table)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
