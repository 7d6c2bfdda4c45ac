"""Typer command line for checking, updating and cleaning servers."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from updatectl import __version__
from updatectl.config import Settings, settings
from updatectl.errors import ServerConfigError
from updatectl.models.cleanup import CleanupProfile
from updatectl.models.jobs import AggregateResult, Operation
from updatectl.models.server import Server
from updatectl.models.updates import UpdateReport
from updatectl.services.executor import RemoteExecutor
from updatectl.services.notifier import NotificationSink, webhook_actions
from updatectl.services.orchestrator import Orchestrator
from updatectl.services.registry import ServerRegistry
from updatectl.services.reporting import check_summary, final_tally, outcome_line
from updatectl.utils.logging import get_logger, setup_logging

log = get_logger(__name__)

console = Console()

EXIT_FAILED = 1
EXIT_CONFIG = 2

app = typer.Typer(
    help="Check, update and clean OS packages and Docker images across servers.",
    no_args_is_help=True,
    add_completion=False,
)
list_app = typer.Typer(help="Show configured servers or usage examples.")
app.add_typer(list_app, name="list")

SERVERS_OPTION = typer.Option(
    None,
    "--servers",
    help="Comma-separated server names or specs (default: all configured).",
)
LOCAL_OPTION = typer.Option(False, "--local", help="Target only this machine.")
SSH_KEY_OPTION = typer.Option(None, "--ssh-key", help="Private key for SSH targets.")
YES_OPTION = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt.")
DRY_RUN_OPTION = typer.Option(False, "--dry-run", help="Report what would change; change nothing.")
QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Only print the final tally and errors.")
JSON_OPTION = typer.Option(False, "--json", help="Print the aggregate result as JSON.")

EXAMPLES = """\
updatectl check                              # check every configured server
updatectl --servers web,db os --dry-run      # preview OS upgrades
updatectl --local docker --all -y            # pull all local images, restart containers
updatectl --servers web docker --images nginx:latest
updatectl cleanup --profile moderate          # report what would be removed
updatectl cleanup --profile aggressive --execute -y
updatectl serve --port 8080                   # start the webhook server

UPDATE_SERVERS="web:admin@10.0.0.5,db:admin@10.0.0.6,nas:local"
"""


class CliState:
    __slots__ = (
        "cfg", "servers", "local", "ssh_key", "yes", "dry_run", "quiet", "as_json",
    )

    def __init__(self, cfg: Settings, **opts: Any) -> None:
        self.cfg = cfg
        for key in self.__slots__[1:]:
            setattr(self, key, opts.get(key))


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj


# ── target selection ──────────────────────────────────────────────────────

def select_targets(
    registry: ServerRegistry, servers: Optional[str], local: bool,
) -> list[Server]:
    """``--local`` wins, then ``--servers``, else every configured server."""
    if local:
        return [registry.local_server]
    if servers:
        return registry.resolve_many(servers)
    return registry.all()


def _targets(state: CliState) -> list[Server]:
    try:
        registry = ServerRegistry.from_settings(state.cfg)
        targets = select_targets(registry, state.servers, state.local)
    except ServerConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=EXIT_CONFIG) from exc
    log.debug("cli.targets", servers=[t.name for t in targets])
    return targets


def _orchestrator(state: CliState) -> Orchestrator:
    return Orchestrator(RemoteExecutor(state.cfg, ssh_key=state.ssh_key), cfg=state.cfg)


def _confirm(state: CliState, action: str, targets: list[Server]) -> None:
    if state.yes or state.dry_run:
        return
    console.print(f"About to {action} on:")
    for t in targets:
        console.print(f"  • {t}")
    if not typer.confirm("Continue?", default=False):
        console.print("Aborted.")
        raise typer.Exit(code=0)


def _report(state: CliState, result: AggregateResult, summary: str) -> None:
    if state.as_json:
        typer.echo(json.dumps(result.to_dict()))
        return
    for outcome in result.results:
        if state.quiet and outcome.ok:
            continue
        console.print(outcome_line(outcome), highlight=False)
    console.print(summary, highlight=False)


def _finish(result: AggregateResult) -> None:
    if not result.all_ok:
        raise typer.Exit(code=EXIT_FAILED)


# ── commands ──────────────────────────────────────────────────────────────

@app.callback()
def main_callback(
    ctx: typer.Context,
    servers: Optional[str] = SERVERS_OPTION,
    local: bool = LOCAL_OPTION,
    ssh_key: Optional[str] = SSH_KEY_OPTION,
    yes: bool = YES_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    quiet: bool = QUIET_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Global target selection and output options."""
    setup_logging(settings, level="WARNING" if (quiet or as_json) else None)
    ctx.obj = CliState(
        settings,
        servers=servers,
        local=local,
        ssh_key=ssh_key,
        yes=yes,
        dry_run=dry_run,
        quiet=quiet,
        as_json=as_json,
    )


@app.command()
def version() -> None:
    """Print the version."""
    typer.echo(f"updatectl {__version__}")


@app.command()
def check(
    ctx: typer.Context,
    notify: bool = typer.Option(False, "--notify", help="Send the report to Gotify/ntfy."),
) -> None:
    """Report pending OS package and Docker image updates (read-only)."""
    state = _state(ctx)
    targets = _targets(state)
    result = asyncio.run(_orchestrator(state).run(Operation.detect, targets))
    summary = check_summary(result)
    _report(state, result, summary)
    if notify:
        asyncio.run(_notify_check(state.cfg, result, summary))
    _finish(result)


async def _notify_check(cfg: Settings, result: AggregateResult, summary: str) -> None:
    lines = [outcome_line(o) for o in result.results]
    actions: list[dict[str, Any]] = []
    for o in result.succeeded:
        if isinstance(o.value, UpdateReport) and o.value.has_updates:
            actions += webhook_actions(
                o.server,
                cfg,
                os_updates=bool(o.value.os and o.value.os.count),
                docker_updates=bool(o.value.docker and o.value.docker.images_outdated),
            )
    await NotificationSink(cfg).notify(summary, "\n".join(lines), actions=actions)


@app.command("os")
def os_update(ctx: typer.Context) -> None:
    """Upgrade OS packages (apt full-upgrade, dnf upgrade, pacman -Syu)."""
    state = _state(ctx)
    targets = _targets(state)
    _confirm(state, "upgrade OS packages", targets)
    result = asyncio.run(
        _orchestrator(state).run(Operation.apply_os, targets, dry_run=state.dry_run),
    )
    _report(state, result, final_tally(result, state.dry_run))
    _finish(result)


@app.command()
def docker(
    ctx: typer.Context,
    all_images: bool = typer.Option(False, "--all", help="Pull every local image."),
    images: Optional[str] = typer.Option(None, "--images", help="Comma-separated image refs."),
) -> None:
    """Pull Docker images and restart the containers using them."""
    state = _state(ctx)
    if not all_images and not images:
        console.print("No images specified (use --all or --images)")
        raise typer.Exit(code=EXIT_CONFIG)
    selected = None if all_images else [i.strip() for i in images.split(",") if i.strip()]
    targets = _targets(state)
    _confirm(state, "update Docker images", targets)
    result = asyncio.run(
        _orchestrator(state).run(
            Operation.apply_docker, targets, images=selected, dry_run=state.dry_run,
        ),
    )
    _report(state, result, final_tally(result, state.dry_run))
    _finish(result)


@app.command("all")
def update_all(ctx: typer.Context) -> None:
    """OS packages, then every Docker image."""
    state = _state(ctx)
    targets = _targets(state)
    _confirm(state, "upgrade OS packages and Docker images", targets)

    async def both() -> tuple[AggregateResult, AggregateResult]:
        orch = _orchestrator(state)
        os_result = await orch.run(Operation.apply_os, targets, dry_run=state.dry_run)
        docker_result = await orch.run(Operation.apply_docker, targets, dry_run=state.dry_run)
        return os_result, docker_result

    os_result, docker_result = asyncio.run(both())
    if state.as_json:
        typer.echo(json.dumps({"os": os_result.to_dict(), "docker": docker_result.to_dict()}))
    else:
        for result in (os_result, docker_result):
            for outcome in result.results:
                if not (state.quiet and outcome.ok):
                    console.print(outcome_line(outcome), highlight=False)
        combined = AggregateResult(
            operation=Operation.apply_os,
            results=[*os_result.results, *docker_result.results],
        )
        console.print(final_tally(combined, state.dry_run), highlight=False)
    if not (os_result.all_ok and docker_result.all_ok):
        raise typer.Exit(code=EXIT_FAILED)


@app.command()
def cleanup(
    ctx: typer.Context,
    profile: CleanupProfile = typer.Option(
        CleanupProfile.conservative, "--profile", case_sensitive=False,
        help="conservative | moderate | aggressive",
    ),
    execute: bool = typer.Option(False, "--execute", help="Actually remove resources."),
) -> None:
    """Analyze Docker resources; remove them only with --execute."""
    state = _state(ctx)
    targets = _targets(state)
    run_it = execute and not state.dry_run
    if run_it:
        _confirm(state, f"run {profile.value} Docker cleanup ({profile.description})", targets)
    result = asyncio.run(
        _orchestrator(state).run(
            Operation.cleanup, targets, profile=profile, execute=run_it, dry_run=state.dry_run,
        ),
    )
    n = len(result.results)
    if result.all_ok:
        summary = f"✅ Cleanup {'completed' if run_it else 'analysis completed'} ({n} servers)"
    else:
        summary = f"⚠️ Cleanup completed with errors ({len(result.failed)} of {n} servers failed)"
    _report(state, result, summary)
    _finish(result)


@list_app.command("servers")
def list_servers(ctx: typer.Context) -> None:
    """Show the configured servers."""
    state = _state(ctx)
    try:
        registry = ServerRegistry.from_settings(state.cfg)
    except ServerConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=EXIT_CONFIG) from exc
    if state.as_json:
        typer.echo(json.dumps([s.model_dump(mode="json") for s in registry]))
        return
    table = Table(title="Configured servers")
    table.add_column("Name")
    table.add_column("Connection")
    for server in registry:
        table.add_row(server.name, server.display_host)
    console.print(table)


@list_app.command("examples")
def list_examples() -> None:
    """Show usage examples."""
    typer.echo(EXAMPLES)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: Optional[int] = typer.Option(None, "--port", help="Default: UPDATECTL_WEBHOOK_PORT."),
) -> None:
    """Run the webhook server."""
    import uvicorn

    uvicorn.run(
        "updatectl.main:app",
        host=host,
        port=port or settings.updatectl_webhook_port,
        log_config=None,
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
