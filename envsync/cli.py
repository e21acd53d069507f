"""envsync CLI — sync GitHub environment variables and secrets from a file."""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from envsync import __version__
from envsync.config.loader import DEFAULT_CONFIG_PATH
from envsync.models import OperationKind, Outcome, SecretPolicy, SyncReport

console = Console()
err_console = Console(stderr=True)

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_AUTH = 3

_OUTCOME_STYLE = {
    Outcome.APPLIED: "[green]applied[/]",
    Outcome.SKIPPED: "[yellow]skipped[/]",
    Outcome.FAILED: "[red]failed[/]",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO; keep it out of normal output
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _validate_repository(ctx, param, value: str) -> str:
    owner, sep, name = value.partition("/")
    if not sep or not owner or not name or "/" in name:
        raise click.BadParameter("expected owner/repo, e.g. rust-lang/rust")
    return value


def _print_config_error(error: Exception) -> None:
    console.print(f"[red]Config error:[/] {escape(str(error))}")


@click.group()
@click.version_option(version=__version__)
def main():
    """envsync — version-controlled GitHub environment variables and secrets.

    Reads a declarative file of environments, variables and secrets and
    applies it to a repository's deployment environments through the
    GitHub API.
    """


# ── Sync ─────────────────────────────────────────────────────────────


@main.command()
@click.argument("repository", callback=_validate_repository)
@click.option(
    "--environment",
    "-e",
    "environments",
    multiple=True,
    help="Environment to sync. Repeatable. Defaults to every environment in the config file.",
)
@click.option("--config-path", "-c", default=DEFAULT_CONFIG_PATH, show_default=True, help="Config file (TOML or YAML)")
@click.option("--token", "-t", default=None, help="GitHub token. Defaults to $GITHUB_TOKEN / $GH_TOKEN.")
@click.option(
    "--token-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read the GitHub token from a file.",
)
@click.option("--username", "-u", default=None, help="User-Agent for API requests. Defaults to the repository owner.")
@click.option("--dry-run", is_flag=True, help="Print the sync plan without applying it")
@click.option("--prune", is_flag=True, help="Delete remote entries that are not in the config file")
@click.option(
    "--secret-policy",
    type=click.Choice([p.value for p in SecretPolicy]),
    default=SecretPolicy.CHANGED.value,
    show_default=True,
    help="'always' rewrites every existing secret; 'changed' only those marked changed = true.",
)
@click.option(
    "--create-environments/--no-create-environments",
    default=True,
    show_default=True,
    help="Create environments that exist in the config but not in the repository",
)
@click.option("--audit-dir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Audit log directory")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def sync(
    ctx: click.Context,
    repository: str,
    environments: tuple[str, ...],
    config_path: str,
    token: str | None,
    token_file: Path | None,
    username: str | None,
    dry_run: bool,
    prune: bool,
    secret_policy: str,
    create_environments: bool,
    audit_dir: Path | None,
    verbose: bool,
):
    """Sync environments in a config file to REPOSITORY (owner/repo)."""
    from pydantic import ValidationError as SettingsError

    from envsync.config.loader import load_config
    from envsync.errors import AuthError, ConfigError, RemoteAPIError
    from envsync.github.client import GitHubEnvClient
    from envsync.security.audit_log import AuditLogger
    from envsync.settings import get_settings
    from envsync.sync.driver import SyncDriver

    _configure_logging(verbose)

    try:
        settings = get_settings()
    except SettingsError as e:
        _print_config_error(e)
        ctx.exit(EXIT_CONFIG)

    if token is None and token_file is not None:
        token = token_file.read_text(encoding="utf-8").strip()
    token = token or settings.github_token
    if not token:
        raise click.UsageError("No GitHub token: pass --token/--token-file or set GITHUB_TOKEN.")

    mode = "[yellow]dry run[/]" if dry_run else "apply"
    console.print(f"\n[bold blue]envsync[/] — Syncing {config_path} → {repository} ({mode})\n")

    # Local config errors abort before anything touches the network
    try:
        config = load_config(config_path)
    except ConfigError as e:
        _print_config_error(e)
        ctx.exit(EXIT_CONFIG)

    audit = None if dry_run else AuditLogger(audit_dir or settings.audit_dir)

    try:
        with GitHubEnvClient(
            repository,
            token,
            username=username,
            api_url=settings.api_url,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            retry_wait=settings.retry_wait,
        ) as client:
            driver = SyncDriver(client, audit=audit, actor=client.username)
            report = driver.run(
                config,
                environments=environments,
                prune=prune,
                dry_run=dry_run,
                secret_policy=SecretPolicy(secret_policy),
                create_missing=create_environments,
            )
    except ConfigError as e:
        _print_config_error(e)
        ctx.exit(EXIT_CONFIG)
    except AuthError as e:
        console.print(f"[red]Authentication failed:[/] {escape(str(e))}")
        ctx.exit(EXIT_AUTH)
    except RemoteAPIError as e:
        console.print(f"[red]GitHub API error:[/] {escape(str(e))}")
        ctx.exit(EXIT_FAILED)

    _print_report(report)
    if not report.ok:
        ctx.exit(EXIT_FAILED)


def _print_report(report: SyncReport) -> None:
    if report.dry_run:
        for plan in report.plans:
            if plan.is_empty:
                console.print(f"  [green]OK[/] {plan.environment}: up to date")
                continue
            table = Table(title=f"Plan for {plan.environment} ({len(plan)} operation(s))")
            table.add_column("Operation", style="bold")
            table.add_column("Kind")
            table.add_column("Name", style="cyan")
            table.add_column("Value")
            for op in plan:
                value = "" if op.kind == OperationKind.DELETE else escape(op.entry.display_value())
                table.add_row(op.kind.value, op.entry.kind, op.entry.name, value)
            console.print(table)
    elif report.results:
        table = Table(title=f"Results for {report.repository}")
        table.add_column("Environment")
        table.add_column("Operation", style="bold")
        table.add_column("Name", style="cyan")
        table.add_column("Outcome", justify="center")
        table.add_column("Reason")
        for result in report.results:
            op = result.operation
            table.add_row(
                op.environment,
                f"{op.kind.value} {op.entry.kind}",
                op.entry.name,
                _OUTCOME_STYLE[result.outcome],
                escape(result.reason),
            )
        console.print(table)
    else:
        console.print("[green]Everything is up to date.[/]")

    for failure in report.environment_failures:
        console.print(f"  [red]x[/] {failure.environment}: {escape(failure.reason)}")

    console.print(Panel(escape(report.summary()), title="Sync Result"))


# ── Validate ─────────────────────────────────────────────────────────


@main.command()
@click.option("--config-path", "-c", default=DEFAULT_CONFIG_PATH, show_default=True, help="Config file (TOML or YAML)")
@click.pass_context
def validate(ctx: click.Context, config_path: str):
    """Check a config file without contacting GitHub."""
    from envsync.config.loader import load_config
    from envsync.errors import ConfigError

    console.print(f"\n[bold blue]envsync[/] — Validating: {config_path}\n")

    try:
        config = load_config(config_path)
    except ConfigError as e:
        _print_config_error(e)
        ctx.exit(EXIT_CONFIG)

    table = Table(title=f"Environments ({len(config.environments)})")
    table.add_column("Environment", style="cyan")
    table.add_column("Variables", justify="right")
    table.add_column("Secrets", justify="right")
    for env in config.environments:
        table.add_row(env.name, str(len(env.variables)), str(len(env.secrets)))
    console.print(table)
    console.print("\n[green]Valid![/]")


if __name__ == "__main__":
    main()
