"""
hwfix — CLI entrypoint.

Usage:
    hwfix --help
    hwfix fixes list
    sudo hwfix apply webcam
    hwfix status
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import click

from hwfix import __version__
from hwfix.core.observability.logging_config import setup_logging
from hwfix.ui.cli.output import (
    echo_json,
    error_exit,
    orchestrator_for,
    parse_options,
    render_report,
)


@click.group()
@click.version_option(version=__version__, prog_name="hwfix")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to config.yml (default: $HWFIX_CONFIG or /etc/hwfix/config.yml).",
)
@click.option(
    "--root",
    type=click.Path(file_okay=False),
    default=None,
    help="System root to operate on (default: /).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    root: str | None,
) -> None:
    """hwfix — apply, revert and inspect Galaxy Book hardware fixes."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["root"] = Path(root) if root else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("HWFIX_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("HWFIX_LOG_FILE"),
        log_file_level=os.environ.get("HWFIX_LOG_FILE_LEVEL"),
    )


@cli.command()
@click.argument("fix")
@click.option("--option", "-o", "raw_options", multiple=True, help="Fix option as key=value.")
@click.option("--force", is_flag=True, help="Apply even if required hardware is not found.")
@click.option("--dry-run", is_flag=True, help="Show what would change without changing it.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def apply(
    ctx: click.Context,
    fix: str,
    raw_options: tuple[str, ...],
    force: bool,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Apply FIX. Exit 0 on success, 1 on any failure, 2 if interrupted."""
    from hwfix.core.errors import HwfixError

    options = parse_options(raw_options)
    orch = orchestrator_for(ctx)
    try:
        report = orch.apply(fix, options, force=force, dry_run=dry_run)
    except HwfixError as e:
        error_exit(f"[{e.kind}] {e}", e.hint)

    if as_json:
        echo_json(report.to_dict())
    else:
        render_report(report, quiet=ctx.obj.get("quiet", False))
    sys.exit(report.exit_code)


def _revert(ctx: click.Context, fix: str, force: bool, as_json: bool) -> None:
    from hwfix.core.errors import HwfixError

    orch = orchestrator_for(ctx)
    try:
        report = orch.revert(fix, force=force)
    except HwfixError as e:
        error_exit(f"[{e.kind}] {e}", e.hint)

    if as_json:
        echo_json(report.to_dict())
    else:
        render_report(report, quiet=ctx.obj.get("quiet", False))
    sys.exit(report.exit_code)


@cli.command()
@click.argument("fix")
@click.option("--force", is_flag=True, help="Revert even if no install stamp exists.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def revert(ctx: click.Context, fix: str, force: bool, as_json: bool) -> None:
    """Undo FIX using the options it was applied with."""
    _revert(ctx, fix, force, as_json)


@cli.command()
@click.argument("fix")
@click.option("--force", is_flag=True, help="Revert even if no install stamp exists.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def uninstall(ctx: click.Context, fix: str, force: bool, as_json: bool) -> None:
    """Alias for revert."""
    _revert(ctx, fix, force, as_json)


@cli.command()
@click.argument("fix", required=False)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, fix: str | None, as_json: bool) -> None:
    """Show per-step state of FIX (or of every fix). Never changes anything."""
    from hwfix.core.errors import HwfixError

    orch = orchestrator_for(ctx)
    try:
        reports = [orch.status(fix)] if fix else orch.status_all()
    except HwfixError as e:
        error_exit(f"[{e.kind}] {e}", e.hint)

    if as_json:
        echo_json([r.to_dict() for r in reports] if not fix else reports[0].to_dict())
        return

    for report in reports:
        render_report(report, quiet=ctx.obj.get("quiet", False))


@cli.command()
@click.argument("fix")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def commit(ctx: click.Context, fix: str, as_json: bool) -> None:
    """Keep FIX's changes and delete its backups."""
    from hwfix.core.errors import HwfixError

    orch = orchestrator_for(ctx)
    try:
        discarded = orch.commit(fix)
    except HwfixError as e:
        error_exit(f"[{e.kind}] {e}", e.hint)

    if as_json:
        echo_json({"fix": fix, "discarded": [b.source for b in discarded]})
        return

    click.secho(f"✓ {fix}: {len(discarded)} backup(s) discarded", fg="green")


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def recover(ctx: click.Context, as_json: bool) -> None:
    """Restore backups left behind by an interrupted run."""
    orch = orchestrator_for(ctx)
    recovered = orch.recover()

    if as_json:
        echo_json({fix: [b.source for b in backups] for fix, backups in recovered.items()})
        return

    if not recovered:
        click.echo("Nothing to recover.")
        return
    for fix, backups in recovered.items():
        click.secho(f"✓ {fix}: restored {len(backups)} path(s)", fg="green")
        for backup in backups:
            click.echo(f"    {backup.source}")


@cli.command()
@click.option("-n", "count", default=20, type=int, help="Number of entries.")
@click.option("--fix", default=None, help="Only entries for this fix.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, fix: str | None, as_json: bool) -> None:
    """Show recent runs from the audit ledger."""
    orch = orchestrator_for(ctx)
    entries = orch.history(count, fix=fix)

    if as_json:
        echo_json([e.model_dump(mode="json") for e in entries])
        return

    if not entries:
        click.echo("No runs recorded.")
        return

    colors = {"success": "green", "partial_failure": "yellow", "aborted": "red"}
    for entry in entries:
        click.echo(f"{entry.timestamp[:19]}  {entry.mode:<8} {entry.fix:<16} ", nl=False)
        click.secho(entry.outcome, fg=colors.get(entry.outcome, "white"), nl=False)
        detail = f"  {entry.steps_applied} changed, {entry.steps_failed} failed"
        if entry.rolled_back:
            detail += ", rolled back"
        click.echo(detail)


# ── Register sub-command groups from hwfix/ui/cli/ ──────────────

from hwfix.ui.cli.fixes import fixes
from hwfix.ui.cli.ccm import ccm

cli.add_command(fixes)
cli.add_command(ccm)


if __name__ == "__main__":
    cli()
