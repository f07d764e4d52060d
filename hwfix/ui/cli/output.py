"""
Shared CLI helpers: settings loading and report rendering.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from hwfix.core.models.report import RunMode, RunReport, RunState
from hwfix.core.models.step import StepOutcome, StepResult

_MARKS = {
    StepOutcome.APPLIED: ("✓", "green"),
    StepOutcome.ALREADY_APPLIED: ("✓", "cyan"),
    StepOutcome.REVERTED: ("✓", "green"),
    StepOutcome.SKIPPED: ("⊘", "yellow"),
    StepOutcome.NOT_APPLIED: ("·", "white"),
    StepOutcome.FAILED: ("✗", "red"),
}

_LABELS = {
    StepOutcome.APPLIED: "applied",
    StepOutcome.ALREADY_APPLIED: "already applied",
    StepOutcome.REVERTED: "reverted",
    StepOutcome.SKIPPED: "skipped",
    StepOutcome.NOT_APPLIED: "not applied",
    StepOutcome.FAILED: "failed",
}

_STATUS_LABELS = {
    StepOutcome.ALREADY_APPLIED: "Applied",
    StepOutcome.NOT_APPLIED: "NotApplied",
}

_STATE_COLORS = {
    RunState.COMPLETED: "green",
    RunState.COMPLETED_WITH_ERRORS: "yellow",
    RunState.ROLLED_BACK: "red",
    RunState.ABORTED: "red",
}


def load_settings_or_exit(ctx: click.Context):
    """Settings from --config / env, with --root applied. Exits 1 on error."""
    from hwfix.core.config.loader import load_settings
    from hwfix.core.errors import ConfigError

    try:
        settings = load_settings(ctx.obj.get("config_path"))
    except ConfigError as e:
        error_exit(f"[config] {e}", e.hint)
    root: Path | None = ctx.obj.get("root")
    if root is not None:
        settings = settings.model_copy(update={"root": root})
    return settings


def orchestrator_for(ctx: click.Context):
    from hwfix.core.use_cases.orchestrate import Orchestrator

    return Orchestrator(load_settings_or_exit(ctx))


def error_exit(message: str, hint: str = "", code: int = 1) -> None:
    click.secho(f"ERROR: {message}", fg="red", err=True)
    if hint:
        click.echo(f"  hint: {hint}", err=True)
    sys.exit(code)


def echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2))


def render_result(result: StepResult, mode: RunMode) -> None:
    mark, color = _MARKS[result.outcome]
    label = _STATUS_LABELS.get(result.outcome) if mode == RunMode.STATUS else None
    label = label or _LABELS[result.outcome]
    click.secho(f"  {mark} ", fg=color, nl=False)
    line = f"[{result.ordinal}] {result.step_id}: {label}"
    if result.detail:
        line += f" ({result.detail})"
    if result.attempts > 1:
        line += f" after {result.attempts} attempts"
    click.echo(line)
    if result.failed:
        click.secho(
            f"      ERROR: [{result.error_kind}] {result.step_id}: {result.error}",
            fg="red",
        )
        if result.hint:
            click.echo(f"      hint: {result.hint}")


def render_report(report: RunReport, quiet: bool = False) -> None:
    """Human-readable report: every step, warnings, notes, summary."""
    if report.error:
        click.secho(f"ERROR: {report.error}", fg="red", err=True)
        for line in report.warnings:
            click.echo(f"  {line}", err=True)
        return

    if not quiet:
        title = f"{report.mode.value} {report.fix}"
        click.secho(f"\n{title}", fg="cyan", bold=True, nl=False)
        click.echo(f"  (run {report.run_id})")

    for result in report.results:
        render_result(result, report.mode)

    if report.rollback_results:
        click.secho("  Rolled back:", fg="yellow")
        for result in report.rollback_results:
            render_result(result, RunMode.REVERT)

    for warning in report.warnings:
        text = warning if warning.startswith(("WARN:", "hint:")) else f"WARN: {warning}"
        click.secho(f"  {text}", fg="yellow")
    for note in report.notes:
        click.echo(f"  {note}")

    if report.mode == RunMode.STATUS:
        click.echo()
        return

    counts = ", ".join(
        f"{report.count(o)} {_LABELS[o]}" for o in StepOutcome if report.count(o)
    )
    click.secho(f"\n  {counts or 'no steps'}: ", nl=False)
    click.secho(report.state.value, fg=_STATE_COLORS.get(report.state, "white"), bold=True)
    click.echo()


def parse_options(pairs: tuple[str, ...]) -> dict[str, str]:
    """``-o key=value`` pairs to a dict."""
    options: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="-o")
        options[key.strip()] = value.strip()
    return options
