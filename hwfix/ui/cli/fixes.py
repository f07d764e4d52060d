"""
CLI commands for the fix catalog.

Thin wrappers over ``hwfix.fixes.registry``.
"""

from __future__ import annotations

import click

from hwfix.ui.cli.output import echo_json, error_exit, load_settings_or_exit, parse_options


@click.group()
def fixes() -> None:
    """Fix catalog — list available fixes and inspect their steps."""


@fixes.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_fixes(ctx: click.Context, as_json: bool) -> None:
    """List available fixes and whether they are installed."""
    from hwfix.core.persistence.stamps import StampStore
    from hwfix.fixes.registry import FIXES

    settings = load_settings_or_exit(ctx)
    installed = set(StampStore(settings.stamp_dir).list_fixes())

    if as_json:
        echo_json([
            {"name": f.name, "title": f.title, "installed": f.name in installed}
            for f in FIXES.values()
        ])
        return

    for fix in FIXES.values():
        marker = click.style("✓ installed", fg="green") if fix.name in installed else ""
        click.echo(f"  {fix.name:<16} {fix.title}  {marker}".rstrip())


@fixes.command("show")
@click.argument("name")
@click.option("--option", "-o", "raw_options", multiple=True, help="Fix option as key=value.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, name: str, raw_options: tuple[str, ...], as_json: bool) -> None:
    """Show a fix's hardware requirements, options and steps."""
    from hwfix.core.errors import ConfigError
    from hwfix.fixes.registry import get_fix

    settings = load_settings_or_exit(ctx)
    try:
        fix = get_fix(name)
        options = fix.resolve_options(parse_options(raw_options), settings)
    except ConfigError as e:
        error_exit(f"[config] {e}", e.hint)

    steps = fix.steps(options)
    requirements = fix.requirements()

    if as_json:
        echo_json({
            "name": fix.name,
            "title": fix.title,
            "description": fix.description,
            "options": options,
            "requirements": [r.description for r in requirements],
            "steps": [
                {
                    "id": s.id,
                    "description": s.description,
                    "critical": settings.is_critical(fix.name, s.id, s.critical),
                    "retriable": s.retriable,
                    "keep_on_revert": s.keep_on_revert,
                    "triggers": list(s.triggers),
                }
                for s in steps
            ],
        })
        return

    click.secho(f"\n{fix.name}", fg="cyan", bold=True, nl=False)
    click.echo(f"  {fix.title}")
    click.echo(f"   {fix.description}")

    if requirements:
        click.secho("\n   Requires:", fg="white", bold=True)
        for req in requirements:
            click.echo(f"     • {req.description}")

    if options:
        click.secho("\n   Options:", fg="white", bold=True)
        for key, value in options.items():
            click.echo(f"     {key} = {value}")

    click.secho("\n   Steps:", fg="white", bold=True)
    for ordinal, step in enumerate(steps, start=1):
        flags = []
        if settings.is_critical(fix.name, step.id, step.critical):
            flags.append("critical")
        if step.retriable:
            flags.append("retriable")
        if step.keep_on_revert:
            flags.append("kept on revert")
        suffix = f"  [{', '.join(flags)}]" if flags else ""
        click.echo(f"     {ordinal}. {step.id}: {step.description}{suffix}")
    click.echo()
