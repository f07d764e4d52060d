"""
CLI commands for camera color correction (CCM) presets.

``ccm apply`` goes through the regular ``ccm`` fix so it is stamped,
audited and revertible; ``ccm tune`` is the interactive preview loop.
"""

from __future__ import annotations

import sys

import click

from hwfix.ui.cli.output import (
    echo_json,
    error_exit,
    load_settings_or_exit,
    orchestrator_for,
    render_report,
)


@click.group()
def ccm() -> None:
    """CCM presets: list, install, or tune with a live preview."""


@ccm.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def presets(as_json: bool) -> None:
    """List the available presets."""
    from hwfix.core.data.ccm_presets import DEFAULT_PRESET, PRESETS

    if as_json:
        echo_json([p.model_dump(mode="json") for p in PRESETS])
        return

    for preset in PRESETS:
        default = click.style(" (default)", fg="green") if preset.number == DEFAULT_PRESET else ""
        click.echo(f"  {preset.number:>2}. {preset.name}{default}")
        click.echo(f"      {preset.description}")


@ccm.command("apply")
@click.argument("preset", type=int)
@click.option("--sensor", default=None, help="Sensor name (default: from config).")
@click.option("--force", is_flag=True, help="Write even if the IPA directory is not found.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def apply_preset(
    ctx: click.Context,
    preset: int,
    sensor: str | None,
    force: bool,
    as_json: bool,
) -> None:
    """Install PRESET into the sensor's tuning file."""
    from hwfix.core.errors import HwfixError

    options: dict[str, object] = {"preset": preset}
    if sensor:
        options["sensor"] = sensor

    orch = orchestrator_for(ctx)
    try:
        report = orch.apply("ccm", options, force=force)
    except HwfixError as e:
        error_exit(f"[{e.kind}] {e}", e.hint)

    if as_json:
        echo_json(report.to_dict())
    else:
        render_report(report, quiet=ctx.obj.get("quiet", False))
    sys.exit(report.exit_code)


def _prompt(text: str) -> str:
    try:
        return click.prompt(text, default="", show_default=False)
    except click.Abort:
        # EOF or Ctrl-C at the prompt: treat as quit
        raise EOFError from None


@ccm.command()
@click.option("--sensor", default=None, help="Sensor name (default: from config).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def tune(ctx: click.Context, sensor: str | None, as_json: bool) -> None:
    """Cycle through presets with a live preview and keep one."""
    from hwfix.adapters.shell.command import CommandRunner
    from hwfix.core.errors import HwfixError
    from hwfix.core.use_cases.ccm_tune import CcmTuneSession

    settings = load_settings_or_exit(ctx)
    session = CcmTuneSession(
        settings,
        CommandRunner(default_timeout=settings.command_timeout),
        sensor=sensor,
        prompt=_prompt,
        echo=click.echo,
    )

    try:
        result = session.run()
    except HwfixError as e:
        error_exit(f"[{e.kind}] {e}", e.hint)

    if as_json:
        echo_json(result.to_dict())
    elif result.saved:
        click.secho(f"✓ Saved preset {result.preset} to {result.tuning_file}", fg="green")
    else:
        click.secho("⊘ No preset saved; original tuning file kept.", fg="yellow")

    if result.aborted:
        sys.exit(2)
