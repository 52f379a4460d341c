"""
macsetup — CLI entrypoint.

Usage:
    macsetup --help
    macsetup run developer --dry-run
    macsetup status
    macsetup rollback pref:com.apple.finder.AppleShowAllFiles
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from macsetup import __version__
from macsetup.core.observability.logging_config import (
    FILE_ENV,
    FILE_LEVEL_ENV,
    resolve_level,
    setup_logging,
)


def _settings(ctx: click.Context, **overrides: object):
    """Settings for this invocation: env defaults + global and command flags."""
    from macsetup.core.config.settings import Settings

    return Settings.from_env(
        state_dir=ctx.obj.get("state_dir"),
        verbose=ctx.obj.get("verbose") or None,
        **overrides,
    )


def _password_prompt() -> str | None:
    try:
        return click.prompt(
            "🔐 sudo password", hide_input=True, default="", show_default=False, err=True,
        )
    except click.Abort:
        raise EOFError("password prompt aborted") from None


@click.group()
@click.version_option(version=__version__, prog_name="macsetup")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to the profile file (default: macsetup.yml or the bundled profiles).",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Where runs and backups are kept (default: ~/.macsetup).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    state_dir: str | None,
) -> None:
    """macsetup — idempotent macOS workstation provisioning."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["state_dir"] = Path(state_dir).expanduser() if state_dir else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get(FILE_ENV),
        log_file_level=os.environ.get(FILE_LEVEL_ENV),
    )


@cli.command()
@click.argument("profile")
@click.option("--dry-run", is_flag=True, help="Show what would change; change nothing.")
@click.option("--no-confirm", is_flag=True, help="Do not ask before applying.")
@click.option("--with-optional", is_flag=True, help="Include the profile's optional resources.")
@click.option("--mock", is_flag=True, help="Use mock adapters (no real execution).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    profile: str,
    dry_run: bool,
    no_confirm: bool,
    with_optional: bool,
    mock: bool,
    as_json: bool,
) -> None:
    """Bring every resource of PROFILE to its declared state.

    Examples:

        macsetup run developer --dry-run

        macsetup run finder --no-confirm

        macsetup run developer --with-optional
    """
    from macsetup.core.reporting.status_reporter import StatusReporter
    from macsetup.core.use_cases.run import run_profile

    settings = _settings(
        ctx, dry_run=dry_run, assume_yes=no_confirm, with_optional=with_optional,
    )

    def confirm(prof, declarations) -> bool:
        if settings.assume_yes:
            return True
        click.secho(
            f"\n⚡ {prof.name}: {len(declarations)} resources will be checked and changed where needed.",
            fg="cyan", err=True,
        )
        return click.confirm("   Continue?", default=False, err=True)

    try:
        result = run_profile(
            profile,
            settings,
            config_path=ctx.obj.get("config_path"),
            mock_mode=mock,
            prompt=_password_prompt,
            confirm=confirm,
        )
    except KeyboardInterrupt:
        click.secho("\n⚠️  Interrupted — partial run saved (see `macsetup runs`).", fg="yellow", err=True)
        sys.exit(130)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    record = result.record
    assert record is not None

    mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""
    if not ctx.obj.get("quiet"):
        click.secho(f"\n⚡ {mode_label}{record.profile}", fg="cyan", bold=True)
        click.echo(StatusReporter(settings.runs_dir).render(record, result.log_path, verbose=settings.verbose))

    click.echo()
    status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(record.status, "white")
    counts = record.counts
    click.secho(
        f"   Result: {record.status} — {counts['applied']} applied, {counts['unchanged']} unchanged, "
        f"{counts['skipped']} skipped, {counts['failed']} failed",
        fg=status_color,
        bold=True,
    )
    click.echo()

    if not record.success:
        sys.exit(1)


@cli.command()
@click.argument("profile", required=False)
@click.option("--with-optional", is_flag=True, help="Include optional resources.")
@click.option("--mock", is_flag=True, help="Use mock adapters (no real execution).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(
    ctx: click.Context,
    profile: str | None,
    with_optional: bool,
    mock: bool,
    as_json: bool,
) -> None:
    """Show the state of declared resources and the last run. Changes nothing."""
    from macsetup.core.reporting.status_reporter import StatusReporter
    from macsetup.core.use_cases.status import get_status

    settings = _settings(ctx, with_optional=with_optional)
    result = get_status(
        settings,
        profile_name=profile,
        config_path=ctx.obj.get("config_path"),
        mock_mode=mock,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.error:
        click.secho(f"⚠️  {result.error}", fg="yellow")

    if result.results:
        scope = f"profile '{profile}'" if profile else "all profiles"
        click.secho(f"\n📋 Status — {scope}", fg="cyan", bold=True)
        click.echo(StatusReporter(settings.runs_dir).render_check(result.results))
        click.echo()
        click.echo(
            f"   {result.in_sync}/{len(result.results)} in sync"
            + (f", {result.unknown} unknown" if result.unknown else "")
        )

    last = result.last_run
    if last is not None:
        click.echo()
        click.secho("   Last run:", fg="white", bold=True)
        status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(last.status, "white")
        click.echo(f"     {last.run_id} ({last.profile}) — ", nl=False)
        click.secho(last.status, fg=status_color)
        click.echo(f"     at {last.ended_at}")

    click.echo()


@cli.command()
@click.argument("resource_id")
@click.option("--mock", is_flag=True, help="Use mock adapters (no real execution).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def rollback(ctx: click.Context, resource_id: str, mock: bool, as_json: bool) -> None:
    """Restore RESOURCE_ID from its most recent backup."""
    from macsetup.core.use_cases.rollback import rollback_resource

    result = rollback_resource(
        resource_id,
        _settings(ctx),
        mock_mode=mock,
        prompt=_password_prompt,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if not result.ok:
        kind = f"[{result.error_kind.value}] " if result.error_kind else ""
        click.secho(f"❌ {kind}{result.error}", fg="red")
        sys.exit(1)

    assert result.entry is not None
    click.secho(f"✅ Restored {resource_id}", fg="green", bold=True)
    click.echo(f"   Backup: {result.entry.backup_id} ({result.entry.captured_at})")
    if ctx.obj.get("verbose") and result.output:
        for line in result.output.split("\n")[:10]:
            click.echo(f"     │ {line}")


@cli.command()
@click.option("-n", "limit", default=10, type=int, help="Number of runs to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def runs(ctx: click.Context, limit: int, as_json: bool) -> None:
    """List recent runs, newest first."""
    from macsetup.core.use_cases.status import recent_runs

    entries = recent_runs(_settings(ctx), limit)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No runs recorded yet.")
        return

    click.secho(f"\n📜 Recent runs ({len(entries)})", fg="cyan", bold=True)
    for entry in entries:
        status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(entry.status, "white")
        mode = " [dry-run]" if entry.dry_run else ""
        click.echo(f"   {entry.run_id}  {entry.profile}{mode}  ", nl=False)
        click.secho(entry.status, fg=status_color, nl=False)
        click.echo(
            f"  ({entry.counts.get('applied', 0)} applied, {entry.counts.get('failed', 0)} failed)"
        )
        for rid in entry.failed:
            click.echo(f"     ✗ {rid}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def profiles(ctx: click.Context, as_json: bool) -> None:
    """List available profiles."""
    from macsetup.core.use_cases.profile_check import check_profiles

    result = check_profiles(ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if not result.valid:
        for err in result.errors:
            click.secho(f"❌ {err}", fg="red")
        sys.exit(1)

    assert result.profiles is not None
    click.secho(f"\n📦 Profiles ({result.profiles.source})", fg="cyan", bold=True)
    for name, prof in result.profiles.profiles.items():
        optional = f" + {len(prof.optional)} optional" if prof.optional else ""
        click.echo(f"   • {name}: {len(prof.resources)} resources{optional}")
        if prof.description:
            click.echo(f"       {prof.description}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def validate(ctx: click.Context, as_json: bool) -> None:
    """Validate the profile file."""
    from macsetup.core.use_cases.profile_check import check_profiles

    result = check_profiles(ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.profiles is not None
        click.secho("✅ Profiles are valid", fg="green", bold=True)
        click.echo(f"   Source: {result.profiles.source}")
        click.echo(f"   Profiles: {len(result.profiles.profiles)}")
    else:
        click.secho("❌ Profile errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


# ── Register sub-command groups from macsetup/ui/cli/ ─────────────

from macsetup.ui.cli.backups import backups  # noqa: E402

cli.add_command(backups)


if __name__ == "__main__":
    cli()
