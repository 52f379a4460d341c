"""
CLI commands for restore points.

Thin wrappers over ``macsetup.core.use_cases.backups``.
"""

from __future__ import annotations

import json
import sys

import click


def _settings(ctx: click.Context):
    """Settings honoring the global --state-dir flag."""
    from macsetup.core.config.settings import Settings

    return Settings.from_env(state_dir=ctx.obj.get("state_dir"))


@click.group()
def backups() -> None:
    """Backups — list and prune the restore points taken before changes."""


@backups.command("list")
@click.argument("resource_id", required=False)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_cmd(ctx: click.Context, resource_id: str | None, as_json: bool) -> None:
    """List restore points, newest first.

    RESOURCE_ID limits the listing to one resource.

    Examples:

        macsetup backups list

        macsetup backups list pref:com.apple.dock.autohide-delay
    """
    from macsetup.core.use_cases.backups import list_backups

    result = list_backups(_settings(ctx), resource_id)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if not result.total:
        click.echo("No backups found.")
        return

    click.secho(f"\n💾 Backups ({result.total})", fg="cyan", bold=True)
    for rid, entries in result.entries.items():
        click.secho(f"   {rid}", bold=True)
        for entry in entries:
            marker = "" if entry.restorable else "  (created, nothing to restore)"
            click.echo(f"     {entry.backup_id}  {entry.captured_at}{marker}")
    click.echo()


@backups.command()
@click.argument("resource_id", required=False)
@click.option("--keep", "keep_last", type=int, default=None, help="Keep the N newest per resource.")
@click.option("--older-than", "older_than_days", type=int, default=None, help="Remove entries older than DAYS.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def prune(
    ctx: click.Context,
    resource_id: str | None,
    keep_last: int | None,
    older_than_days: int | None,
    as_json: bool,
) -> None:
    """Delete old restore points.

    Examples:

        macsetup backups prune --keep 3

        macsetup backups prune --older-than 30 file:~/.gitconfig
    """
    from macsetup.core.use_cases.backups import prune_backups

    result = prune_backups(
        _settings(ctx),
        resource_id,
        keep_last=keep_last,
        older_than_days=older_than_days,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    click.secho(f"✅ Removed {result.removed} backup(s)", fg="green")
