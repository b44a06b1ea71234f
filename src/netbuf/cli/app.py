"""Typer CLI for netbuf network buffer checks and tuning profiles."""

from __future__ import annotations

import json
import os
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from netbuf.config import NetbufConfig
from netbuf.core.params import SysctlStore
from netbuf.core.profiles import get_profile, list_profiles
from netbuf.core.recommender import apply as apply_plan
from netbuf.core.recommender import plan as build_plan
from netbuf.core.recommender import render_commands, rollback as rollback_backup
from netbuf.core.rules import evaluate
from netbuf.core.snapshot import capture_snapshot
from netbuf.errors import ApplyError, ProfileNotFound, RestoreError
from netbuf.logging_setup import setup_logging
from netbuf.models.enums import RemediationMode, Severity
from netbuf.models.findings import BackupToken, Profile, RemediationPlan
from netbuf.models.runtime import format_value
from netbuf.report.formatters import report_dict, summarize

app = typer.Typer(
    name="netbuf",
    help="Check Linux network buffer settings for consistency and compare them to tuning profiles.",
    no_args_is_help=True,
)
console = Console(stderr=True)

_STYLE = {
    Severity.PASS: "green",
    Severity.INFO: "cyan",
    Severity.WARNING: "yellow",
    Severity.CRITICAL: "bold red",
}


def _config() -> NetbufConfig:
    return NetbufConfig.load()


def _store(config: NetbufConfig) -> SysctlStore:
    return SysctlStore(timeout=config.reader.timeout_seconds)


def _require_root() -> None:
    if os.geteuid() != 0:
        console.print("[red]This command changes kernel parameters and must run as root.[/red]")
        raise typer.Exit(1)


def _profile_or_exit(profile_id: str) -> Profile:
    try:
        return get_profile(profile_id)
    except ProfileNotFound as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(2)


@app.callback()
def _main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    setup_logging(verbose=verbose)


@app.command()
def check(
    as_json: Annotated[bool, typer.Option("--json", help="Print the report as JSON")] = False,
    limit: Annotated[
        Optional[int], typer.Option("--limit", "-n", help="Max connections to sample")
    ] = None,
) -> None:
    """Run every consistency check. Exits 1 when any finding is critical."""
    config = _config()
    if limit is not None:
        config = replace(config, reader=replace(config.reader, connection_sample_limit=limit))

    snap = capture_snapshot(config=config)
    findings = evaluate(snap, config.thresholds)

    if as_json:
        typer.echo(json.dumps(report_dict(snap, findings), indent=2))
    else:
        table = Table(title="Network Buffer Check")
        table.add_column("Severity")
        table.add_column("Check", style="bold", no_wrap=True)
        table.add_column("Finding")
        for f in findings:
            style = _STYLE[f.severity]
            table.add_row(
                f"[{style}]{f.severity.value.upper()}[/{style}]",
                f.check_id,
                escape(f.message),
            )
        console.print(table)

        fixes = [(f, r) for f in findings for r in f.remediation]
        if fixes:
            console.print("\n[bold]Suggested changes[/bold]")
            for f, r in fixes:
                note = f"  [dim]({escape(r.note)})[/dim]" if r.note else ""
                console.print(f"  {f.check_id}: {r.parameter} = {format_value(r.value)}{note}")

        counts = summarize(findings)
        console.print(
            "\n" + ", ".join(f"{counts[s.value]} {s.value}" for s in reversed(list(Severity)))
        )

    if any(f.severity == Severity.CRITICAL for f in findings):
        raise typer.Exit(1)


@app.command()
def profiles(
    as_json: Annotated[bool, typer.Option("--json", help="Print profiles as JSON")] = False,
) -> None:
    """List the built-in tuning profiles."""
    catalog = list_profiles()

    if as_json:
        typer.echo(json.dumps(
            [
                {
                    "id": p.id,
                    "description": p.description,
                    "recommended": {k: format_value(v) for k, v in p.recommended},
                }
                for p in catalog
            ],
            indent=2,
        ))
        return

    table = Table(title="Tuning Profiles")
    table.add_column("Profile", style="bold", no_wrap=True)
    table.add_column("tcp_rmem / tcp_wmem")
    table.add_column("tcp_mem (pages)")
    table.add_column("Description")
    for p in catalog:
        values = p.as_dict()
        table.add_row(
            p.id,
            format_value(values.get("net.ipv4.tcp_rmem")),
            format_value(values.get("net.ipv4.tcp_mem")),
            p.description,
        )
    console.print(table)


def _print_diff(remediation: RemediationPlan) -> None:
    table = Table(title=f"Diff against {remediation.profile_id}")
    table.add_column("Parameter", no_wrap=True)
    table.add_column("Current")
    table.add_column("Recommended")
    for e in remediation.entries:
        style = "green" if e.matches else "yellow"
        table.add_row(
            e.parameter,
            f"[{style}]{format_value(e.current)}[/{style}]",
            format_value(e.recommended),
        )
    console.print(table)


@app.command()
def plan(
    profile: Annotated[str, typer.Argument(help="Profile id, e.g. file-transfer-internet")],
    mode: Annotated[
        RemediationMode, typer.Option("--mode", "-m", help="How to render the commands")
    ] = RemediationMode.APPLY_NOW,
    as_json: Annotated[bool, typer.Option("--json", help="Print the plan as JSON")] = False,
) -> None:
    """Show what it would take to converge on a profile. Changes nothing."""
    prof = _profile_or_exit(profile)
    config = _config()
    remediation = build_plan(capture_snapshot(config=config), prof, config.thresholds)
    commands = render_commands(remediation, mode)

    if as_json:
        payload = remediation.to_dict()
        payload["mode"] = mode.value
        payload["commands"] = commands
        typer.echo(json.dumps(payload, indent=2))
        return

    _print_diff(remediation)
    if remediation.is_noop:
        console.print("[green]System already matches this profile.[/green]")
        if mode == RemediationMode.APPLY_NOW:
            return
    typer.echo(commands, nl=False)


def _backup_path(config: NetbufConfig, profile_id: str) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return config.backup_dir / f"{stamp}-{profile_id}.conf"


@app.command()
def apply(
    profile: Annotated[str, typer.Argument(help="Profile id to apply")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Apply a profile now (not persisted across reboot). Requires root."""
    prof = _profile_or_exit(profile)
    _require_root()
    config = _config()
    store = _store(config)

    remediation = build_plan(
        capture_snapshot(store=store, config=config), prof, config.thresholds
    )
    if remediation.is_noop:
        console.print("[green]System already matches this profile; nothing to do.[/green]")
        return

    _print_diff(remediation)
    if not yes and not typer.confirm(f"Apply {len(remediation.actions)} change(s)?"):
        console.print("[dim]Aborted.[/dim]")
        raise typer.Exit(1)

    path = _backup_path(config, prof.id)

    def _save(token: BackupToken) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(token.blob)
        console.print(f"[dim]Backup written to {path}[/dim]")

    try:
        apply_plan(remediation, store, on_backup=_save)
    except ApplyError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        if exc.backup is not None:
            console.print(f"Earlier changes are still in effect. Undo with: netbuf rollback {path}")
        raise typer.Exit(1)
    except OSError as exc:
        console.print(f"[red]Could not write backup {path}: {exc}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Applied {prof.id}:[/green] {len(remediation.actions)} change(s)")
    console.print(f"Undo with: netbuf rollback {path}")


@app.command()
def rollback(
    backup_file: Annotated[Path, typer.Argument(help="Backup written by apply")],
) -> None:
    """Restore values from a backup file. Requires root."""
    _require_root()
    try:
        blob = backup_file.read_text()
    except OSError as exc:
        console.print(f"[red]Cannot read {backup_file}: {exc}[/red]")
        raise typer.Exit(1)

    config = _config()
    try:
        rollback_backup(_store(config), BackupToken(blob=blob))
    except (RestoreError, ValueError) as exc:
        console.print(f"[red]Rollback failed: {escape(str(exc))}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Restored values from {backup_file}[/green]")


def main() -> None:
    """Entry point for the netbuf CLI."""
    app()


if __name__ == "__main__":
    main()
