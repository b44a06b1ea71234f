"""Markdown formatters and JSON-ready report dicts."""

from __future__ import annotations

from typing import Any

from netbuf.core.recommender import render_commands
from netbuf.models.enums import RemediationMode, Severity
from netbuf.models.findings import DiffEntry, Finding, Profile, RemediationPlan
from netbuf.models.runtime import Snapshot, format_value, value_to_json

_BADGE = {
    Severity.PASS: "PASS",
    Severity.INFO: "INFO",
    Severity.WARNING: "WARN",
    Severity.CRITICAL: "CRIT",
}


def summarize(findings: list[Finding]) -> dict[str, int]:
    """Count findings per severity, every severity present."""
    counts = {s.value: 0 for s in Severity}
    for f in findings:
        counts[f.severity.value] += 1
    return counts


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def format_findings(findings: list[Finding], title: str = "Network Buffer Check") -> str:
    """Format findings as a table followed by suggested fixes."""
    if not findings:
        return f"## {title}\n\nNo checks ran."

    counts = summarize(findings)
    lines = [
        f"## {title}",
        "",
        " · ".join(f"**{s.value}:** {counts[s.value]}" for s in Severity),
        "",
        "| Severity | Check | Finding |",
        "|----------|-------|---------|",
    ]
    for f in findings:
        lines.append(f"| {_BADGE[f.severity]} | `{f.check_id}` | {_cell(f.message)} |")

    fixes = [f for f in findings if f.remediation]
    if fixes:
        lines.extend(["", "### Suggested changes", ""])
        for f in fixes:
            for r in f.remediation:
                note = f" ({r.note})" if r.note else ""
                lines.append(
                    f"- `{f.check_id}`: `{r.parameter} = {format_value(r.value)}`{note}"
                )
    return "\n".join(lines)


def format_diff(entries: list[DiffEntry] | tuple[DiffEntry, ...], profile_id: str) -> str:
    """Format a current-vs-recommended table."""
    lines = [
        f"## Diff against {profile_id}",
        "",
        "| Parameter | Current | Recommended | |",
        "|-----------|---------|-------------|---|",
    ]
    for e in entries:
        mark = "ok" if e.matches else "change"
        lines.append(
            f"| {e.parameter} | {format_value(e.current)} | {format_value(e.recommended)} | {mark} |"
        )
    return "\n".join(lines)


def format_plan(plan: RemediationPlan, mode: RemediationMode = RemediationMode.APPLY_NOW) -> str:
    """Format a plan: the diff table plus the commands for *mode*."""
    lines = [format_diff(plan.entries, plan.profile_id), ""]
    if plan.is_noop:
        lines.append("System already matches this profile.")
        return "\n".join(lines)
    lines.extend([
        f"**{len(plan.actions)} change(s)**, rendered as `{mode.value}`:",
        "",
        "```sh",
        render_commands(plan, mode).rstrip("\n"),
        "```",
    ])
    return "\n".join(lines)


def format_profiles(profiles: list[Profile]) -> str:
    """Format the profile catalog as a table."""
    if not profiles:
        return "No profiles defined."

    lines = [
        "## Tuning Profiles",
        "",
        "| Profile | tcp_rmem | tcp_mem (pages) | Description |",
        "|---------|----------|-----------------|-------------|",
    ]
    for p in profiles:
        values = p.as_dict()
        lines.append(
            f"| {p.id} | {format_value(values.get('net.ipv4.tcp_rmem'))} "
            f"| {format_value(values.get('net.ipv4.tcp_mem'))} | {_cell(p.description)} |"
        )
    return "\n".join(lines)


def snapshot_dict(snapshot: Snapshot) -> dict[str, Any]:
    """Serializable view of every reading, including failures."""
    params = {
        r.name: {"status": r.status.value, "value": value_to_json(r.value), "error": r.error}
        for r in snapshot.parameters
    }
    telemetry = {
        r.metric: {
            "status": r.status.value,
            "value": r.sample.value if r.sample else None,
            "unit": r.sample.unit.value if r.sample else None,
            "error": r.error,
        }
        for r in snapshot.telemetry
    }
    return {
        "captured_at": snapshot.captured_at.isoformat(),
        "parameters": params,
        "telemetry": telemetry,
        "connections_sampled": (
            len(snapshot.telemetry.connections)
            if snapshot.telemetry.connections is not None
            else None
        ),
    }


def report_dict(snapshot: Snapshot, findings: list[Finding]) -> dict[str, Any]:
    """The full check report as a JSON-ready dict."""
    return {
        "snapshot": snapshot_dict(snapshot),
        "summary": summarize(findings),
        "findings": [f.to_dict() for f in findings],
    }
