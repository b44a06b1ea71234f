"""Profile Recommender: diff a snapshot against a profile and plan the changes.

Applying is a separate, explicit step. ``apply`` exports the current values
before the first write and hands the export back as a BackupToken, so the
caller can always roll back, including after a partial failure.
"""

from __future__ import annotations

import logging
import shlex
from typing import Callable

from netbuf.config import Thresholds
from netbuf.core.params import EXPORT_PREFIXES, ParameterStore
from netbuf.core.parser import format_sysctl_conf
from netbuf.core.profiles import fit_to_host
from netbuf.errors import ApplyError, ParameterUnavailable
from netbuf.models.enums import RemediationMode
from netbuf.models.findings import (
    BackupToken,
    DiffEntry,
    Profile,
    RemediationAction,
    RemediationPlan,
)
from netbuf.models.runtime import Snapshot, format_value

logger = logging.getLogger("netbuf.recommender")

PERSIST_DIR = "/etc/sysctl.d"
BACKUP_DIR = "/root"


def persist_path(profile_id: str) -> str:
    return f"{PERSIST_DIR}/99-netbuf-{profile_id}.conf"


def diff(snapshot: Snapshot, profile: Profile) -> list[DiffEntry]:
    """One entry per profile parameter, in profile order.

    Parameters the snapshot could not read have ``current=None`` and never match.
    """
    entries = []
    for name, recommended in profile.recommended:
        current = snapshot.parameters.get(name)
        entries.append(
            DiffEntry(
                parameter=name,
                current=current,
                recommended=recommended,
                matches=current is not None and current == recommended,
            )
        )
    return entries


def plan(
    snapshot: Snapshot, profile: Profile, thresholds: Thresholds | None = None
) -> RemediationPlan:
    """Build the plan that converges *snapshot* on *profile*. Pure.

    The profile is first fitted to the host (see ``fit_to_host``), so the
    planned tcp_mem never exceeds what the host's RAM can back.
    """
    profile = fit_to_host(profile, snapshot, thresholds)
    entries = tuple(diff(snapshot, profile))
    actions = tuple(
        RemediationAction(e.parameter, e.recommended) for e in entries if not e.matches
    )
    return RemediationPlan(profile_id=profile.id, entries=entries, actions=actions)


def _assignment(name: str, value: str) -> str:
    return f"sysctl -w {shlex.quote(f'{name}={value}')}"


def render_commands(plan: RemediationPlan, mode: RemediationMode) -> str:
    """Render a plan as shell text for the given mode."""
    if mode == RemediationMode.APPLY_NOW:
        return _apply_now(plan)

    if mode == RemediationMode.PERSIST:
        # the persisted file carries the whole profile, not only the delta
        path = persist_path(plan.profile_id)
        body = format_sysctl_conf(
            [(e.parameter, format_value(e.recommended)) for e in plan.entries],
            header=f"netbuf profile {plan.profile_id}",
        )
        return (
            f"cat > {path} <<'EOF'\n"
            f"{body}"
            "EOF\n"
            f"sysctl -p {path}\n"
        )

    if mode == RemediationMode.BACKUP:
        pattern = "|".join(p.rstrip(".").replace(".", r"\.") for p in EXPORT_PREFIXES)
        target = f"{BACKUP_DIR}/sysctl-backup-$(date +%Y%m%d-%H%M%S).conf"
        return (
            "set -e\n"
            "# Save current values before changing anything\n"
            f"BACKUP={target}\n"
            f"sysctl -a 2>/dev/null | grep -E '^({pattern})\\.' > \"$BACKUP\"\n"
            'echo "Backup written to $BACKUP; restore with: sysctl -p $BACKUP"\n'
            + _apply_now(plan)
        )

    raise ValueError(f"Unknown remediation mode: {mode!r}")


def _apply_now(plan: RemediationPlan) -> str:
    if plan.is_noop:
        return f"# {plan.profile_id}: nothing to change\n"
    lines = [f"# Apply {plan.profile_id} (lost on reboot)"]
    lines.extend(_assignment(a.parameter, format_value(a.value)) for a in plan.actions)
    return "\n".join(lines) + "\n"


def apply(
    plan: RemediationPlan,
    store: ParameterStore,
    on_backup: Callable[[BackupToken], None] | None = None,
) -> BackupToken:
    """Export current values, then write each action exactly once.

    *on_backup* is called with the export before the first write, so a caller
    can persist it; if it raises, nothing is written.

    Raises ApplyError on the first failed write; the error carries the
    backup taken before any change. Writes are never retried.
    """
    try:
        blob = store.export()
    except ParameterUnavailable as exc:
        # nothing has been written yet
        raise ApplyError(exc.name, f"backup failed: {exc.reason}") from exc
    token = BackupToken(blob=blob, profile_id=plan.profile_id)
    if on_backup is not None:
        on_backup(token)

    logger.info("Applying %s: %d change(s)", plan.profile_id, len(plan.actions))
    for action in plan.actions:
        value = format_value(action.value)
        try:
            store.write(action.parameter, value)
        except ParameterUnavailable as exc:
            logger.error("Write %s = %s failed: %s", action.parameter, value, exc.reason)
            raise ApplyError(action.parameter, exc.reason, backup=token) from exc
        logger.info("Set %s = %s", action.parameter, value)
    return token


def rollback(store: ParameterStore, token: BackupToken) -> None:
    """Restore the values captured in *token*."""
    logger.info("Rolling back to backup taken %s", token.created_at.isoformat())
    store.restore(token.blob)
