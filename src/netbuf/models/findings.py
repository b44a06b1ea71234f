"""Frozen dataclass models for evaluator and recommender output."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from netbuf.models.enums import Severity, Topology, Workload
from netbuf.models.runtime import Value, value_to_json


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Remediation:
    """One suggested value assignment that would resolve a finding."""

    parameter: str
    value: Value
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "parameter": self.parameter,
            "value": value_to_json(self.value),
            "note": self.note,
        }


@dataclass(frozen=True, slots=True)
class Finding:
    """The result of a single consistency check."""

    check_id: str
    severity: Severity
    message: str
    current: tuple[tuple[str, Any], ...] = ()  # (label, value) pairs
    remediation: tuple[Remediation, ...] = ()

    @property
    def skipped(self) -> bool:
        return self.severity == Severity.INFO and self.message.startswith("check skipped")

    def to_dict(self) -> dict[str, Any]:
        return {
            "check_id": self.check_id,
            "severity": self.severity.value,
            "message": self.message,
            "current": {k: value_to_json(v) for k, v in self.current},
            "remediation": [r.to_dict() for r in self.remediation],
        }


@dataclass(frozen=True, slots=True)
class Profile:
    """A named bundle of recommended values for one workload x topology."""

    workload: Workload
    topology: Topology
    description: str
    recommended: tuple[tuple[str, Value], ...]  # ordered: ceilings before auto-tune ranges

    @property
    def id(self) -> str:
        return f"{self.workload.value}-{self.topology.value}"

    def as_dict(self) -> dict[str, Value]:
        return dict(self.recommended)


@dataclass(frozen=True, slots=True)
class DiffEntry:
    """Current versus recommended value for one profile parameter."""

    parameter: str
    current: Value | None
    recommended: Value
    matches: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "parameter": self.parameter,
            "current": value_to_json(self.current),
            "recommended": value_to_json(self.recommended),
            "matches": self.matches,
        }


@dataclass(frozen=True, slots=True)
class RemediationAction:
    """A single value assignment in a plan."""

    parameter: str
    value: Value

    def to_dict(self) -> dict[str, Any]:
        return {"parameter": self.parameter, "value": value_to_json(self.value)}


@dataclass(frozen=True, slots=True)
class RemediationPlan:
    """Profile diff plus the assignments needed to converge on it."""

    profile_id: str
    entries: tuple[DiffEntry, ...]
    actions: tuple[RemediationAction, ...]
    created_at: datetime = field(default_factory=_now)

    @property
    def is_noop(self) -> bool:
        return not self.actions

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile_id": self.profile_id,
            "created_at": self.created_at.isoformat(),
            "entries": [e.to_dict() for e in self.entries],
            "actions": [a.to_dict() for a in self.actions],
        }


@dataclass(frozen=True, slots=True)
class BackupToken:
    """Opaque pre-change export returned by apply, consumed by rollback."""

    blob: str
    profile_id: str = ""
    created_at: datetime = field(default_factory=_now)
