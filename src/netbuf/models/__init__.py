"""netbuf data models."""

from netbuf.models.enums import (
    ParamKind,
    PressureState,
    ReadStatus,
    RemediationMode,
    Severity,
    Topology,
    Unit,
    Workload,
)
from netbuf.models.findings import (
    BackupToken,
    DiffEntry,
    Finding,
    Profile,
    Remediation,
    RemediationAction,
    RemediationPlan,
)
from netbuf.models.runtime import (
    ConnectionBuffer,
    InterfaceStats,
    MetricSpec,
    ParameterReading,
    ParameterSet,
    ParameterSpec,
    Snapshot,
    TelemetryReading,
    TelemetrySample,
    TelemetrySet,
    Triple,
)

__all__ = [
    "Severity",
    "ParamKind",
    "ReadStatus",
    "Unit",
    "PressureState",
    "Workload",
    "Topology",
    "RemediationMode",
    "Triple",
    "ParameterSpec",
    "ParameterReading",
    "ParameterSet",
    "MetricSpec",
    "TelemetrySample",
    "TelemetryReading",
    "TelemetrySet",
    "ConnectionBuffer",
    "InterfaceStats",
    "Snapshot",
    "Remediation",
    "Finding",
    "Profile",
    "DiffEntry",
    "RemediationAction",
    "RemediationPlan",
    "BackupToken",
]
