"""Enumerations for netbuf models."""

from enum import Enum


class Severity(str, Enum):
    """Finding severity, ordered from least to most serious."""

    PASS = "pass"
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.PASS: 0,
    Severity.INFO: 1,
    Severity.WARNING: 2,
    Severity.CRITICAL: 3,
}


class ParamKind(str, Enum):
    """Shape of a kernel-tunable value."""

    SCALAR = "scalar"
    TRIPLE = "triple"


class ReadStatus(str, Enum):
    """Outcome of reading one parameter or metric."""

    OK = "ok"
    UNAVAILABLE = "unavailable"
    MALFORMED = "malformed"


class Unit(str, Enum):
    """Unit of a telemetry sample."""

    PAGES = "pages"
    BYTES = "bytes"
    COUNT = "count"


class PressureState(str, Enum):
    """TCP memory-pressure classification against tcp_mem."""

    NORMAL = "normal"
    APPROACHING_PRESSURE = "approaching_pressure"
    UNDER_PRESSURE = "under_pressure"
    CRITICAL = "critical"


class Workload(str, Enum):
    """Traffic shape a profile is tuned for."""

    MESSAGE_DELIVERY = "message-delivery"
    FILE_TRANSFER = "file-transfer"


class Topology(str, Enum):
    """Deployment topology a profile is tuned for."""

    BACKEND = "backend"  # datacenter, 1-5ms RTT, stable
    INTERNET = "internet"  # customer-facing, 50-200ms RTT, lossy


class RemediationMode(str, Enum):
    """How remediation commands are rendered."""

    APPLY_NOW = "apply-now"
    PERSIST = "persist"
    BACKUP = "backup"
