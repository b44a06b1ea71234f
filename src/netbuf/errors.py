"""Exception taxonomy.

Readers turn the ``*Unavailable`` errors into markers; only caller mistakes
(unknown profile, broken catalog) and apply-path failures reach the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from netbuf.models.findings import BackupToken


class NetbufError(Exception):
    """Base class for netbuf errors."""


class ParameterUnavailable(NetbufError):
    """A parameter could not be read (missing, permission denied, timeout)."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"{name}: {reason}")
        self.name = name
        self.reason = reason


class TelemetryUnavailable(NetbufError):
    """A telemetry metric could not be read."""

    def __init__(self, metric: str, reason: str) -> None:
        super().__init__(f"{metric}: {reason}")
        self.metric = metric
        self.reason = reason


class ProfileNotFound(NetbufError, KeyError):
    """The requested profile id is not in the catalog."""

    def __init__(self, profile_id: str, known: list[str] | None = None) -> None:
        self.profile_id = profile_id
        self.known = known or []
        msg = f"Unknown profile '{profile_id}'"
        if self.known:
            msg += f" (known: {', '.join(self.known)})"
        super().__init__(msg)

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.args[0]


class CatalogError(NetbufError):
    """The static profile catalog is internally inconsistent."""


class ApplyError(NetbufError):
    """A parameter write failed. Nothing is retried."""

    def __init__(
        self, parameter: str, reason: str, backup: BackupToken | None = None
    ) -> None:
        super().__init__(f"Failed to write {parameter}: {reason}")
        self.parameter = parameter
        self.reason = reason
        self.backup = backup


class RestoreError(NetbufError):
    """A parameter could not be written back during rollback."""

    def __init__(self, parameter: str, reason: str) -> None:
        super().__init__(f"Failed to restore {parameter}: {reason}")
        self.parameter = parameter
        self.reason = reason
