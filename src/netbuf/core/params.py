"""Parameter Reader: typed snapshot of kernel tunables from a parameter store."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from netbuf.core.parser import (
    format_sysctl_conf,
    parse_sysctl_conf,
    parse_value,
    proc_sys_path,
)
from netbuf.errors import ParameterUnavailable, RestoreError
from netbuf.models.enums import ParamKind, ReadStatus
from netbuf.models.runtime import ParameterReading, ParameterSet, ParameterSpec

logger = logging.getLogger("netbuf.params")

SCHEMA_VERSION = "1"

RMEM_MAX = "net.core.rmem_max"
WMEM_MAX = "net.core.wmem_max"
RMEM_DEFAULT = "net.core.rmem_default"
WMEM_DEFAULT = "net.core.wmem_default"
SOMAXCONN = "net.core.somaxconn"
NETDEV_MAX_BACKLOG = "net.core.netdev_max_backlog"
TCP_RMEM = "net.ipv4.tcp_rmem"
TCP_WMEM = "net.ipv4.tcp_wmem"
TCP_MEM = "net.ipv4.tcp_mem"
TCP_WINDOW_SCALING = "net.ipv4.tcp_window_scaling"
TCP_MODERATE_RCVBUF = "net.ipv4.tcp_moderate_rcvbuf"
TCP_TIMESTAMPS = "net.ipv4.tcp_timestamps"
TCP_MAX_SYN_BACKLOG = "net.ipv4.tcp_max_syn_backlog"

# Versioned via SCHEMA_VERSION; rules and profiles only reference these names.
REQUIRED_PARAMETERS: tuple[ParameterSpec, ...] = (
    ParameterSpec(RMEM_MAX, ParamKind.SCALAR, "Hard ceiling for any socket receive buffer"),
    ParameterSpec(WMEM_MAX, ParamKind.SCALAR, "Hard ceiling for any socket send buffer"),
    ParameterSpec(RMEM_DEFAULT, ParamKind.SCALAR, "Default receive buffer for non-TCP sockets"),
    ParameterSpec(WMEM_DEFAULT, ParamKind.SCALAR, "Default send buffer for non-TCP sockets"),
    ParameterSpec(TCP_RMEM, ParamKind.TRIPLE, "TCP receive buffer auto-tuning range (bytes)"),
    ParameterSpec(TCP_WMEM, ParamKind.TRIPLE, "TCP send buffer auto-tuning range (bytes)"),
    ParameterSpec(TCP_MEM, ParamKind.TRIPLE, "Global TCP memory thresholds (pages)"),
    ParameterSpec(TCP_WINDOW_SCALING, ParamKind.SCALAR, "RFC 7323 window scaling"),
    ParameterSpec(TCP_MODERATE_RCVBUF, ParamKind.SCALAR, "Receive buffer auto-tuning"),
    ParameterSpec(TCP_TIMESTAMPS, ParamKind.SCALAR, "TCP timestamps (RTT measurement)"),
    ParameterSpec(SOMAXCONN, ParamKind.SCALAR, "Listen backlog limit"),
    ParameterSpec(TCP_MAX_SYN_BACKLOG, ParamKind.SCALAR, "Half-open connection queue"),
    ParameterSpec(NETDEV_MAX_BACKLOG, ParamKind.SCALAR, "Per-CPU input packet queue"),
)

# Prefixes included in a backup export
EXPORT_PREFIXES = ("net.core.", "net.ipv4.")


class ParameterStore(Protocol):
    """Key/value access to kernel tunables."""

    def read(self, name: str) -> str:
        """Return the raw text value or raise ParameterUnavailable."""
        ...

    def write(self, name: str, value: str) -> None:
        """Set one value. Raises ParameterUnavailable on failure."""
        ...

    def export(self) -> str:
        """Return an opaque blob of all current values for rollback."""
        ...

    def restore(self, blob: str) -> None:
        """Write back every value in an export blob."""
        ...


def read_parameters(
    store: ParameterStore,
    specs: Iterable[ParameterSpec] = REQUIRED_PARAMETERS,
) -> ParameterSet:
    """Read every spec from the store. Never raises for missing or bad data."""
    readings = [read_parameter(store, spec) for spec in specs]
    unavailable = sum(1 for r in readings if r.status == ReadStatus.UNAVAILABLE)
    if unavailable:
        logger.debug("%d of %d parameters unavailable", unavailable, len(readings))
    return ParameterSet(readings)


def read_parameter(store: ParameterStore, spec: ParameterSpec) -> ParameterReading:
    """Read and parse one parameter into a typed reading or a failure marker."""
    try:
        raw = store.read(spec.name)
    except ParameterUnavailable as exc:
        logger.debug("Parameter %s unavailable: %s", spec.name, exc.reason)
        return ParameterReading(
            name=spec.name, kind=spec.kind, status=ReadStatus.UNAVAILABLE, error=exc.reason
        )

    try:
        value = parse_value(raw, spec.kind)
    except ValueError as exc:
        logger.warning("Malformed value for %s: %r", spec.name, raw)
        return ParameterReading(
            name=spec.name,
            kind=spec.kind,
            status=ReadStatus.MALFORMED,
            raw=raw,
            error=str(exc),
        )

    return ParameterReading(
        name=spec.name, kind=spec.kind, status=ReadStatus.OK, value=value, raw=raw
    )


class SysctlStore:
    """Parameter store backed by the sysctl binary, falling back to /proc/sys.

    Every subprocess call is bounded by ``timeout``; a timeout is reported
    the same way as a missing parameter.
    """

    def __init__(
        self,
        timeout: float = 0.3,
        sysctl_bin: str = "sysctl",
        proc_root: Path | str = "/proc/sys",
    ) -> None:
        self._timeout = timeout
        self._sysctl = sysctl_bin
        self._proc_root = Path(proc_root)

    def _run(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            [self._sysctl, *args],
            capture_output=True,
            text=True,
            timeout=self._timeout,
            check=False,
        )

    def _proc_path(self, name: str) -> Path:
        return self._proc_root / proc_sys_path(name).removeprefix("/proc/sys/")

    def read(self, name: str) -> str:
        try:
            result = self._run(["-n", name])
            if result.returncode == 0 and result.stdout.strip():
                return " ".join(result.stdout.split())
            reason = result.stderr.strip() or f"sysctl exited {result.returncode}"
        except subprocess.TimeoutExpired:
            raise ParameterUnavailable(name, f"timed out after {self._timeout}s")
        except OSError as exc:
            reason = str(exc)

        # sysctl missing or refused; /proc/sys may still be readable
        try:
            text = self._proc_path(name).read_text()
        except OSError as exc:
            raise ParameterUnavailable(name, f"{reason}; {exc.strerror or exc}")
        if not text.strip():
            raise ParameterUnavailable(name, "empty value")
        return " ".join(text.split())

    def write(self, name: str, value: str) -> None:
        try:
            result = self._run(["-w", f"{name}={value}"])
        except subprocess.TimeoutExpired:
            raise ParameterUnavailable(name, f"timed out after {self._timeout}s")
        except OSError as exc:
            raise ParameterUnavailable(name, str(exc))
        if result.returncode != 0:
            raise ParameterUnavailable(
                name, result.stderr.strip() or f"sysctl exited {result.returncode}"
            )

    def export(self) -> str:
        try:
            result = self._run(["-a"])
        except subprocess.TimeoutExpired:
            raise ParameterUnavailable("*", f"export timed out after {self._timeout}s")
        except OSError as exc:
            raise ParameterUnavailable("*", str(exc))
        # sysctl -a exits non-zero on unreadable keys but still prints the rest
        pairs = [
            (name, value)
            for name, value in _lenient_pairs(result.stdout)
            if name.startswith(EXPORT_PREFIXES)
        ]
        if not pairs:
            raise ParameterUnavailable("*", result.stderr.strip() or "no values exported")
        return format_sysctl_conf(pairs, header="netbuf backup (sysctl.conf format)")

    def restore(self, blob: str) -> None:
        """Write back only values that changed; the export includes read-only keys."""
        for name, value in parse_sysctl_conf(blob):
            try:
                if self.read(name) == value:
                    continue
            except ParameterUnavailable:
                logger.debug("Skipping unreadable %s during restore", name)
                continue
            logger.info("Restoring %s = %s", name, value)
            try:
                self.write(name, value)
            except ParameterUnavailable as exc:
                raise RestoreError(name, exc.reason) from exc


def _lenient_pairs(text: str) -> list[tuple[str, str]]:
    """Like parse_sysctl_conf but skips lines sysctl -a mangles."""
    pairs = []
    for line in text.splitlines():
        try:
            pairs.extend(parse_sysctl_conf(line))
        except ValueError:
            continue
    return pairs
