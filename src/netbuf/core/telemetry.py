"""Telemetry Reader: point-in-time runtime counters via procfs, ss, and psutil."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Iterable
from pathlib import Path
from typing import Callable, Protocol

import psutil

from netbuf.core.parser import parse_sockstat, parse_ss_skmem
from netbuf.errors import TelemetryUnavailable
from netbuf.models.enums import ReadStatus, Unit
from netbuf.models.runtime import (
    ConnectionBuffer,
    InterfaceStats,
    MetricSpec,
    TelemetryReading,
    TelemetrySample,
    TelemetrySet,
)

logger = logging.getLogger("netbuf.telemetry")

TCP_MEMORY_PAGES = "tcp.memory_pages"
TCP_SOCKETS_INUSE = "tcp.sockets_inuse"
TCP_SOCKETS_ORPHANED = "tcp.sockets_orphaned"
TCP_SOCKETS_ALLOCATED = "tcp.sockets_allocated"
MEMORY_TOTAL = "system.memory_total"
CPU_COUNT = "system.cpu_count"
PAGE_SIZE = "system.page_size"
RX_DROPPED = "net.rx_dropped"
TX_DROPPED = "net.tx_dropped"
RX_ERRORS = "net.rx_errors"
TX_ERRORS = "net.tx_errors"

REQUIRED_METRICS: tuple[MetricSpec, ...] = (
    MetricSpec(TCP_MEMORY_PAGES, Unit.PAGES, "TCP memory in use (sockstat mem)"),
    MetricSpec(TCP_SOCKETS_INUSE, Unit.COUNT, "TCP sockets in use"),
    MetricSpec(TCP_SOCKETS_ORPHANED, Unit.COUNT, "Orphaned TCP sockets"),
    MetricSpec(TCP_SOCKETS_ALLOCATED, Unit.COUNT, "Allocated TCP sockets"),
    MetricSpec(MEMORY_TOTAL, Unit.BYTES, "Physical memory"),
    MetricSpec(CPU_COUNT, Unit.COUNT, "Logical CPUs"),
    MetricSpec(PAGE_SIZE, Unit.BYTES, "Kernel page size"),
    MetricSpec(RX_DROPPED, Unit.COUNT, "RX drops on non-loopback interfaces since boot"),
    MetricSpec(TX_DROPPED, Unit.COUNT, "TX drops on non-loopback interfaces since boot"),
    MetricSpec(RX_ERRORS, Unit.COUNT, "RX errors on non-loopback interfaces since boot"),
    MetricSpec(TX_ERRORS, Unit.COUNT, "TX errors on non-loopback interfaces since boot"),
)

DEFAULT_CONNECTION_LIMIT = 50

_SOCKSTAT_KEYS = {
    TCP_MEMORY_PAGES: "tcp.mem",
    TCP_SOCKETS_INUSE: "tcp.inuse",
    TCP_SOCKETS_ORPHANED: "tcp.orphan",
    TCP_SOCKETS_ALLOCATED: "tcp.alloc",
}

_COUNTER_ATTRS = {
    RX_DROPPED: "dropin",
    TX_DROPPED: "dropout",
    RX_ERRORS: "errin",
    TX_ERRORS: "errout",
}

_LOOPBACK = "lo"


class TelemetrySource(Protocol):
    """Runtime counters for the local host."""

    def read(self, metric: str) -> int:
        """Return the current value or raise TelemetryUnavailable.

        Raises ValueError when the source text cannot be parsed.
        """
        ...

    def list_connections(self, limit: int) -> list[ConnectionBuffer]:
        """Return at most *limit* established sockets in a stable order."""
        ...

    def list_interfaces(self) -> list[InterfaceStats]:
        ...


def read_telemetry(
    source: TelemetrySource,
    specs: Iterable[MetricSpec] = REQUIRED_METRICS,
    connection_limit: int = DEFAULT_CONNECTION_LIMIT,
) -> TelemetrySet:
    """Read every metric plus the bounded connection and interface lists."""
    readings = [read_metric(source, spec) for spec in specs]
    connections = _collect(
        "connections", lambda: tuple(source.list_connections(connection_limit)[:connection_limit])
    )
    interfaces = _collect("interfaces", lambda: tuple(source.list_interfaces()))
    return TelemetrySet(readings, connections=connections, interfaces=interfaces)


def read_metric(source: TelemetrySource, spec: MetricSpec) -> TelemetryReading:
    try:
        value = source.read(spec.metric)
    except TelemetryUnavailable as exc:
        logger.debug("Metric %s unavailable: %s", spec.metric, exc.reason)
        return TelemetryReading(spec.metric, ReadStatus.UNAVAILABLE, error=exc.reason)
    except ValueError as exc:
        logger.warning("Malformed telemetry for %s: %s", spec.metric, exc)
        return TelemetryReading(spec.metric, ReadStatus.MALFORMED, error=str(exc))
    return TelemetryReading(
        spec.metric, ReadStatus.OK, sample=TelemetrySample(spec.metric, value, spec.unit)
    )


def _collect(what: str, fn: Callable[[], tuple]) -> tuple | None:
    try:
        return fn()
    except TelemetryUnavailable as exc:
        logger.debug("Cannot list %s: %s", what, exc.reason)
    except ValueError as exc:
        logger.warning("Malformed %s listing: %s", what, exc)
    return None


class LinuxTelemetrySource:
    """Telemetry from /proc/net/sockstat, ``ss -tmn`` and psutil."""

    def __init__(
        self,
        timeout: float = 0.3,
        sockstat_path: Path | str = "/proc/net/sockstat",
        ss_bin: str = "ss",
    ) -> None:
        self._timeout = timeout
        self._sockstat = Path(sockstat_path)
        self._ss = ss_bin

    def read(self, metric: str) -> int:
        if metric in _SOCKSTAT_KEYS:
            return self._read_sockstat(metric, _SOCKSTAT_KEYS[metric])
        if metric == MEMORY_TOTAL:
            return int(psutil.virtual_memory().total)
        if metric == CPU_COUNT:
            count = psutil.cpu_count(logical=True)
            if not count:
                raise TelemetryUnavailable(metric, "cpu count not reported")
            return count
        if metric == PAGE_SIZE:
            try:
                return os.sysconf("SC_PAGE_SIZE")
            except (ValueError, OSError, AttributeError) as exc:
                raise TelemetryUnavailable(metric, str(exc))
        if metric in _COUNTER_ATTRS:
            return self._sum_counters(metric, _COUNTER_ATTRS[metric])
        raise TelemetryUnavailable(metric, "unknown metric")

    def _read_sockstat(self, metric: str, key: str) -> int:
        try:
            text = self._sockstat.read_text()
        except OSError as exc:
            raise TelemetryUnavailable(metric, f"{self._sockstat}: {exc.strerror or exc}")
        values = parse_sockstat(text)
        if key not in values:
            raise TelemetryUnavailable(metric, f"{key} not present in {self._sockstat}")
        return values[key]

    def _sum_counters(self, metric: str, attr: str) -> int:
        try:
            counters = psutil.net_io_counters(pernic=True)
        except (OSError, RuntimeError) as exc:
            raise TelemetryUnavailable(metric, str(exc))
        return sum(
            getattr(c, attr) for name, c in counters.items() if name != _LOOPBACK
        )

    def list_connections(self, limit: int) -> list[ConnectionBuffer]:
        try:
            result = subprocess.run(
                [self._ss, "-tmn", "state", "established"],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise TelemetryUnavailable("connections", f"ss timed out after {self._timeout}s")
        except OSError as exc:
            raise TelemetryUnavailable("connections", str(exc))
        if result.returncode != 0:
            raise TelemetryUnavailable(
                "connections", result.stderr.strip() or f"ss exited {result.returncode}"
            )
        conns = parse_ss_skmem(result.stdout)
        # kernel hash order is not stable between runs
        conns.sort(key=lambda c: (c.local, c.peer))
        return conns[:limit]

    def list_interfaces(self) -> list[InterfaceStats]:
        try:
            stats = psutil.net_if_stats()
            counters = psutil.net_io_counters(pernic=True)
        except (OSError, RuntimeError) as exc:
            raise TelemetryUnavailable("interfaces", str(exc))
        out = []
        for name in sorted(stats):
            if name == _LOOPBACK:
                continue
            c = counters.get(name)
            out.append(
                InterfaceStats(
                    name=name,
                    mtu=stats[name].mtu,
                    rx_dropped=c.dropin if c else 0,
                    tx_dropped=c.dropout if c else 0,
                    rx_errors=c.errin if c else 0,
                    tx_errors=c.errout if c else 0,
                )
            )
        return out
