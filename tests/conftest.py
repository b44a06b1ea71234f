"""Shared fakes for the parameter store and telemetry source."""

from __future__ import annotations

import pytest

from netbuf.core.params import read_parameters
from netbuf.core.parser import format_sysctl_conf, parse_sysctl_conf
from netbuf.core.telemetry import read_telemetry
from netbuf.errors import ParameterUnavailable, TelemetryUnavailable
from netbuf.models.runtime import ConnectionBuffer, InterfaceStats, Snapshot

GIB = 1024 ** 3

_UNSET = object()

HEALTHY_PARAMS = {
    "net.core.rmem_max": "16777216",
    "net.core.wmem_max": "16777216",
    "net.core.rmem_default": "262144",
    "net.core.wmem_default": "262144",
    "net.ipv4.tcp_rmem": "4096\t262144\t16777216",
    "net.ipv4.tcp_wmem": "4096\t262144\t16777216",
    "net.ipv4.tcp_mem": "2097152\t4194304\t8388608",
    "net.ipv4.tcp_window_scaling": "1",
    "net.ipv4.tcp_moderate_rcvbuf": "1",
    "net.ipv4.tcp_timestamps": "1",
    "net.core.somaxconn": "4096",
    "net.ipv4.tcp_max_syn_backlog": "8192",
    "net.core.netdev_max_backlog": "10000",
}

HEALTHY_METRICS = {
    "tcp.memory_pages": 100,
    "tcp.sockets_inuse": 10,
    "tcp.sockets_orphaned": 0,
    "tcp.sockets_allocated": 12,
    "system.memory_total": 128 * GIB,
    "system.cpu_count": 8,
    "system.page_size": 4096,
    "net.rx_dropped": 0,
    "net.tx_dropped": 0,
    "net.rx_errors": 0,
    "net.tx_errors": 0,
}


class FakeStore:
    """In-memory parameter store. Missing keys are unavailable."""

    def __init__(self, values=None, fail_writes=(), fail_export=False):
        self.values = dict(HEALTHY_PARAMS if values is None else values)
        self.fail_writes = set(fail_writes)
        self.fail_export = fail_export
        self.writes: list[tuple[str, str]] = []

    def read(self, name):
        if name not in self.values:
            raise ParameterUnavailable(name, "no such key")
        return self.values[name]

    def write(self, name, value):
        if name in self.fail_writes:
            raise ParameterUnavailable(name, "permission denied")
        self.writes.append((name, value))
        self.values[name] = value

    def export(self):
        if self.fail_export:
            raise ParameterUnavailable("*", "export refused")
        return format_sysctl_conf(sorted(self.values.items()), header="fake backup")

    def restore(self, blob):
        for name, value in parse_sysctl_conf(blob):
            self.write(name, value)


class FakeTelemetry:
    """In-memory telemetry source."""

    def __init__(self, values=None, connections=(), interfaces=_UNSET, malformed=()):
        self.values = dict(HEALTHY_METRICS if values is None else values)
        self.connections = connections
        self.interfaces = (
            [InterfaceStats(name="eth0", mtu=1500)] if interfaces is _UNSET else interfaces
        )
        self.malformed = set(malformed)
        self.connection_limits: list[int] = []

    def read(self, metric):
        if metric in self.malformed:
            raise ValueError(f"garbage for {metric}")
        if metric not in self.values:
            raise TelemetryUnavailable(metric, "not reported")
        return self.values[metric]

    def list_connections(self, limit):
        self.connection_limits.append(limit)
        if self.connections is None:
            raise TelemetryUnavailable("connections", "ss missing")
        return list(self.connections)

    def list_interfaces(self):
        if self.interfaces is None:
            raise TelemetryUnavailable("interfaces", "no psutil")
        return list(self.interfaces)


def conn(local="10.0.0.1:443", peer="10.0.0.2:50000", r=0, rb=131072):
    return ConnectionBuffer(local=local, peer=peer, rmem_alloc=r, rcvbuf=rb, wmem_alloc=0, sndbuf=87040)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def telemetry():
    return FakeTelemetry()


def make_snapshot(params=None, metrics=None, drop=(), connections=(), interfaces=None):
    """Snapshot of a healthy host with *params*/*metrics* overridden and *drop* removed."""
    values = dict(HEALTHY_PARAMS)
    values.update(params or {})
    for name in drop:
        values.pop(name, None)
    tel_values = dict(HEALTHY_METRICS)
    tel_values.update(metrics or {})
    source = FakeTelemetry(
        values=tel_values,
        connections=connections,
        interfaces=interfaces if interfaces is not None else [InterfaceStats("eth0", 1500)],
    )
    return Snapshot(
        parameters=read_parameters(FakeStore(values)),
        telemetry=read_telemetry(source),
    )
