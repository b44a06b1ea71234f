"""Frozen dataclass models for one point-in-time view of the network stack."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Union

from netbuf.models.enums import ParamKind, ReadStatus, Unit


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Triple:
    """A min/default/max style kernel value (tcp_rmem, tcp_wmem, tcp_mem)."""

    minimum: int
    default: int
    maximum: int

    # tcp_mem names its components low/pressure/high
    @property
    def low(self) -> int:
        return self.minimum

    @property
    def pressure(self) -> int:
        return self.default

    @property
    def high(self) -> int:
        return self.maximum

    @property
    def is_ordered(self) -> bool:
        return self.minimum <= self.default <= self.maximum

    def as_list(self) -> list[int]:
        return [self.minimum, self.default, self.maximum]

    def __str__(self) -> str:
        return f"{self.minimum} {self.default} {self.maximum}"


Value = Union[int, Triple]


def value_to_json(value: Value | None) -> int | list[int] | None:
    """Convert a parameter value to a JSON-friendly form."""
    if isinstance(value, Triple):
        return value.as_list()
    return value


def format_value(value: Value | None) -> str:
    """Render a value the way sysctl prints it."""
    if value is None:
        return "n/a"
    return str(value)


@dataclass(frozen=True, slots=True)
class ParameterSpec:
    """A required parameter and the shape it must parse into."""

    name: str
    kind: ParamKind
    description: str = ""


@dataclass(frozen=True, slots=True)
class ParameterReading:
    """The result of reading one parameter: a typed value or a failure marker."""

    name: str
    kind: ParamKind
    status: ReadStatus
    value: Value | None = None
    raw: str | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == ReadStatus.OK


class ParameterSet:
    """Immutable name -> reading view over one parameter snapshot."""

    __slots__ = ("_readings",)

    def __init__(self, readings: Iterable[ParameterReading] = ()) -> None:
        self._readings: Mapping[str, ParameterReading] = MappingProxyType(
            {r.name: r for r in readings}
        )

    @classmethod
    def from_values(cls, values: Mapping[str, Value]) -> ParameterSet:
        """Build a fully-readable set from literal values (profiles, tests)."""
        return cls(
            ParameterReading(
                name=name,
                kind=ParamKind.TRIPLE if isinstance(v, Triple) else ParamKind.SCALAR,
                status=ReadStatus.OK,
                value=v,
                raw=str(v),
            )
            for name, v in values.items()
        )

    def reading(self, name: str) -> ParameterReading:
        """Return the reading for *name*; names never read count as unavailable."""
        found = self._readings.get(name)
        if found is not None:
            return found
        return ParameterReading(
            name=name,
            kind=ParamKind.SCALAR,
            status=ReadStatus.UNAVAILABLE,
            error="not read",
        )

    def get(self, name: str) -> Value | None:
        r = self._readings.get(name)
        return r.value if r is not None and r.ok else None

    def scalar(self, name: str) -> int | None:
        v = self.get(name)
        return v if isinstance(v, int) else None

    def triple(self, name: str) -> Triple | None:
        v = self.get(name)
        return v if isinstance(v, Triple) else None

    def names_with_status(self, status: ReadStatus) -> list[str]:
        return [name for name, r in self._readings.items() if r.status == status]

    def __iter__(self):
        return iter(self._readings.values())

    def __len__(self) -> int:
        return len(self._readings)

    def __contains__(self, name: object) -> bool:
        return name in self._readings

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParameterSet):
            return NotImplemented
        return dict(self._readings) == dict(other._readings)

    def __repr__(self) -> str:
        return f"ParameterSet({len(self._readings)} readings)"


@dataclass(frozen=True, slots=True)
class MetricSpec:
    """A required telemetry metric."""

    metric: str
    unit: Unit
    description: str = ""


@dataclass(frozen=True, slots=True)
class TelemetrySample:
    """A point-in-time counter value. Drop/error counters are cumulative since boot."""

    metric: str
    value: int
    unit: Unit


@dataclass(frozen=True, slots=True)
class TelemetryReading:
    """A sample or a failure marker for one metric."""

    metric: str
    status: ReadStatus
    sample: TelemetrySample | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == ReadStatus.OK


@dataclass(frozen=True, slots=True)
class ConnectionBuffer:
    """Buffer occupancy of one established socket, from ss skmem fields."""

    local: str
    peer: str
    rmem_alloc: int  # r
    rcvbuf: int  # rb
    wmem_alloc: int  # t
    sndbuf: int  # tb

    @property
    def receive_utilization(self) -> float:
        """Receive queue as a percentage of the receive buffer limit."""
        if self.rcvbuf <= 0:
            return 0.0
        return self.rmem_alloc * 100.0 / self.rcvbuf


@dataclass(frozen=True, slots=True)
class InterfaceStats:
    """Per-interface counters. Drops and errors are cumulative since boot."""

    name: str
    mtu: int
    rx_dropped: int = 0
    tx_dropped: int = 0
    rx_errors: int = 0
    tx_errors: int = 0


class TelemetrySet:
    """Immutable view over one telemetry capture."""

    __slots__ = ("_readings", "_connections", "_interfaces")

    def __init__(
        self,
        readings: Iterable[TelemetryReading] = (),
        connections: tuple[ConnectionBuffer, ...] | None = None,
        interfaces: tuple[InterfaceStats, ...] | None = None,
    ) -> None:
        self._readings: Mapping[str, TelemetryReading] = MappingProxyType(
            {r.metric: r for r in readings}
        )
        self._connections = tuple(connections) if connections is not None else None
        self._interfaces = tuple(interfaces) if interfaces is not None else None

    @property
    def connections(self) -> tuple[ConnectionBuffer, ...] | None:
        """Sampled connections; None when the source could not enumerate them."""
        return self._connections

    @property
    def interfaces(self) -> tuple[InterfaceStats, ...] | None:
        """Non-loopback interfaces; None when the source could not list them."""
        return self._interfaces

    @classmethod
    def from_values(
        cls,
        values: Mapping[str, int],
        units: Mapping[str, Unit] | None = None,
        connections: tuple[ConnectionBuffer, ...] | None = None,
        interfaces: tuple[InterfaceStats, ...] | None = None,
    ) -> TelemetrySet:
        units = units or {}
        return cls(
            (
                TelemetryReading(
                    metric=m,
                    status=ReadStatus.OK,
                    sample=TelemetrySample(m, v, units.get(m, Unit.COUNT)),
                )
                for m, v in values.items()
            ),
            connections=connections,
            interfaces=interfaces,
        )

    def reading(self, metric: str) -> TelemetryReading:
        found = self._readings.get(metric)
        if found is not None:
            return found
        return TelemetryReading(metric=metric, status=ReadStatus.UNAVAILABLE, error="not read")

    def value(self, metric: str) -> int | None:
        r = self._readings.get(metric)
        if r is None or not r.ok or r.sample is None:
            return None
        return r.sample.value

    def __iter__(self):
        return iter(self._readings.values())

    def __len__(self) -> int:
        return len(self._readings)

    def __repr__(self) -> str:
        return f"TelemetrySet({len(self._readings)} readings)"


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Parameters and telemetry captured for a single analysis run."""

    parameters: ParameterSet
    telemetry: TelemetrySet = field(default_factory=TelemetrySet)
    captured_at: datetime = field(default_factory=_now)
