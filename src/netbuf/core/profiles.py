"""Static catalog of tuning profiles, one per workload x topology."""

from __future__ import annotations

from dataclasses import replace

from netbuf.config import Thresholds
from netbuf.core.params import (
    NETDEV_MAX_BACKLOG,
    REQUIRED_PARAMETERS,
    RMEM_DEFAULT,
    RMEM_MAX,
    SOMAXCONN,
    TCP_MAX_SYN_BACKLOG,
    TCP_MEM,
    TCP_MODERATE_RCVBUF,
    TCP_RMEM,
    TCP_TIMESTAMPS,
    TCP_WINDOW_SCALING,
    TCP_WMEM,
    WMEM_DEFAULT,
    WMEM_MAX,
)
from netbuf.core.rules import evaluate, scale_tcp_mem, tcp_mem_ceiling
from netbuf.errors import CatalogError, ProfileNotFound
from netbuf.models.enums import ParamKind, Severity, Topology, Workload
from netbuf.models.findings import Profile
from netbuf.models.runtime import ParameterSet, Snapshot, Triple, Value

# Applied to every profile after the sizing block
_COMMON: tuple[tuple[str, Value], ...] = (
    (TCP_WINDOW_SCALING, 1),
    (TCP_MODERATE_RCVBUF, 1),
    (TCP_TIMESTAMPS, 1),
    (SOMAXCONN, 4096),
    (TCP_MAX_SYN_BACKLOG, 8192),
    (NETDEV_MAX_BACKLOG, 10000),
)


def _profile(
    workload: Workload,
    topology: Topology,
    description: str,
    buffer: Triple,
    tcp_mem: Triple,
) -> Profile:
    # ceilings first so applying in order never trips the ceiling check midway
    recommended: tuple[tuple[str, Value], ...] = (
        (RMEM_MAX, buffer.maximum),
        (WMEM_MAX, buffer.maximum),
        (RMEM_DEFAULT, buffer.default),
        (WMEM_DEFAULT, buffer.default),
        (TCP_RMEM, buffer),
        (TCP_WMEM, buffer),
        (TCP_MEM, tcp_mem),
        *_COMMON,
    )
    return Profile(workload, topology, description, recommended)


CATALOG: tuple[Profile, ...] = (
    _profile(
        Workload.MESSAGE_DELIVERY,
        Topology.BACKEND,
        "Many small messages over 1-5ms datacenter links: small buffers, "
        "maximum connection count",
        Triple(4096, 32768, 131072),
        Triple(131072, 262144, 524288),
    ),
    _profile(
        Workload.MESSAGE_DELIVERY,
        Topology.INTERNET,
        "Small messages to customers over 50-200ms lossy paths: room to "
        "absorb retransmits without starving the host",
        Triple(4096, 262144, 4194304),
        Triple(524288, 1048576, 2097152),
    ),
    _profile(
        Workload.FILE_TRANSFER,
        Topology.BACKEND,
        "Bulk transfer inside the datacenter: bandwidth-delay product "
        "is small, 1MB covers 10Gbit at 1ms",
        Triple(4096, 262144, 1048576),
        Triple(524288, 1048576, 2097152),
    ),
    _profile(
        Workload.FILE_TRANSFER,
        Topology.INTERNET,
        "Bulk transfer over high-RTT paths: 16MB windows to fill long fat "
        "pipes, fewer concurrent connections",
        Triple(4096, 4194304, 16777216),
        Triple(2097152, 4194304, 8388608),
    ),
)

_BY_ID = {p.id: p for p in CATALOG}


def list_profiles() -> list[Profile]:
    return list(CATALOG)


def get_profile(profile_id: str) -> Profile:
    """Look up a profile by ``<workload>-<topology>`` id."""
    try:
        return _BY_ID[profile_id]
    except KeyError:
        raise ProfileNotFound(profile_id, sorted(_BY_ID)) from None


def synthetic_snapshot(profile: Profile) -> Snapshot:
    """A snapshot whose parameters are exactly the profile's values, with no telemetry."""
    return Snapshot(parameters=ParameterSet.from_values(profile.as_dict()))


def fit_to_host(
    profile: Profile, snapshot: Snapshot, thresholds: Thresholds | None = None
) -> Profile:
    """Scale the profile's tcp_mem down to what this host's RAM can back.

    The catalog sizes tcp_mem for a large server. On a smaller host the same
    page counts would let TCP claim most of RAM, so tcp_mem[high] is capped at
    ``tcp_mem_ram_high_percent`` of the memory the snapshot reports, keeping
    the low and pressure thresholds in proportion. Hosts that did not report
    their memory get the profile unchanged.
    """
    t = thresholds or Thresholds()
    ceiling = tcp_mem_ceiling(snapshot, t)
    tcp_mem = profile.as_dict().get(TCP_MEM)
    if ceiling is None or not isinstance(tcp_mem, Triple) or tcp_mem.high <= ceiling:
        return profile
    fitted = scale_tcp_mem(tcp_mem, ceiling)
    return replace(
        profile,
        recommended=tuple(
            (name, fitted if name == TCP_MEM else value) for name, value in profile.recommended
        ),
    )


def validate_catalog(profiles: tuple[Profile, ...] = CATALOG) -> None:
    """Check that every profile is complete and passes its own evaluation.

    A profile that triggers a Warning or Critical finding when applied as-is
    would be self-contradictory. Raises CatalogError on the first problem.
    """
    kinds = {spec.name: spec.kind for spec in REQUIRED_PARAMETERS}
    seen: set[str] = set()
    for profile in profiles:
        if profile.id in seen:
            raise CatalogError(f"Duplicate profile id {profile.id}")
        seen.add(profile.id)

        values = profile.as_dict()
        missing = sorted(set(kinds) - set(values))
        if missing:
            raise CatalogError(f"{profile.id} omits {', '.join(missing)}")
        for name, value in values.items():
            if name not in kinds:
                raise CatalogError(f"{profile.id} sets unknown parameter {name}")
            expected = ParamKind.TRIPLE if isinstance(value, Triple) else ParamKind.SCALAR
            if kinds[name] != expected:
                raise CatalogError(f"{profile.id}: {name} must be a {kinds[name].value}")

        for finding in evaluate(synthetic_snapshot(profile)):
            if finding.severity in (Severity.WARNING, Severity.CRITICAL):
                raise CatalogError(
                    f"{profile.id} fails its own check {finding.check_id}: {finding.message}"
                )
