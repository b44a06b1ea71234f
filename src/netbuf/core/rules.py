"""Consistency Evaluator: an ordered battery of independent checks over one snapshot.

Each rule declares the parameters and metrics it reads. When any of them is
unavailable or malformed the rule is not called and an ``Info`` "check
skipped" finding takes its place, so ``evaluate`` always returns exactly one
finding per rule and never raises.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Callable

from netbuf.config import Thresholds
from netbuf.core.params import (
    NETDEV_MAX_BACKLOG,
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
from netbuf.core.telemetry import (
    CPU_COUNT,
    MEMORY_TOTAL,
    PAGE_SIZE,
    TCP_MEMORY_PAGES,
    TCP_SOCKETS_INUSE,
    TCP_SOCKETS_ORPHANED,
)
from netbuf.models.enums import PressureState, ReadStatus, Severity
from netbuf.models.findings import Finding, Remediation
from netbuf.models.runtime import Snapshot, Triple

logger = logging.getLogger("netbuf.rules")

GIB = 1024 ** 3
STANDARD_MTUS = (1500, 9000)

CheckFn = Callable[[Snapshot, Thresholds], Finding]


@dataclass(frozen=True, slots=True)
class Rule:
    """One check and the inputs it needs from the snapshot."""

    check_id: str
    title: str
    check: CheckFn
    parameters: tuple[str, ...] = ()
    metrics: tuple[str, ...] = ()
    needs_connections: bool = False
    needs_interfaces: bool = False


def short_name(name: str) -> str:
    """``net.ipv4.tcp_rmem`` -> ``tcp_rmem``."""
    return name.rsplit(".", 1)[-1]


def _finding(
    check_id: str,
    severity: Severity,
    message: str,
    current: dict[str, Any] | None = None,
    remediation: Sequence[Remediation] = (),
) -> Finding:
    return Finding(
        check_id=check_id,
        severity=severity,
        message=message,
        current=tuple(
            (k, tuple(v) if isinstance(v, list) else v) for k, v in (current or {}).items()
        ),
        remediation=tuple(remediation),
    )


def _page_size(snap: Snapshot, t: Thresholds) -> int:
    return snap.telemetry.value(PAGE_SIZE) or t.page_size


def tcp_mem_ceiling(snap: Snapshot, t: Thresholds) -> int | None:
    """Largest tcp_mem[high], in pages, that keeps TCP within its share of RAM.

    None when the host did not report its memory size.
    """
    total = snap.telemetry.value(MEMORY_TOTAL)
    if not total:
        return None
    return total * t.tcp_mem_ram_high_percent // 100 // _page_size(snap, t)


def scale_tcp_mem(tcp_mem: Triple, high: int) -> Triple:
    """Rescale tcp_mem so its high threshold is *high*, keeping the proportions."""
    return Triple(
        tcp_mem.low * high // tcp_mem.high,
        tcp_mem.pressure * high // tcp_mem.high,
        high,
    )


def cap_triple(tr: Triple, maximum: int) -> Triple:
    """Lower *tr* so no component exceeds *maximum*."""
    return Triple(min(tr.minimum, maximum), min(tr.default, maximum), maximum)


def connection_capacity(global_ceiling: int, per_connection: int) -> int:
    """How many connections fit in *global_ceiling* at *per_connection* each."""
    if per_connection <= 0:
        return 0
    return global_ceiling // per_connection


def classify_pressure(used_pages: int, tcp_mem: Triple) -> PressureState:
    """Place current TCP memory use against tcp_mem low/pressure/high."""
    if used_pages > tcp_mem.high:
        return PressureState.CRITICAL
    if used_pages > tcp_mem.pressure:
        return PressureState.UNDER_PRESSURE
    if used_pages > tcp_mem.low:
        return PressureState.APPROACHING_PRESSURE
    return PressureState.NORMAL


PRESSURE_SEVERITY = {
    PressureState.NORMAL: Severity.PASS,
    PressureState.APPROACHING_PRESSURE: Severity.INFO,
    PressureState.UNDER_PRESSURE: Severity.WARNING,
    PressureState.CRITICAL: Severity.CRITICAL,
}


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(value, hi))


# --- Parameter integrity ---


def check_integrity(snap: Snapshot, t: Thresholds) -> Finding:
    malformed = snap.parameters.names_with_status(ReadStatus.MALFORMED)
    unavailable = snap.parameters.names_with_status(ReadStatus.UNAVAILABLE)
    current = {"malformed": malformed, "unavailable": unavailable}

    if malformed:
        raw = ", ".join(f"{n}={snap.parameters.reading(n).raw!r}" for n in malformed)
        return _finding(
            "integrity.parameters",
            Severity.WARNING,
            f"Parameter store returned values that do not parse: {raw}. "
            "Investigate the store itself; dependent checks were skipped.",
            current,
        )
    if unavailable:
        return _finding(
            "integrity.parameters",
            Severity.INFO,
            f"{len(unavailable)} parameter(s) could not be read "
            f"(missing or insufficient privilege): {', '.join(unavailable)}",
            current,
        )
    return _finding(
        "integrity.parameters",
        Severity.PASS,
        f"All {len(snap.parameters)} parameters read cleanly",
        current,
    )


def _triple_order_rule(name: str) -> Rule:
    check_id = f"triple_order.{short_name(name)}"

    def check(snap: Snapshot, t: Thresholds) -> Finding:
        tr = snap.parameters.triple(name)
        current = {short_name(name): tr}
        if not tr.is_ordered:
            return _finding(
                check_id,
                Severity.CRITICAL,
                f"{short_name(name)} ({tr}) is not ordered min <= default <= max; "
                "the kernel accepts it and misbehaves silently",
                current,
                [Remediation(name, Triple(*sorted(tr.as_list())), "reorder components")],
            )
        return _finding(check_id, Severity.PASS, f"{short_name(name)} is ordered", current)

    return Rule(check_id, f"{short_name(name)} ordering", check, parameters=(name,))


# --- 1. Ceiling consistency ---


def _ceiling_rule(triple_name: str, ceiling_name: str, label: str) -> Rule:
    check_id = f"ceiling.{label}"
    t_short, c_short = short_name(triple_name), short_name(ceiling_name)

    def check(snap: Snapshot, t: Thresholds) -> Finding:
        tr = snap.parameters.triple(triple_name)
        ceiling = snap.parameters.scalar(ceiling_name)
        current = {f"{t_short}.max": tr.maximum, c_short: ceiling}
        if tr.maximum > ceiling:
            lowered = cap_triple(tr, ceiling)
            return _finding(
                check_id,
                Severity.CRITICAL,
                f"{t_short}[max] ({tr.maximum}) > {c_short} ({ceiling}): auto-tuning "
                f"cannot reach its configured maximum and is capped at {ceiling} bytes",
                current,
                [
                    Remediation(ceiling_name, tr.maximum, f"raise {c_short} to {t_short}[max]"),
                    Remediation(triple_name, lowered, f"or lower {t_short}[max] to {c_short}"),
                ],
            )
        return _finding(
            check_id,
            Severity.PASS,
            f"{t_short}[max] fits under {c_short} (headroom {ceiling - tr.maximum} bytes)",
            current,
        )

    return Rule(
        check_id,
        f"{t_short} max vs {c_short}",
        check,
        parameters=(triple_name, ceiling_name),
    )


# --- 2. Feature gate: window scaling ---


def _feature_gate_rule(triple_name: str) -> Rule:
    check_id = f"feature_gate.{short_name(triple_name)}"
    t_short = short_name(triple_name)

    def check(snap: Snapshot, t: Thresholds) -> Finding:
        tr = snap.parameters.triple(triple_name)
        scaling = snap.parameters.scalar(TCP_WINDOW_SCALING)
        current = {f"{t_short}.max": tr.maximum, "tcp_window_scaling": scaling}
        if tr.maximum <= t.scaling_threshold:
            return _finding(
                check_id,
                Severity.PASS,
                f"{t_short}[max] <= {t.scaling_threshold}; window scaling not required",
                current,
            )
        if scaling != 1:
            return _finding(
                check_id,
                Severity.CRITICAL,
                f"{t_short}[max] ({tr.maximum}) exceeds {t.scaling_threshold} but window "
                f"scaling is disabled: the effective window is capped at "
                f"{t.scaling_threshold} bytes",
                current,
                [Remediation(TCP_WINDOW_SCALING, 1, "enable window scaling")],
            )
        return _finding(
            check_id, Severity.PASS, f"Window scaling enabled for {t_short}", current
        )

    return Rule(
        check_id,
        f"Window scaling for {t_short}",
        check,
        parameters=(triple_name, TCP_WINDOW_SCALING),
    )


# --- 3. Auto-tuning enabled ---


def check_autotuning(snap: Snapshot, t: Thresholds) -> Finding:
    flag = snap.parameters.scalar(TCP_MODERATE_RCVBUF)
    current = {"tcp_moderate_rcvbuf": flag}
    if flag != 1:
        return _finding(
            "autotuning.enabled",
            Severity.WARNING,
            "Receive buffer auto-tuning is disabled: buffers stay at tcp_rmem[default] "
            "and the configured maximum is never reached automatically",
            current,
            [Remediation(TCP_MODERATE_RCVBUF, 1, "enable unless fixed sizing is intentional")],
        )
    return _finding(
        "autotuning.enabled", Severity.PASS, "Receive buffer auto-tuning is enabled", current
    )


# --- 4. Minimum sanity ---


def _min_floor_rule(triple_name: str) -> Rule:
    check_id = f"min_floor.{short_name(triple_name)}"
    t_short = short_name(triple_name)

    def check(snap: Snapshot, t: Thresholds) -> Finding:
        tr = snap.parameters.triple(triple_name)
        floor = t.min_buffer_floor
        current = {f"{t_short}.min": tr.minimum, "floor": floor}
        if tr.minimum < floor:
            fixed = Triple(floor, max(tr.default, floor), max(tr.maximum, floor))
            return _finding(
                check_id,
                Severity.WARNING,
                f"{t_short}[min] ({tr.minimum}) is below {floor}; degenerate minima "
                "misbehave under memory pressure",
                current,
                [Remediation(triple_name, fixed, f"raise {t_short}[min] to {floor}")],
            )
        return _finding(check_id, Severity.PASS, f"{t_short}[min] >= {floor}", current)

    return Rule(check_id, f"{t_short} minimum", check, parameters=(triple_name,))


# --- 5. Default sanity ---


def _default_floor_rule(triple_name: str) -> Rule:
    check_id = f"default_floor.{short_name(triple_name)}"
    t_short = short_name(triple_name)

    def check(snap: Snapshot, t: Thresholds) -> Finding:
        tr = snap.parameters.triple(triple_name)
        size = t.assumed_message_size
        current = {f"{t_short}.default": tr.default, "assumed_message_size": size}
        if tr.default < size:
            fixed = Triple(min(tr.minimum, size), size, max(tr.maximum, size))
            return _finding(
                check_id,
                Severity.CRITICAL,
                f"{t_short}[default] ({tr.default}) cannot hold one {size}-byte message; "
                "every new connection starts undersized",
                current,
                [Remediation(triple_name, fixed, f"raise {t_short}[default] to {size}")],
            )
        return _finding(
            check_id, Severity.PASS, f"{t_short}[default] holds a {size}-byte message", current
        )

    return Rule(check_id, f"{t_short} default", check, parameters=(triple_name,))


# --- 6. Global vs per-connection capacity ---


def check_capacity(snap: Snapshot, t: Thresholds) -> Finding:
    tcp_mem = snap.parameters.triple(TCP_MEM)
    rmem = snap.parameters.triple(TCP_RMEM)
    wmem = snap.parameters.triple(TCP_WMEM)
    page = _page_size(snap, t)

    global_bytes = tcp_mem.high * page
    per_conn_max = rmem.maximum + wmem.maximum
    per_conn_default = rmem.default + wmem.default
    at_max = connection_capacity(global_bytes, per_conn_max)
    current = {
        "tcp_mem.high_bytes": global_bytes,
        "per_connection_max": per_conn_max,
        "connections_at_max": at_max,
        "connections_at_default": connection_capacity(global_bytes, per_conn_default),
        "floor": t.capacity_floor,
    }

    if at_max < t.capacity_floor:
        needed_pages = -(-t.capacity_floor * per_conn_max // page)  # ceil
        remediation = [
            Remediation(
                TCP_MEM,
                Triple(
                    min(tcp_mem.low, needed_pages),
                    min(tcp_mem.pressure, needed_pages),
                    needed_pages,
                ),
                f"raise tcp_mem[high] to {needed_pages} pages",
            ),
        ]
        # alternative: split the global budget evenly between receive and send
        reduced = global_bytes // t.capacity_floor // 2
        if reduced > 0:
            note = f"or cap tcp_rmem[max] and tcp_wmem[max] at {reduced}"
            remediation.append(Remediation(TCP_RMEM, cap_triple(rmem, reduced), note))
            remediation.append(Remediation(TCP_WMEM, cap_triple(wmem, reduced), note))
        return _finding(
            "capacity.connections",
            Severity.WARNING,
            f"Global TCP memory ({global_bytes} bytes) sustains only {at_max} connections "
            f"at full buffer size; below the floor of {t.capacity_floor}",
            current,
            remediation,
        )
    return _finding(
        "capacity.connections",
        Severity.PASS,
        f"Global TCP memory sustains {at_max} connections at full buffer size",
        current,
    )


# --- 7. Memory pressure state ---


def check_pressure(snap: Snapshot, t: Thresholds) -> Finding:
    tcp_mem = snap.parameters.triple(TCP_MEM)
    used = snap.telemetry.value(TCP_MEMORY_PAGES)
    state = classify_pressure(used, tcp_mem)
    severity = PRESSURE_SEVERITY[state]
    current: dict[str, Any] = {
        "tcp_memory_pages": used,
        "tcp_mem": tcp_mem,
        "state": state.value,
        "percent_of_high": round(used * 100 / tcp_mem.high, 1) if tcp_mem.high else None,
    }
    for label, metric in (("sockets_inuse", TCP_SOCKETS_INUSE), ("orphaned", TCP_SOCKETS_ORPHANED)):
        value = snap.telemetry.value(metric)
        if value is not None:
            current[label] = value

    messages = {
        PressureState.NORMAL: f"TCP memory use ({used} pages) is below tcp_mem[low]",
        PressureState.APPROACHING_PRESSURE: (
            f"TCP memory use ({used} pages) is above tcp_mem[low] ({tcp_mem.low}); "
            "approaching pressure"
        ),
        PressureState.UNDER_PRESSURE: (
            f"TCP memory use ({used} pages) is above tcp_mem[pressure] "
            f"({tcp_mem.pressure}); the kernel is moderating buffer growth"
        ),
        PressureState.CRITICAL: (
            f"TCP memory use ({used} pages) is above tcp_mem[high] ({tcp_mem.high}); "
            "new allocations fail"
        ),
    }
    return _finding("memory.pressure", severity, messages[state], current)


# --- 8. Cross-family default mismatch (never above Info) ---


def _default_mismatch_rule(core_name: str, triple_name: str, label: str) -> Rule:
    check_id = f"default_mismatch.{label}"
    c_short, t_short = short_name(core_name), short_name(triple_name)

    def check(snap: Snapshot, t: Thresholds) -> Finding:
        core = snap.parameters.scalar(core_name)
        tcp_default = snap.parameters.triple(triple_name).default
        current = {c_short: core, f"{t_short}.default": tcp_default}
        lo, hi = sorted((core, tcp_default))
        if lo <= 0 or hi / lo > t.default_mismatch_ratio:
            return _finding(
                check_id,
                Severity.INFO,
                f"{c_short} ({core}) and {t_short}[default] ({tcp_default}) differ by more "
                f"than {t.default_mismatch_ratio:g}x; non-TCP sockets start with a "
                "different buffer than TCP (may be intentional)",
                current,
            )
        return _finding(
            check_id, Severity.PASS, f"{c_short} is in line with {t_short}[default]", current
        )

    return Rule(
        check_id,
        f"{c_short} vs {t_short} default",
        check,
        parameters=(core_name, triple_name),
    )


# --- Supplementary checks ---


def check_ram_share(snap: Snapshot, t: Thresholds) -> Finding:
    tcp_mem = snap.parameters.triple(TCP_MEM)
    total = snap.telemetry.value(MEMORY_TOTAL)
    page = _page_size(snap, t)
    high_bytes = tcp_mem.high * page
    percent = high_bytes * 100 // total if total else 0
    current = {"tcp_mem.high_bytes": high_bytes, "memory_total": total, "percent": percent}

    if percent > t.tcp_mem_ram_high_percent:
        target = total // 4 // page  # 25% of RAM
        return _finding(
            "memory.ram_share",
            Severity.WARNING,
            f"TCP may use {percent}% of RAM (> {t.tcp_mem_ram_high_percent}%), "
            "starving other consumers; 10-25% is typical",
            current,
            [
                Remediation(
                    TCP_MEM, scale_tcp_mem(tcp_mem, target), "cap tcp_mem[high] at 25% of RAM"
                )
            ],
        )
    if percent < t.tcp_mem_ram_low_percent:
        return _finding(
            "memory.ram_share",
            Severity.INFO,
            f"TCP is limited to {percent}% of RAM (< {t.tcp_mem_ram_low_percent}%); "
            "may be too restrictive",
            current,
        )
    return _finding(
        "memory.ram_share", Severity.PASS, f"TCP may use {percent}% of RAM", current
    )


def check_core_vs_global(snap: Snapshot, t: Thresholds) -> Finding:
    rmem_max = snap.parameters.scalar(RMEM_MAX)
    high_bytes = snap.parameters.triple(TCP_MEM).high * _page_size(snap, t)
    current = {"rmem_max": rmem_max, "tcp_mem.high_bytes": high_bytes}
    if rmem_max > high_bytes:
        return _finding(
            "ceiling.global",
            Severity.INFO,
            f"A single socket (rmem_max {rmem_max}) may exceed the global TCP limit "
            f"({high_bytes} bytes); fine for few connections, not for many",
            current,
        )
    return _finding(
        "ceiling.global", Severity.PASS, "Single-socket limit fits within global TCP memory", current
    )


def check_timestamps(snap: Snapshot, t: Thresholds) -> Finding:
    flag = snap.parameters.scalar(TCP_TIMESTAMPS)
    current = {"tcp_timestamps": flag}
    if flag != 1:
        return _finding(
            "timestamps.enabled",
            Severity.INFO,
            "TCP timestamps disabled: auto-tuning falls back to coarser RTT estimation",
            current,
            [Remediation(TCP_TIMESTAMPS, 1, "enable unless latency overhead matters")],
        )
    return _finding(
        "timestamps.enabled", Severity.PASS, "TCP timestamps enabled (+12 bytes/packet)", current
    )


def recommended_somaxconn(memory_total: int, t: Thresholds) -> int:
    return _clamp(512 * (memory_total // GIB), 1024, t.somaxconn_ceiling)


def _queue_finding(
    check_id: str, name: str, value: int, recommended: int, basis: str
) -> Finding:
    current = {short_name(name): value, "recommended": recommended}
    if value < recommended:
        return _finding(
            check_id,
            Severity.WARNING,
            f"{short_name(name)} ({value}) is below {recommended} recommended for {basis}; "
            "connections or packets may drop under bursts",
            current,
            [Remediation(name, recommended)],
        )
    return _finding(check_id, Severity.PASS, f"{short_name(name)} is adequate", current)


def check_somaxconn(snap: Snapshot, t: Thresholds) -> Finding:
    total = snap.telemetry.value(MEMORY_TOTAL)
    return _queue_finding(
        "queues.somaxconn",
        SOMAXCONN,
        snap.parameters.scalar(SOMAXCONN),
        recommended_somaxconn(total, t),
        f"{total // GIB} GiB RAM",
    )


def check_syn_backlog(snap: Snapshot, t: Thresholds) -> Finding:
    total = snap.telemetry.value(MEMORY_TOTAL)
    return _queue_finding(
        "queues.syn_backlog",
        TCP_MAX_SYN_BACKLOG,
        snap.parameters.scalar(TCP_MAX_SYN_BACKLOG),
        2 * recommended_somaxconn(total, t),
        "2x the recommended listen backlog",
    )


def check_netdev_backlog(snap: Snapshot, t: Thresholds) -> Finding:
    cpus = snap.telemetry.value(CPU_COUNT)
    return _queue_finding(
        "queues.netdev_backlog",
        NETDEV_MAX_BACKLOG,
        snap.parameters.scalar(NETDEV_MAX_BACKLOG),
        _clamp(1000 * cpus, 1000, t.netdev_backlog_ceiling),
        f"{cpus} CPUs",
    )


def check_saturation(snap: Snapshot, t: Thresholds) -> Finding:
    conns = snap.telemetry.connections or ()
    if not conns:
        return _finding(
            "sockets.saturation",
            Severity.INFO,
            "No established connections sampled",
            {"sampled": 0},
        )
    saturated = [c for c in conns if c.receive_utilization > t.saturation_percent]
    average = sum(c.receive_utilization for c in conns) / len(conns)
    current = {
        "sampled": len(conns),
        "saturated": len(saturated),
        "average_utilization": round(average, 1),
    }
    if saturated:
        worst = max(saturated, key=lambda c: c.receive_utilization)
        return _finding(
            "sockets.saturation",
            Severity.WARNING,
            f"{len(saturated)} of {len(conns)} sampled connections hold more than "
            f"{t.saturation_percent}% of their receive buffer (worst: {worst.local} -> "
            f"{worst.peer} at {worst.receive_utilization:.0f}%)",
            current,
        )
    return _finding(
        "sockets.saturation",
        Severity.PASS,
        f"No sampled connection above {t.saturation_percent}% receive buffer use",
        current,
    )


def check_drops(snap: Snapshot, t: Thresholds) -> Finding:
    ifaces = snap.telemetry.interfaces or ()
    if not ifaces:
        return _finding("interfaces.drops", Severity.INFO, "No non-loopback interfaces found")
    dropping = [i for i in ifaces if i.rx_dropped or i.tx_dropped]
    current: dict[str, Any] = {}
    for i in ifaces:
        current[f"{i.name}.rx_dropped"] = i.rx_dropped
        current[f"{i.name}.tx_dropped"] = i.tx_dropped
    if dropping:
        names = ", ".join(f"{i.name} (rx {i.rx_dropped}, tx {i.tx_dropped})" for i in dropping)
        return _finding(
            "interfaces.drops",
            Severity.WARNING,
            f"Packet drops since boot on {names}; counters are cumulative, compare two "
            "runs before acting. Check netdev_max_backlog and NIC ring sizes",
            current,
        )
    return _finding("interfaces.drops", Severity.PASS, "No interface drops since boot", current)


def check_mtu(snap: Snapshot, t: Thresholds) -> Finding:
    ifaces = snap.telemetry.interfaces or ()
    if not ifaces:
        return _finding("interfaces.mtu", Severity.INFO, "No non-loopback interfaces found")
    current = {i.name: i.mtu for i in ifaces}
    unusual = [i for i in ifaces if i.mtu not in STANDARD_MTUS]
    if unusual:
        names = ", ".join(f"{i.name}={i.mtu}" for i in unusual)
        return _finding(
            "interfaces.mtu",
            Severity.INFO,
            f"Non-standard MTU ({names}); Ethernet uses 1500 or 9000 (jumbo). "
            "Check path consistency",
            current,
        )
    return _finding("interfaces.mtu", Severity.PASS, "All interface MTUs are standard", current)


def check_rtt_fit(snap: Snapshot, t: Thresholds) -> Finding:
    rmem = snap.parameters.triple(TCP_RMEM)
    current = {"tcp_rmem.max": rmem.maximum}
    if rmem.maximum < t.small_buffer_bytes:
        return _finding(
            "buffers.rtt_fit",
            Severity.INFO,
            f"tcp_rmem[max] ({rmem.maximum}) is under {t.small_buffer_bytes}: fine for "
            "datacenter RTTs, limits throughput on 50-200ms Internet paths",
            current,
        )
    if rmem.maximum > t.large_buffer_bytes:
        return _finding(
            "buffers.rtt_fit",
            Severity.INFO,
            f"tcp_rmem[max] ({rmem.maximum}) is over {t.large_buffer_bytes}: suited to "
            "high-RTT bulk transfer, excessive for 1-5ms datacenter paths",
            current,
        )
    return _finding(
        "buffers.rtt_fit", Severity.PASS, "tcp_rmem[max] suits mixed RTTs", current
    )


DEFAULT_RULES: tuple[Rule, ...] = (
    Rule("integrity.parameters", "Parameter integrity", check_integrity),
    _triple_order_rule(TCP_RMEM),
    _triple_order_rule(TCP_WMEM),
    _triple_order_rule(TCP_MEM),
    _ceiling_rule(TCP_RMEM, RMEM_MAX, "rmem"),
    _ceiling_rule(TCP_WMEM, WMEM_MAX, "wmem"),
    _feature_gate_rule(TCP_RMEM),
    _feature_gate_rule(TCP_WMEM),
    Rule("autotuning.enabled", "Auto-tuning", check_autotuning, parameters=(TCP_MODERATE_RCVBUF,)),
    _min_floor_rule(TCP_RMEM),
    _min_floor_rule(TCP_WMEM),
    _default_floor_rule(TCP_RMEM),
    _default_floor_rule(TCP_WMEM),
    Rule(
        "capacity.connections",
        "Connection capacity",
        check_capacity,
        parameters=(TCP_MEM, TCP_RMEM, TCP_WMEM),
    ),
    Rule(
        "memory.pressure",
        "Memory pressure",
        check_pressure,
        parameters=(TCP_MEM,),
        metrics=(TCP_MEMORY_PAGES,),
    ),
    _default_mismatch_rule(RMEM_DEFAULT, TCP_RMEM, "rmem"),
    _default_mismatch_rule(WMEM_DEFAULT, TCP_WMEM, "wmem"),
    Rule(
        "memory.ram_share",
        "TCP memory share of RAM",
        check_ram_share,
        parameters=(TCP_MEM,),
        metrics=(MEMORY_TOTAL,),
    ),
    Rule(
        "ceiling.global",
        "Core max vs global TCP memory",
        check_core_vs_global,
        parameters=(RMEM_MAX, TCP_MEM),
    ),
    Rule("timestamps.enabled", "TCP timestamps", check_timestamps, parameters=(TCP_TIMESTAMPS,)),
    Rule(
        "queues.somaxconn",
        "Listen backlog",
        check_somaxconn,
        parameters=(SOMAXCONN,),
        metrics=(MEMORY_TOTAL,),
    ),
    Rule(
        "queues.syn_backlog",
        "SYN backlog",
        check_syn_backlog,
        parameters=(TCP_MAX_SYN_BACKLOG,),
        metrics=(MEMORY_TOTAL,),
    ),
    Rule(
        "queues.netdev_backlog",
        "Netdev backlog",
        check_netdev_backlog,
        parameters=(NETDEV_MAX_BACKLOG,),
        metrics=(CPU_COUNT,),
    ),
    Rule("sockets.saturation", "Socket buffer saturation", check_saturation, needs_connections=True),
    Rule("interfaces.drops", "Interface drops", check_drops, needs_interfaces=True),
    Rule("interfaces.mtu", "Interface MTU", check_mtu, needs_interfaces=True),
    Rule("buffers.rtt_fit", "Buffer size vs RTT", check_rtt_fit, parameters=(TCP_RMEM,)),
)


def _missing_inputs(rule: Rule, snap: Snapshot) -> list[str]:
    missing = []
    for name in rule.parameters:
        reading = snap.parameters.reading(name)
        if not reading.ok:
            missing.append(f"{name} {reading.status.value}")
    for metric in rule.metrics:
        reading = snap.telemetry.reading(metric)
        if not reading.ok:
            missing.append(f"{metric} {reading.status.value}")
    if rule.needs_connections and snap.telemetry.connections is None:
        missing.append("connection listing unavailable")
    if rule.needs_interfaces and snap.telemetry.interfaces is None:
        missing.append("interface listing unavailable")
    return missing


def evaluate_rule(rule: Rule, snap: Snapshot, thresholds: Thresholds) -> Finding:
    """Run one rule, degrading to an Info finding instead of raising."""
    missing = _missing_inputs(rule, snap)
    if missing:
        return _finding(
            rule.check_id,
            Severity.INFO,
            f"check skipped: missing input ({'; '.join(missing)})",
            {"missing": missing},
        )
    try:
        return rule.check(snap, thresholds)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Rule %s failed", rule.check_id)
        return _finding(
            rule.check_id,
            Severity.INFO,
            f"check skipped: rule error ({type(exc).__name__}: {exc})",
        )


def evaluate(
    snap: Snapshot,
    thresholds: Thresholds | None = None,
    rules: Sequence[Rule] = DEFAULT_RULES,
) -> list[Finding]:
    """Run every rule in order. Always returns one finding per rule."""
    t = thresholds or Thresholds()
    findings = [evaluate_rule(rule, snap, t) for rule in rules]
    counts = Counter(f.severity for f in findings)
    logger.debug(
        "Evaluated %d rules: %s",
        len(findings),
        ", ".join(f"{s.value}={counts[s]}" for s in Severity),
    )
    return findings


def worst_severity(findings: Sequence[Finding]) -> Severity:
    """Highest severity present, PASS for an empty list."""
    return max((f.severity for f in findings), key=lambda s: s.rank, default=Severity.PASS)
