"""Tests for the consistency evaluator."""

import pytest

from conftest import GIB, FakeStore, FakeTelemetry, conn, make_snapshot
from netbuf.config import Thresholds
from netbuf.core.params import read_parameters
from netbuf.core.rules import (
    DEFAULT_RULES,
    Rule,
    classify_pressure,
    connection_capacity,
    evaluate,
    recommended_somaxconn,
    worst_severity,
)
from netbuf.core.telemetry import read_telemetry
from netbuf.models.enums import PressureState, Severity
from netbuf.models.findings import Finding, Remediation
from netbuf.models.runtime import InterfaceStats, Snapshot, Triple


def by_id(findings, check_id) -> Finding:
    matches = [f for f in findings if f.check_id == check_id]
    assert len(matches) == 1, check_id
    return matches[0]


class TestEvaluateShape:
    def test_one_finding_per_rule(self):
        findings = evaluate(make_snapshot())
        assert [f.check_id for f in findings] == [r.check_id for r in DEFAULT_RULES]

    def test_check_ids_unique(self):
        ids = [r.check_id for r in DEFAULT_RULES]
        assert len(ids) == len(set(ids))

    def test_healthy_system_has_no_problems(self):
        findings = evaluate(make_snapshot())
        assert worst_severity(findings) == Severity.INFO

    def test_idempotent(self):
        snap = make_snapshot(params={"net.core.rmem_max": "212992"})
        assert evaluate(snap) == evaluate(snap)

    def test_empty_snapshot_still_full_report(self):
        snap = Snapshot(
            parameters=read_parameters(FakeStore({})),
            telemetry=read_telemetry(FakeTelemetry(values={}, connections=None, interfaces=None)),
        )
        findings = evaluate(snap)
        assert len(findings) == len(DEFAULT_RULES)
        assert all(f.severity == Severity.INFO for f in findings)


class TestCeiling:
    def test_auto_tune_max_above_core_max(self):
        snap = make_snapshot(params={"net.core.rmem_max": "212992"})
        f = by_id(evaluate(snap), "ceiling.rmem")
        assert f.severity == Severity.CRITICAL
        assert Remediation("net.core.rmem_max", 16777216, f.remediation[0].note) in f.remediation
        lowered = f.remediation[1]
        assert lowered.parameter == "net.ipv4.tcp_rmem"
        assert lowered.value == Triple(4096, 212992, 212992)
        assert dict(f.current)["rmem_max"] == 212992

    def test_equal_is_consistent(self):
        f = by_id(evaluate(make_snapshot()), "ceiling.wmem")
        assert f.severity == Severity.PASS

    def test_wmem_independent(self):
        snap = make_snapshot(params={"net.core.wmem_max": "65536"})
        findings = evaluate(snap)
        assert by_id(findings, "ceiling.wmem").severity == Severity.CRITICAL
        assert by_id(findings, "ceiling.rmem").severity == Severity.PASS


class TestFeatureGate:
    def test_scaling_disabled_with_large_buffers(self):
        snap = make_snapshot(params={
            "net.ipv4.tcp_rmem": "4096 87380 8388608",
            "net.ipv4.tcp_window_scaling": "0",
        })
        findings = evaluate(snap)
        gate = by_id(findings, "feature_gate.tcp_rmem")
        assert gate.severity == Severity.CRITICAL
        assert gate.remediation[0].parameter == "net.ipv4.tcp_window_scaling"
        assert gate.remediation[0].value == 1
        assert by_id(findings, "ceiling.rmem").severity == Severity.PASS

    def test_small_buffers_do_not_need_scaling(self):
        snap = make_snapshot(params={
            "net.ipv4.tcp_rmem": "4096 8192 65536",
            "net.ipv4.tcp_window_scaling": "0",
        })
        assert by_id(evaluate(snap), "feature_gate.tcp_rmem").severity == Severity.PASS

    def test_threshold_is_configurable(self):
        snap = make_snapshot(params={"net.ipv4.tcp_window_scaling": "0"})
        t = Thresholds(scaling_threshold=32 * 1024 * 1024)
        assert by_id(evaluate(snap, t), "feature_gate.tcp_rmem").severity == Severity.PASS


class TestAutotuningAndFloors:
    def test_autotuning_disabled(self):
        snap = make_snapshot(params={"net.ipv4.tcp_moderate_rcvbuf": "0"})
        f = by_id(evaluate(snap), "autotuning.enabled")
        assert f.severity == Severity.WARNING
        assert f.remediation[0].value == 1

    def test_min_below_floor(self):
        snap = make_snapshot(params={"net.ipv4.tcp_rmem": "1024 262144 16777216"})
        f = by_id(evaluate(snap), "min_floor.tcp_rmem")
        assert f.severity == Severity.WARNING
        assert f.remediation[0].value == Triple(4096, 262144, 16777216)

    def test_default_below_message_size(self):
        snap = make_snapshot(params={"net.ipv4.tcp_wmem": "4096 1024 16777216"})
        findings = evaluate(snap)
        f = by_id(findings, "default_floor.tcp_wmem")
        assert f.severity == Severity.CRITICAL
        assert f.remediation[0].value == Triple(4096, 4096, 16777216)
        assert by_id(findings, "triple_order.tcp_wmem").severity == Severity.CRITICAL


class TestTripleOrder:
    def test_inverted_tcp_mem(self):
        snap = make_snapshot(params={"net.ipv4.tcp_mem": "300 200 100"})
        f = by_id(evaluate(snap), "triple_order.tcp_mem")
        assert f.severity == Severity.CRITICAL
        assert f.remediation[0].value == Triple(100, 200, 300)


class TestCapacity:
    def test_connection_capacity(self):
        assert connection_capacity(690, 128) == 5
        assert connection_capacity(690, 0) == 0

    def test_below_floor(self):
        snap = make_snapshot(
            params={
                "net.ipv4.tcp_mem": "1 2 690",
                "net.ipv4.tcp_rmem": "4 8 64",
                "net.ipv4.tcp_wmem": "4 8 64",
            },
            metrics={"system.page_size": 1},
        )
        f = by_id(evaluate(snap), "capacity.connections")
        assert f.severity == Severity.WARNING
        assert dict(f.current)["connections_at_max"] == 5
        assert f.remediation[0].value == Triple(1, 2, 12800)

    def test_reduced_buffers_restore_the_floor(self):
        # 2 GiB of TCP memory, 32 MiB per connection at max: 64 connections
        snap = make_snapshot(params={"net.ipv4.tcp_mem": "131072 262144 524288"})
        f = by_id(evaluate(snap), "capacity.connections")
        assert f.severity == Severity.WARNING
        fixes = {r.parameter: r.value for r in f.remediation}
        rmem, wmem = fixes["net.ipv4.tcp_rmem"], fixes["net.ipv4.tcp_wmem"]
        assert rmem != snap.parameters.triple("net.ipv4.tcp_rmem")
        assert rmem.is_ordered and wmem.is_ordered
        global_bytes = dict(f.current)["tcp_mem.high_bytes"]
        assert connection_capacity(global_bytes, rmem.maximum + wmem.maximum) >= 100

    def test_page_size_falls_back_to_threshold(self):
        snap = make_snapshot(params={"net.ipv4.tcp_mem": "1 2 690"})
        snap_no_page = Snapshot(
            parameters=snap.parameters,
            telemetry=read_telemetry(FakeTelemetry(values={})),
        )
        f = by_id(evaluate(snap_no_page), "capacity.connections")
        # 690 pages * 4096 / 32 MiB
        assert dict(f.current)["connections_at_max"] == 0
        assert f.severity == Severity.WARNING

    def test_healthy_capacity(self):
        f = by_id(evaluate(make_snapshot()), "capacity.connections")
        assert f.severity == Severity.PASS
        assert dict(f.current)["connections_at_max"] == 1024


class TestPressure:
    TCP_MEM = Triple(100, 200, 300)

    @pytest.mark.parametrize(
        "used,state",
        [
            (0, PressureState.NORMAL),
            (100, PressureState.NORMAL),
            (101, PressureState.APPROACHING_PRESSURE),
            (200, PressureState.APPROACHING_PRESSURE),
            (201, PressureState.UNDER_PRESSURE),
            (300, PressureState.UNDER_PRESSURE),
            (301, PressureState.CRITICAL),
        ],
    )
    def test_boundaries(self, used, state):
        assert classify_pressure(used, self.TCP_MEM) == state

    def test_severity_monotonic(self):
        ranks = []
        for used in range(0, 400, 10):
            snap = make_snapshot(
                params={"net.ipv4.tcp_mem": "100 200 300"},
                metrics={"tcp.memory_pages": used},
            )
            ranks.append(by_id(evaluate(snap), "memory.pressure").severity.rank)
        assert ranks == sorted(ranks)
        assert ranks[0] == Severity.PASS.rank
        assert ranks[-1] == Severity.CRITICAL.rank

    def test_includes_socket_counts(self):
        snap = make_snapshot(metrics={"tcp.sockets_orphaned": 4})
        current = dict(by_id(evaluate(snap), "memory.pressure").current)
        assert current["orphaned"] == 4
        assert current["sockets_inuse"] == 10


class TestDefaultMismatch:
    def test_large_ratio_is_info(self):
        snap = make_snapshot(params={"net.core.rmem_default": "16777216"})
        f = by_id(evaluate(snap), "default_mismatch.rmem")
        assert f.severity == Severity.INFO

    def test_small_ratio_passes(self):
        snap = make_snapshot(params={"net.core.wmem_default": "524288"})
        assert by_id(evaluate(snap), "default_mismatch.wmem").severity == Severity.PASS

    def test_zero_default(self):
        snap = make_snapshot(params={"net.core.rmem_default": "0"})
        assert by_id(evaluate(snap), "default_mismatch.rmem").severity == Severity.INFO


class TestDegradation:
    def test_three_unavailable(self):
        missing = ("net.core.rmem_max", "net.ipv4.tcp_mem", "net.ipv4.tcp_window_scaling")
        findings = evaluate(make_snapshot(drop=missing))
        assert len(findings) == len(DEFAULT_RULES)

        dependent = {
            r.check_id for r in DEFAULT_RULES if set(r.parameters) & set(missing)
        }
        assert "ceiling.rmem" in dependent
        assert "feature_gate.tcp_wmem" in dependent
        for f in findings:
            if f.check_id in dependent:
                assert f.severity == Severity.INFO
                assert f.skipped
                assert "check skipped" in f.message
            elif f.check_id != "integrity.parameters":
                assert not f.skipped

        integrity = by_id(findings, "integrity.parameters")
        assert integrity.severity == Severity.INFO
        assert set(dict(integrity.current)["unavailable"]) == set(missing)

    def test_malformed_reported_separately(self):
        snap = make_snapshot(params={"net.ipv4.tcp_rmem": "4096 87380"})
        findings = evaluate(snap)
        integrity = by_id(findings, "integrity.parameters")
        assert integrity.severity == Severity.WARNING
        assert "4096 87380" in integrity.message
        ceiling = by_id(findings, "ceiling.rmem")
        assert ceiling.skipped
        assert "malformed" in ceiling.message

    def test_missing_telemetry_skips_pressure(self):
        snap = make_snapshot()
        snap = Snapshot(
            parameters=snap.parameters,
            telemetry=read_telemetry(FakeTelemetry(values={})),
        )
        assert by_id(evaluate(snap), "memory.pressure").skipped

    def test_rule_exception_becomes_info(self):
        def broken(snap, t):
            raise ZeroDivisionError("boom")

        findings = evaluate(make_snapshot(), rules=[Rule("custom.broken", "Broken", broken)])
        assert len(findings) == 1
        assert findings[0].severity == Severity.INFO
        assert "ZeroDivisionError" in findings[0].message


class TestSupplementaryChecks:
    def test_ram_share_too_high(self):
        snap = make_snapshot(metrics={"system.memory_total": 16 * GIB})
        f = by_id(evaluate(snap), "memory.ram_share")
        assert f.severity == Severity.WARNING
        assert f.remediation[0].value.high == 16 * GIB // 4 // 4096

    def test_ram_share_too_low(self):
        snap = make_snapshot(
            params={"net.ipv4.tcp_mem": "1000 2000 3000"},
            metrics={"system.memory_total": 128 * GIB},
        )
        assert by_id(evaluate(snap), "memory.ram_share").severity == Severity.INFO

    def test_single_socket_above_global(self):
        snap = make_snapshot(params={"net.ipv4.tcp_mem": "1000 2000 3000"})
        assert by_id(evaluate(snap), "ceiling.global").severity == Severity.INFO

    def test_timestamps_disabled(self):
        snap = make_snapshot(params={"net.ipv4.tcp_timestamps": "0"})
        f = by_id(evaluate(snap), "timestamps.enabled")
        assert f.severity == Severity.INFO
        assert f.remediation[0].value == 1

    def test_somaxconn_recommendation_clamped(self):
        t = Thresholds()
        assert recommended_somaxconn(1 * GIB, t) == 1024
        assert recommended_somaxconn(4 * GIB, t) == 2048
        assert recommended_somaxconn(128 * GIB, t) == 4096

    def test_low_queues(self):
        snap = make_snapshot(params={
            "net.core.somaxconn": "128",
            "net.ipv4.tcp_max_syn_backlog": "256",
            "net.core.netdev_max_backlog": "1000",
        })
        findings = evaluate(snap)
        assert by_id(findings, "queues.somaxconn").remediation[0].value == 4096
        assert by_id(findings, "queues.syn_backlog").remediation[0].value == 8192
        netdev = by_id(findings, "queues.netdev_backlog")
        assert netdev.severity == Severity.WARNING
        assert netdev.remediation[0].value == 8000

    def test_saturated_connection(self):
        snap = make_snapshot(connections=(conn(r=120000, rb=131072), conn(peer="10.0.0.3:1")))
        f = by_id(evaluate(snap), "sockets.saturation")
        assert f.severity == Severity.WARNING
        assert dict(f.current)["saturated"] == 1

    def test_no_connections_sampled(self):
        f = by_id(evaluate(make_snapshot(connections=())), "sockets.saturation")
        assert f.severity == Severity.INFO
        assert not f.skipped

    def test_connections_unavailable(self):
        f = by_id(evaluate(make_snapshot(connections=None)), "sockets.saturation")
        assert f.skipped

    def test_interface_drops(self):
        snap = make_snapshot(interfaces=[InterfaceStats("eth0", 1500, rx_dropped=5)])
        f = by_id(evaluate(snap), "interfaces.drops")
        assert f.severity == Severity.WARNING
        assert "cumulative" in f.message

    def test_unusual_mtu(self):
        snap = make_snapshot(interfaces=[InterfaceStats("eth0", 1400)])
        assert by_id(evaluate(snap), "interfaces.mtu").severity == Severity.INFO

    def test_rtt_fit(self):
        small = make_snapshot(params={"net.ipv4.tcp_rmem": "4096 65536 131072"})
        mid = make_snapshot(params={"net.ipv4.tcp_rmem": "4096 262144 1048576"})
        assert by_id(evaluate(small), "buffers.rtt_fit").severity == Severity.INFO
        assert by_id(evaluate(mid), "buffers.rtt_fit").severity == Severity.PASS


class TestWorstSeverity:
    def test_empty(self):
        assert worst_severity([]) == Severity.PASS

    def test_picks_highest(self):
        findings = [
            Finding("a", Severity.INFO, ""),
            Finding("b", Severity.CRITICAL, ""),
            Finding("c", Severity.WARNING, ""),
        ]
        assert worst_severity(findings) == Severity.CRITICAL


class TestFindingsAreImmutable:
    def test_every_finding_hashes(self):
        snap = make_snapshot(
            drop=("net.core.rmem_max",),
            interfaces=[InterfaceStats("eth0", 1500, rx_dropped=5)],
        )
        for f in evaluate(snap):
            hash(f)

    def test_list_details_become_tuples(self):
        f = by_id(evaluate(make_snapshot(drop=("net.core.rmem_max",))), "integrity.parameters")
        assert dict(f.current)["unavailable"] == ("net.core.rmem_max",)
        assert f.to_dict()["current"]["unavailable"] == ("net.core.rmem_max",)

    def test_drop_counters_are_flat(self):
        snap = make_snapshot(interfaces=[InterfaceStats("eth0", 1500, rx_dropped=5)])
        current = dict(by_id(evaluate(snap), "interfaces.drops").current)
        assert current == {"eth0.rx_dropped": 5, "eth0.tx_dropped": 0}
