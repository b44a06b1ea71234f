"""Snapshot capture orchestration."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from netbuf.config import NetbufConfig, ReaderConfig
from netbuf.core.params import ParameterStore, SysctlStore, read_parameters
from netbuf.core.telemetry import LinuxTelemetrySource, TelemetrySource, read_telemetry
from netbuf.models.runtime import ParameterSet, Snapshot, TelemetrySet

logger = logging.getLogger("netbuf.snapshot")


def capture_snapshot(
    store: ParameterStore | None = None,
    source: TelemetrySource | None = None,
    config: NetbufConfig | None = None,
) -> Snapshot:
    """Read parameters and telemetry once and freeze them into a Snapshot.

    The two reads are independent, so with ``reader.parallel`` they run on
    separate threads; both are joined before the snapshot is built.
    """
    reader = config.reader if config else ReaderConfig()
    store = store or SysctlStore(timeout=reader.timeout_seconds)
    source = source or LinuxTelemetrySource(timeout=reader.timeout_seconds)
    limit = reader.connection_sample_limit

    if reader.parallel:
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="netbuf-read") as pool:
            params_future = pool.submit(read_parameters, store)
            telemetry_future = pool.submit(read_telemetry, source, connection_limit=limit)
            parameters: ParameterSet = params_future.result()
            telemetry: TelemetrySet = telemetry_future.result()
    else:
        parameters = read_parameters(store)
        telemetry = read_telemetry(source, connection_limit=limit)

    logger.debug(
        "Captured %d parameters and %d metrics (%s connections sampled)",
        len(parameters),
        len(telemetry),
        len(telemetry.connections) if telemetry.connections is not None else "no",
    )
    return Snapshot(parameters=parameters, telemetry=telemetry)
