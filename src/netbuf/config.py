"""Layered configuration: .netbuf/config.toml -> NETBUF_* env vars -> defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

try:
    import tomllib  # 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]


@dataclass(frozen=True, slots=True)
class ReaderConfig:
    """Parameter and telemetry read settings."""

    timeout_seconds: float = 0.3
    connection_sample_limit: int = 50
    parallel: bool = True


@dataclass(frozen=True, slots=True)
class Thresholds:
    """Canonical rule thresholds. All byte values unless noted."""

    scaling_threshold: int = 65536  # 16-bit window field ceiling
    min_buffer_floor: int = 4096
    assumed_message_size: int = 4096
    capacity_floor: int = 100  # connections at full buffer utilization
    default_mismatch_ratio: float = 4.0
    page_size: int = 4096  # fallback when telemetry has no page size
    saturation_percent: int = 80
    tcp_mem_ram_high_percent: int = 50
    tcp_mem_ram_low_percent: int = 5
    small_buffer_bytes: int = 262144
    large_buffer_bytes: int = 4194304
    somaxconn_ceiling: int = 4096
    netdev_backlog_ceiling: int = 10000


@dataclass(frozen=True, slots=True)
class BackupConfig:
    """Where apply writes pre-change exports."""

    dir_name: str = "backups"


@dataclass(frozen=True, slots=True)
class NetbufConfig:
    """Top-level configuration container."""

    project_path: Path = field(default_factory=Path.cwd)
    reader: ReaderConfig = field(default_factory=ReaderConfig)
    thresholds: Thresholds = field(default_factory=Thresholds)
    backup: BackupConfig = field(default_factory=BackupConfig)

    @property
    def netbuf_dir(self) -> Path:
        return self.project_path / ".netbuf"

    @property
    def backup_dir(self) -> Path:
        return self.netbuf_dir / self.backup.dir_name

    @classmethod
    def load(cls, project_path: Path | None = None) -> NetbufConfig:
        """Load config with layering: TOML file -> env vars -> defaults."""
        project = Path(project_path) if project_path else Path.cwd()
        toml_path = project / ".netbuf" / "config.toml"

        toml_data: dict = {}
        if toml_path.is_file():
            with open(toml_path, "rb") as f:
                toml_data = tomllib.load(f)

        reader_data = toml_data.get("reader", {})
        threshold_data = toml_data.get("thresholds", {})
        backup_data = toml_data.get("backup", {})

        # Use literal defaults (slots=True prevents class-level attribute access)
        _reader_defaults = ReaderConfig()
        _backup_defaults = BackupConfig()

        reader = ReaderConfig(
            timeout_seconds=float(
                os.environ.get(
                    "NETBUF_READ_TIMEOUT",
                    reader_data.get("timeout_seconds", _reader_defaults.timeout_seconds),
                )
            ),
            connection_sample_limit=int(
                os.environ.get(
                    "NETBUF_CONNECTION_LIMIT",
                    reader_data.get(
                        "connection_sample_limit",
                        _reader_defaults.connection_sample_limit,
                    ),
                )
            ),
            parallel=_as_bool(
                os.environ.get(
                    "NETBUF_PARALLEL_READS",
                    reader_data.get("parallel", _reader_defaults.parallel),
                )
            ),
        )

        backup = BackupConfig(
            dir_name=os.environ.get(
                "NETBUF_BACKUP_DIR",
                backup_data.get("dir_name", _backup_defaults.dir_name),
            ),
        )

        return cls(
            project_path=project,
            reader=reader,
            thresholds=_load_thresholds(threshold_data),
            backup=backup,
        )


def _load_thresholds(data: dict) -> Thresholds:
    """Every threshold field may come from TOML or NETBUF_<FIELD>."""
    defaults = Thresholds()
    values = {}
    for f in fields(Thresholds):
        raw = os.environ.get(
            f"NETBUF_{f.name.upper()}",
            data.get(f.name, getattr(defaults, f.name)),
        )
        caster = float if isinstance(getattr(defaults, f.name), float) else int
        values[f.name] = caster(raw)
    return Thresholds(**values)


def _as_bool(raw: object) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes", "on")
