"""Typed configuration loader for dbtop."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from .contracts.error import BadInputError
from .metrics.constants import (
    DEFAULT_HISTORY_CAPACITY,
    DEFAULT_SPARKLINE_WIDTH,
)

TUI_INTERVAL_SECONDS = 6.0
MONITOR_INTERVAL_SECONDS = 1.0

DEFAULT_PORTS: dict[str, int] = {
    "oracle": 1521,
    "tibero": 8629,
    "mysql": 3306,
    "postgres": 5432,
    "sqlserver": 1433,
}


@dataclass
class ConnectionConfig:
    dbms_type: str = "oracle"
    host: str = "localhost"
    port: int | None = None
    service_name: str = ""
    user: str = ""
    password: str = field(default="", repr=False)
    call_timeout_ms: int = 3000
    connect_timeout_seconds: int = 5
    odbc_driver: str = "Tibero 7 ODBC Driver"

    def resolved_port(self) -> int:
        if self.port is not None:
            return self.port
        return DEFAULT_PORTS.get(self.dbms_type.lower(), 1521)

    def validate(self) -> None:
        if self.dbms_type.lower() not in DEFAULT_PORTS:
            options = ", ".join(DEFAULT_PORTS)
            raise BadInputError(f"connection.dbms_type must be one of: {options}")
        if self.port is not None and not 0 < self.port < 65536:
            raise BadInputError("connection.port must be within [1, 65535]")
        if self.call_timeout_ms <= 0:
            raise BadInputError("connection.call_timeout_ms must be > 0")
        if self.connect_timeout_seconds <= 0:
            raise BadInputError("connection.connect_timeout_seconds must be > 0")

    def require_target(self) -> None:
        """Ensure enough is known to open a connection."""
        missing = [
            name
            for name in ("host", "service_name", "user", "password")
            if not str(getattr(self, name) or "").strip()
        ]
        if missing:
            flags = ", ".join("--" + name.replace("_", "-") for name in missing)
            raise BadInputError(
                f"Missing connection settings: {', '.join(missing)}",
                hint=f"Pass {flags}, set them under [connection], or use DBTOP_* variables",
            )


@dataclass
class MonitorConfig:
    interval_seconds: float | None = None
    history_capacity: int = DEFAULT_HISTORY_CAPACITY
    sparkline_width: int = DEFAULT_SPARKLINE_WIDTH
    top_waits: int | None = None

    def validate(self) -> None:
        if self.interval_seconds is not None and self.interval_seconds <= 0:
            raise BadInputError("monitor.interval_seconds must be > 0")
        if self.history_capacity < 1:
            raise BadInputError("monitor.history_capacity must be >= 1")
        if self.sparkline_width < 1:
            raise BadInputError("monitor.sparkline_width must be >= 1")
        if self.top_waits is not None and self.top_waits < 1:
            raise BadInputError("monitor.top_waits must be >= 1 when set")


@dataclass
class RecordingConfig:
    record_file: str | None = None
    capture_file: str | None = None

    def validate(self) -> None:
        for name in ("record_file", "capture_file"):
            value = getattr(self, name)
            if value is not None and not str(value).strip():
                raise BadInputError(f"recording.{name} must not be empty when set")


def _section(data: Mapping[str, Any], name: str, cls: type[Any]) -> Any:
    raw = data.get(name, {})
    if not isinstance(raw, dict):
        raise BadInputError(f"[{name}] section must be a table")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise BadInputError(f"Unknown keys in [{name}]: {', '.join(unknown)}")
    try:
        return cls(**raw)
    except TypeError as exc:
        raise BadInputError(f"Invalid [{name}] section: {exc}") from exc


def _optional_int(raw: str) -> int | None:
    return None if raw.strip().lower() in {"", "none", "null"} else int(raw)


def _optional_float(raw: str) -> float | None:
    return None if raw.strip().lower() in {"", "none", "null"} else float(raw)


@dataclass
class AppConfig:
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)

    @classmethod
    def load(cls, path: Path | None, env: Mapping[str, str] | None = None) -> AppConfig:
        if path is None:
            cfg = cls()
        else:
            try:
                data = tomllib.loads(path.read_text(encoding="utf-8"))
            except FileNotFoundError as exc:
                raise BadInputError(f"Config file not found: {path}") from exc
            except tomllib.TOMLDecodeError as exc:
                raise BadInputError(f"Invalid TOML: {exc}") from exc
            cfg = cls.from_dict(data)
        cfg.apply_env_overrides(os.environ if env is None else env)
        cfg.validate()
        return cfg

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppConfig:
        return cls(
            connection=_section(data, "connection", ConnectionConfig),
            monitor=_section(data, "monitor", MonitorConfig),
            recording=_section(data, "recording", RecordingConfig),
        )

    def apply_env_overrides(self, env: Mapping[str, str]) -> None:
        mapping: dict[str, tuple[object, str, Callable[[str], Any]]] = {
            "DBTOP_DBMS_TYPE": (self.connection, "dbms_type", str),
            "DBTOP_HOST": (self.connection, "host", str),
            "DBTOP_PORT": (self.connection, "port", _optional_int),
            "DBTOP_SERVICE_NAME": (self.connection, "service_name", str),
            "DBTOP_USER": (self.connection, "user", str),
            "DBTOP_PASSWORD": (self.connection, "password", str),
            "DBTOP_CALL_TIMEOUT_MS": (self.connection, "call_timeout_ms", int),
            "DBTOP_CONNECT_TIMEOUT_SECONDS": (self.connection, "connect_timeout_seconds", int),
            "DBTOP_ODBC_DRIVER": (self.connection, "odbc_driver", str),
            "DBTOP_INTERVAL_SECONDS": (self.monitor, "interval_seconds", _optional_float),
            "DBTOP_HISTORY_CAPACITY": (self.monitor, "history_capacity", int),
            "DBTOP_SPARKLINE_WIDTH": (self.monitor, "sparkline_width", int),
            "DBTOP_TOP_WAITS": (self.monitor, "top_waits", _optional_int),
            "DBTOP_RECORD_FILE": (self.recording, "record_file", str),
            "DBTOP_CAPTURE_FILE": (self.recording, "capture_file", str),
        }
        for key, (target, attr, caster) in mapping.items():
            raw_value = env.get(key)
            if raw_value is None:
                continue
            try:
                value = caster(raw_value)
            except ValueError as exc:
                shown = "***" if attr == "password" else raw_value
                raise BadInputError(f"Invalid env override {key}={shown!r}") from exc
            setattr(target, attr, value)

    def validate(self) -> None:
        self.connection.validate()
        self.monitor.validate()
        self.recording.validate()


def load_app_config(path: str | None, env: Mapping[str, str] | None = None) -> AppConfig:
    config_path = Path(path) if path else None
    return AppConfig.load(config_path, env)


__all__ = [
    "AppConfig",
    "ConnectionConfig",
    "MONITOR_INTERVAL_SECONDS",
    "MonitorConfig",
    "RecordingConfig",
    "TUI_INTERVAL_SECONDS",
    "load_app_config",
]
