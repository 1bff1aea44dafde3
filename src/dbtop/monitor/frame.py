"""Frame records and the append-only NDJSON frame log."""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from dbtop.contracts.error import IOErrorEnvelope
from dbtop.metrics.constants import FRAME_SCHEMA, FRAME_TYPE, SECTIONS, SOURCE_SYNTHETIC

logger = logging.getLogger(__name__)

CollectorState = Literal["ON", "ERR"]
SectionSource = Literal["collector", "synthetic"]


def utc_timestamp(now: datetime | None = None) -> str:
    moment = now or datetime.now(UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def degraded_sources() -> dict[str, SectionSource]:
    return {section: SOURCE_SYNTHETIC for section in SECTIONS}


class Frame(BaseModel):
    """One recorded poll cycle. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    timestamp: str = Field(default_factory=utc_timestamp)
    db_type: str
    instance_name: str
    collector_state: CollectorState
    data_sources: dict[str, SectionSource] = Field(default_factory=degraded_sources)
    metrics: dict[str, float] = Field(default_factory=dict)
    sessions: list[dict[str, Any]] = Field(default_factory=list)
    wait_events: list[dict[str, Any]] = Field(default_factory=list)
    sql_hotspots: list[dict[str, Any]] = Field(default_factory=list)
    last_error: str | None = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {"type": FRAME_TYPE, "schema": FRAME_SCHEMA}
        record.update(self.model_dump(mode="json"))
        return record

    def to_json(self) -> str:
        return json.dumps(self.to_record(), ensure_ascii=False)


class FrameLog:
    """Appends one JSON line per frame, flushing after every write."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.frames_written = 0
        self._lock = threading.Lock()
        self._handle: Any = None

    def open(self) -> FrameLog:
        with self._lock:
            if self._handle is None:
                try:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                    self._handle = self.path.open("a", encoding="utf-8")
                except OSError as exc:
                    raise IOErrorEnvelope(f"Cannot open frame log {self.path}: {exc}") from exc
                logger.info("Recording frames to %s", self.path)
        return self

    def write(self, frame: Frame) -> None:
        line = frame.to_json()
        if self._handle is None:
            self.open()
        with self._lock:
            try:
                self._handle.write(line + "\n")
                self._handle.flush()
            except OSError as exc:
                raise IOErrorEnvelope(f"Failed to append frame to {self.path}: {exc}") from exc
            self.frames_written += 1

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None

    def __enter__(self) -> FrameLog:
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = ["CollectorState", "Frame", "FrameLog", "SectionSource", "degraded_sources", "utc_timestamp"]
