"""JSON Schema validation for recorded frame logs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

from dbtop.contracts.error import BadInputError, IOErrorEnvelope


def _default_schema_text() -> str:
    schema_resource = resources.files("dbtop.contracts") / "frame_schema.json"
    with schema_resource.open(encoding="utf-8") as stream:
        return stream.read()


def load_frame_schema(custom_schema: Path | None = None) -> dict[str, Any]:
    try:
        text = _default_schema_text() if custom_schema is None else custom_schema.read_text(
            encoding="utf-8"
        )
    except OSError as exc:
        raise IOErrorEnvelope(f"Cannot read schema {custom_schema}: {exc}") from exc
    try:
        schema = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BadInputError(f"Schema is not valid JSON: {exc}") from exc
    if not isinstance(schema, dict):
        raise BadInputError("Schema must be a JSON object")
    return schema


@dataclass
class ValidationReport:
    checked: int = 0
    invalid_lines: list[int] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.invalid_lines

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "invalid": len(self.invalid_lines),
            "invalid_lines": list(self.invalid_lines),
        }


def validate_frame_log(path: Path | str, schema_path: Path | None = None) -> ValidationReport:
    """Check every non-blank line of ``path``; undecodable JSON counts as invalid."""

    log_path = Path(path)
    validator = Draft202012Validator(load_frame_schema(schema_path))
    report = ValidationReport()
    try:
        lines = log_path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise IOErrorEnvelope(f"Cannot read frame log {log_path}: {exc}") from exc

    for idx, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        report.checked += 1
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as exc:
            report.invalid_lines.append(idx)
            report.messages.append(f"[invalid line {idx}] not JSON: {exc.msg}")
            continue
        errors = sorted(validator.iter_errors(obj), key=lambda err: list(err.path))
        if errors:
            report.invalid_lines.append(idx)
            report.messages.append(f"[invalid line {idx}]")
            for err in errors:
                report.messages.append(f"  - {err.message} @ {list(err.path)}")
    return report


__all__ = ["ValidationReport", "load_frame_schema", "validate_frame_log"]
