from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping

import jsonschema

from adaptive.infrastructure.error_handling import ValidationError

logger = logging.getLogger(__name__)

_COUNT = {"type": "number", "minimum": 0}
_MONEY = {"type": "number"}
_DATE = {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}$"}

PERFORMANCE_METRIC_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "scope": {"type": "string", "minLength": 1, "maxLength": 32},
        "ref_id": {"type": "string", "minLength": 1, "maxLength": 128},
        "window_since": _DATE,
        "window_until": _DATE,
        "impressions": _COUNT,
        "clicks": _COUNT,
        "purchases": _COUNT,
        "spend": _MONEY,
        "revenue": _MONEY,
        "ctr": {"type": "number", "minimum": 0},
        "roas": {"type": ["number", "null"]},
        "created_at": {"type": "string"},
    },
    "required": [
        "scope",
        "ref_id",
        "window_since",
        "window_until",
        "impressions",
        "clicks",
        "purchases",
        "spend",
        "revenue",
        "ctr",
        "roas",
    ],
    "additionalProperties": False,
}

_validator = jsonschema.Draft7Validator(PERFORMANCE_METRIC_SCHEMA)


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def check_record(record: Mapping[str, Any]) -> ValidationResult:
    errors = []
    for err in sorted(_validator.iter_errors(dict(record)), key=lambda e: list(e.absolute_path)):
        where = "/".join(str(p) for p in err.absolute_path) or "<record>"
        errors.append(f"Field '{where}': {err.message}")
    since, until = record.get("window_since"), record.get("window_until")
    if not errors and since > until:
        errors.append("Field 'window_since' must not be after 'window_until'")
    if not errors:
        for key in ("window_since", "window_until"):
            try:
                datetime.strptime(record[key], "%Y-%m-%d")
            except ValueError:
                errors.append(f"Field '{key}' is not a calendar date: {record[key]!r}")
    return ValidationResult(is_valid=not errors, errors=errors)


def validate_record(record: Mapping[str, Any]) -> None:
    """Raise ValidationError for a metrics row that must not reach the table."""
    result = check_record(record)
    if not result.is_valid:
        logger.warning("Rejected metrics row for %s: %s", record.get("ref_id"), "; ".join(result.errors))
        raise ValidationError(result.errors[0], value=dict(record))


__all__ = ["PERFORMANCE_METRIC_SCHEMA", "ValidationResult", "check_record", "validate_record"]
