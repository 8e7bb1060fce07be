"""Wire formatting for request bodies.

Dates go on the wire as `yyyy-MM-dd HH:mm:ss.fff'Z'` in UTC. Naive
datetimes are taken to already be UTC.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


def format_datetime(value: datetime) -> str:
    """Format a datetime in the backend's UTC wire format."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return f"{value:%Y-%m-%d %H:%M:%S}.{value.microsecond // 1000:03d}Z"


def to_wire_value(value: Any) -> Any:
    """Convert a value for a JSON body, recursing into lists and mappings."""
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return construct_body(value)
    if isinstance(value, Mapping):
        return {str(k): to_wire_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_wire_value(v) for v in value]
    return value


def to_form_value(value: Any) -> str | None:
    """Flatten a scalar to its multipart string form.

    Returns None for null or blank values, which callers omit.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, (Mapping, BaseModel)):
        text = json.dumps(to_wire_value(value))
    else:
        wire = to_wire_value(value)
        text = wire if isinstance(wire, str) else str(wire)
    return text if text.strip() else None


def construct_body(item: Any, exclude: set[str] | frozenset[str] | None = None) -> dict[str, Any]:
    """Build a flat wire mapping from a domain object.

    - pydantic models use their declared wire names (aliases) and, for
      `RecordModel`, drop server-assigned identity/audit fields
    - mappings are copied as-is
    - dataclasses are converted field by field

    None values are dropped. `exclude` holds extra wire names to drop.
    """
    if item is None:
        return {}

    if isinstance(item, BaseModel):
        excluded = set(getattr(item, "body_exclude", ())) | set(exclude or ())
        data = item.model_dump(by_alias=True, exclude_none=True)
        aliases = _alias_map(item)
        body = {
            k: v for k, v in data.items() if k not in excluded and aliases.get(k) not in excluded
        }
    elif isinstance(item, Mapping):
        body = {str(k): v for k, v in item.items() if v is not None and k not in (exclude or ())}
    elif is_dataclass(item) and not isinstance(item, type):
        body = {k: v for k, v in asdict(item).items() if v is not None and k not in (exclude or ())}
    else:
        raise TypeError(f"Cannot build a request body from {type(item).__name__}")

    return {k: to_wire_value(v) for k, v in body.items()}


def _alias_map(model: BaseModel) -> dict[str, str]:
    """Map wire name -> python field name for a pydantic model."""
    fields = type(model).model_fields
    return {(info.alias or name): name for name, info in fields.items()}
