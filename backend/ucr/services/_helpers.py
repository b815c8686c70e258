"""Shared utilities for the service layer."""

import json
import re
from collections.abc import Mapping
from datetime import UTC, date, datetime
from uuid import uuid4

# JSON TEXT columns hold an object, except the approval lists
JsonDict = dict[str, object]
Serializable = Mapping[str, object] | list[Mapping[str, object]]

_VERSION_SUFFIX = re.compile(r"\.v(\d+)$")


def new_id() -> str:
    return str(uuid4())


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds")


def today_iso() -> str:
    return datetime.now(UTC).date().isoformat()


def load_json(raw: str | None) -> JsonDict | None:
    """Deserialize a JSON TEXT column holding an object."""
    if not raw:
        return None
    result: object = json.loads(raw)
    if isinstance(result, dict):
        return dict(result)
    return None


def load_json_list(raw: str | None) -> list[JsonDict]:
    """Deserialize a JSON TEXT column holding a list of objects."""
    if not raw:
        return []
    result: object = json.loads(raw)
    if isinstance(result, list):
        return [dict(item) for item in result if isinstance(item, dict)]
    return []


def dump_json(obj: Serializable) -> str:
    return json.dumps(obj, default=str, sort_keys=True)


def parse_iso(value: str | datetime | date) -> datetime:
    """Parse an ISO date/datetime into an aware UTC datetime (naive input is UTC)."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def to_iso(value: str | datetime | date) -> str:
    """Fixed-width UTC ISO string; stored schedule bounds compare as text."""
    return parse_iso(value).isoformat(timespec="microseconds")


def smart_code_family(smart_code: str) -> str:
    """``HERA.SALON.APPT.CANCEL.v2`` -> ``HERA.SALON.APPT.CANCEL``."""
    return _VERSION_SUFFIX.sub("", smart_code)


def smart_code_version(smart_code: str, default: int = 1) -> int:
    match = _VERSION_SUFFIX.search(smart_code)
    return int(match.group(1)) if match else default


def with_version(smart_code: str, version: int) -> str:
    return f"{smart_code_family(smart_code)}.v{version}"
