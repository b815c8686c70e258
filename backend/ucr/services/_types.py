"""Typed dicts for service-layer return values.

Keeps route-facing methods explicit about their shape instead of returning bare dicts.
"""

import sys

if sys.version_info >= (3, 12):
    from typing import TypedDict
else:
    from typing_extensions import TypedDict

from ucr.services._helpers import JsonDict

# -- Universal store ---------------------------------------------------------


class TransactionDict(TypedDict):
    id: str
    organization_id: str
    transaction_type: str
    smart_code: str
    reference_number: str
    transaction_date: str
    total_amount: float
    metadata: JsonDict
    created_by: str
    created_at: str


# -- Versioning --------------------------------------------------------------


class VersionHistoryEntry(TypedDict):
    rule_id: str
    smart_code: str
    version: int
    minor_version: int
    status: str
    created_at: str
    deployed: bool
    last_deployed_at: str | None
    restored_at: str | None


# -- Health ------------------------------------------------------------------


class DbInfoDict(TypedDict, total=False):
    backend: str
    location: str | None
    tables_missing: list[str]
    schema_initialized: bool
    active_families: int
    scheduled_deployments: int
    pid: int
    error: str
