"""Guardrail checks: payload sanity, accounting-period state and role scope."""

from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime

from ucr.services._helpers import parse_iso
from ucr.services.payload import parse_payload
from ucr.services.schemas.results import PayloadCheckResult, ScopeCheckResult

DESCRIPTION_REQUIRED = "Rule payload must include a description"


def validate_payload(payload: Mapping[str, object] | None) -> PayloadCheckResult:
    """Payload-only check with hints; needs no store access."""
    if not payload:
        return PayloadCheckResult(ok=False, errors=["Payload is required"], hints=[])

    errors: list[str] = []
    hints: list[str] = []
    description: object = payload.get("description")
    if not isinstance(description, str) or not description.strip():
        errors.append(DESCRIPTION_REQUIRED)

    model, shape_errors = parse_payload(payload)
    errors.extend(shape_errors)
    if model is None:
        return PayloadCheckResult(ok=False, errors=errors, hints=hints)

    if model.definitions and not any(
        "VIP" in (str(v) for v in exc.when.values()) for exc in model.exceptions
    ):
        hints.append("Consider adding VIP exceptions for better customer experience")
    for idx, exc in enumerate(model.exceptions):
        if not exc.when:
            hints.append(f"Exception {idx} has an empty 'if' and always applies")
        if not exc.then:
            hints.append(f"Exception {idx} has an empty 'then' and changes nothing")
        unknown = sorted(k for k in exc.then if k not in model.definitions)
        if model.definitions and unknown:
            hints.append(f"Exception {idx} overrides undefined keys: {', '.join(unknown)}")
    for section in sorted(model.extensions):
        hints.append(f"Section '{section}' is not a known section and is kept as an extension")
    return PayloadCheckResult(ok=not errors, errors=errors, hints=hints)


def _period_start(today: date) -> datetime:
    return datetime(today.year, today.month, 1, tzinfo=UTC)


def is_period_open(on: str | date | datetime, today: date | None = None) -> bool:
    """Periods before the first day of the current month are closed."""
    current: date = today or datetime.now(UTC).date()
    return parse_iso(on) >= _period_start(current)


def check_scope(
    user_roles: Iterable[str],
    required_roles: Iterable[str] = (),
    any_of_roles: Iterable[str] = (),
) -> ScopeCheckResult:
    """All ``required_roles`` must be held; when given, at least one of ``any_of_roles`` too."""
    held: set[str] = {r.strip().lower() for r in user_roles if r}
    missing: list[str] = sorted(r for r in required_roles if r.strip().lower() not in held)
    if missing:
        return ScopeCheckResult(allowed=False, reason=f"Missing required roles: {', '.join(missing)}")
    candidates: list[str] = list(any_of_roles)
    if candidates and not held.intersection(r.strip().lower() for r in candidates):
        return ScopeCheckResult(
            allowed=False, reason=f"Requires one of roles: {', '.join(sorted(candidates))}"
        )
    return ScopeCheckResult(allowed=True)
