"""Shared exception hierarchy for UCR services."""


class UCRError(Exception):
    """Base exception for rule lifecycle errors."""


# ── Validation ────────────────────────────────────────────────────────────────


class ValidationError(UCRError):
    """Input or rule content is not acceptable."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors: list[str] = list(errors or [])


class ValidationFailed(ValidationError):
    """Rule validation produced errors."""


class ChecklistIncomplete(ValidationError):
    """Deployment checklist has unchecked items."""


# ── Conflicts ─────────────────────────────────────────────────────────────────


class ConflictError(UCRError):
    """Operation collides with existing state."""


class DuplicateSmartCode(ConflictError):
    """An active rule already has this smart code and version."""


class SmartCodeConflict(ConflictError):
    """An equal or newer version of the family is already active."""


# ── Lookup ────────────────────────────────────────────────────────────────────


class NotFoundError(UCRError):
    """Requested object does not exist in the tenant."""


class RuleNotFound(NotFoundError):
    """No rule matches the id or smart code."""


class TemplateNotFound(NotFoundError):
    """Unknown template id."""


class VersionNotFound(NotFoundError):
    """The requested version was never deployed."""


class DeploymentNotFound(NotFoundError):
    """Unknown deployment id."""


# ── Authorization ─────────────────────────────────────────────────────────────


class AuthorizationError(UCRError):
    """Actor lacks the role for this operation."""


class ApprovalRequired(AuthorizationError):
    """Deployment requires at least one approval."""


# ── Storage / state ───────────────────────────────────────────────────────────


class StorageError(UCRError):
    """The universal store failed; the transaction was rolled back."""


class StateError(UCRError):
    """Transition not allowed from the rule's current status."""
