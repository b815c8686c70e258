"""Enumeration types for the UCR orchestrator."""

from enum import Enum


class RuleStatus(str, Enum):
    """Lifecycle state of a rule."""

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    DEPLOYING = "deploying"  # transient, never committed
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    DEPRECATED = "deprecated"
    ROLLED_BACK = "rolled_back"


class DeploymentStatus(str, Enum):
    """Status of a deployment attempt."""

    PENDING = "pending"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class ChangeType(str, Enum):
    """Version bump granularity."""

    MINOR = "minor"
    MAJOR = "major"


class AuditEventType(str, Enum):
    """Kind of lifecycle event written to the audit log."""

    CREATED = "created"
    UPDATED = "updated"
    VALIDATED = "validated"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    SCHEDULED = "scheduled"
    DEPLOYED = "deployed"
    SUPERSEDED = "superseded"
    DEPRECATED = "deprecated"
    ROLLED_BACK = "rolled_back"
    RESTORED = "restored"
    VERSION_BUMPED = "version_bumped"
    DEPLOYMENT_FAILED = "deployment_failed"


class TransactionType(str, Enum):
    """Ledger transaction types written to universal_transactions."""

    DEPLOYMENT = "ucr_deployment"
    ROLLBACK = "ucr_rollback"


class EntityType(str, Enum):
    """Entity types stored in core_entities."""

    RULE = "universal_rule"


# Checklist items that must all be explicitly true before a deploy.
CHECKLIST_ITEMS: tuple[str, ...] = ("tested", "reviewed", "approved", "documented", "backupPlan")
