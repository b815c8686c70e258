"""Shared dataclasses for UCR services."""

from ucr.services.schemas.deployments import (
    Approval,
    AuditEvent,
    DeploymentRecord,
    DeploymentRequest,
    DeploymentScope,
    TransitionEvent,
)
from ucr.services.schemas.results import (
    BumpResult,
    DiffResult,
    LineDiff,
    PayloadCheckResult,
    RollbackResult,
    ScenarioResult,
    ScheduleRunResult,
    ScopeCheckResult,
    SimulationResult,
    ValidationResult,
)
from ucr.services.schemas.rules import Rule, RuleDraft, RuleFilters, Scenario, Template

__all__ = [
    # Rule schemas
    "Rule",
    "RuleDraft",
    "RuleFilters",
    "Scenario",
    "Template",
    # Deployment schemas
    "Approval",
    "AuditEvent",
    "DeploymentRecord",
    "DeploymentRequest",
    "DeploymentScope",
    "TransitionEvent",
    # Result schemas
    "BumpResult",
    "DiffResult",
    "LineDiff",
    "PayloadCheckResult",
    "RollbackResult",
    "ScenarioResult",
    "ScheduleRunResult",
    "ScopeCheckResult",
    "SimulationResult",
    "ValidationResult",
]
