"""SQLAlchemy ORM models for the universal store and the UCR lifecycle tables.

JSON columns are TEXT (see ``dump_json``/``load_json``) and timestamps are
ISO-8601 UTC strings so SQLite and PostgreSQL share one schema.
"""

from typing import Any
from uuid import uuid4

from sqlalchemy import (
    ForeignKey,
    Index,
    MetaData,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=convention)

    def to_dict(self) -> dict[str, Any]:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


def generate_uuid() -> str:
    return str(uuid4())


# ── Universal store ───────────────────────────────────────────────────────────


class CoreEntities(Base):
    __tablename__ = "core_entities"

    id: Mapped[str] = mapped_column(primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(nullable=False)
    entity_name: Mapped[str] = mapped_column(nullable=False)
    entity_code: Mapped[str | None] = mapped_column()
    smart_code: Mapped[str] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(nullable=False, default="draft")
    metadata_json: Mapped[str] = mapped_column(nullable=False, default="{}")
    created_by: Mapped[str] = mapped_column(nullable=False, default="system")
    created_at: Mapped[str] = mapped_column(nullable=False)
    updated_at: Mapped[str] = mapped_column(nullable=False)

    __table_args__ = (
        Index("ix_core_entities_org_type_code", "organization_id", "entity_type", "smart_code"),
    )
    dynamic_fields = relationship(
        "CoreDynamicData",
        back_populates="entity",
        cascade="all, delete-orphan",
        order_by="CoreDynamicData.field_name",
    )


class CoreDynamicData(Base):
    __tablename__ = "core_dynamic_data"

    id: Mapped[str] = mapped_column(primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(nullable=False)
    entity_id: Mapped[str] = mapped_column(ForeignKey("core_entities.id"), nullable=False)
    field_name: Mapped[str] = mapped_column(nullable=False)
    field_value_text: Mapped[str | None] = mapped_column()
    updated_at: Mapped[str] = mapped_column(nullable=False)

    __table_args__ = (UniqueConstraint("entity_id", "field_name"),)
    entity = relationship("CoreEntities", back_populates="dynamic_fields")


class UniversalTransactions(Base):
    __tablename__ = "universal_transactions"

    id: Mapped[str] = mapped_column(primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    transaction_type: Mapped[str] = mapped_column(nullable=False)
    smart_code: Mapped[str] = mapped_column(nullable=False)
    reference_number: Mapped[str] = mapped_column(nullable=False)
    transaction_date: Mapped[str] = mapped_column(nullable=False)
    total_amount: Mapped[float] = mapped_column(nullable=False, default=0)
    metadata_json: Mapped[str] = mapped_column(nullable=False, default="{}")
    created_by: Mapped[str] = mapped_column(nullable=False, default="system")
    created_at: Mapped[str] = mapped_column(nullable=False)


# ── UCR lifecycle ─────────────────────────────────────────────────────────────


class UcrDeployments(Base):
    __tablename__ = "ucr_deployments"

    id: Mapped[str] = mapped_column(primary_key=True)
    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    rule_id: Mapped[str] = mapped_column(ForeignKey("core_entities.id"), nullable=False)
    smart_code: Mapped[str] = mapped_column(nullable=False)
    scope: Mapped[str] = mapped_column(nullable=False, default="{}")
    effective_from: Mapped[str] = mapped_column(nullable=False)
    effective_to: Mapped[str | None] = mapped_column()
    approvals: Mapped[str] = mapped_column(nullable=False, default="[]")
    checklist: Mapped[str] = mapped_column(nullable=False, default="{}")
    status: Mapped[str] = mapped_column(nullable=False, default="pending")
    requires_approval: Mapped[bool] = mapped_column(nullable=False, default=True)
    transaction_id: Mapped[str | None] = mapped_column()
    error: Mapped[str | None] = mapped_column()
    created_by: Mapped[str] = mapped_column(nullable=False, default="system")
    created_at: Mapped[str] = mapped_column(nullable=False)
    completed_at: Mapped[str | None] = mapped_column()
    rolled_back_at: Mapped[str | None] = mapped_column()

    __table_args__ = (Index("ix_ucr_deployments_status_from", "status", "effective_from"),)


class UcrActiveRules(Base):
    """One row per (organization, smart-code family): the single active rule."""

    __tablename__ = "ucr_active_rules"

    organization_id: Mapped[str] = mapped_column(primary_key=True)
    smart_code_family: Mapped[str] = mapped_column(primary_key=True)
    rule_id: Mapped[str] = mapped_column(ForeignKey("core_entities.id"), nullable=False)
    deployment_id: Mapped[str | None] = mapped_column()
    lock_version: Mapped[int] = mapped_column(nullable=False, default=0)
    updated_at: Mapped[str] = mapped_column(nullable=False)


class UcrAuditEvents(Base):
    __tablename__ = "ucr_audit_events"

    id: Mapped[str] = mapped_column(primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(nullable=False)
    rule_id: Mapped[str] = mapped_column(nullable=False)
    event_type: Mapped[str] = mapped_column(nullable=False)
    actor: Mapped[str] = mapped_column(nullable=False, default="system")
    from_status: Mapped[str | None] = mapped_column()
    to_status: Mapped[str | None] = mapped_column()
    metadata_json: Mapped[str] = mapped_column(nullable=False, default="{}")
    created_at: Mapped[str] = mapped_column(nullable=False)

    __table_args__ = (Index("ix_ucr_audit_events_org_rule", "organization_id", "rule_id"),)
