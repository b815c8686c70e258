"""Tenant-scoped access to the universal entity / dynamic-field / transaction store.

Every statement built here carries ``organization_id``; callers never see an
unscoped select.
"""

import json
from collections.abc import Mapping, Sequence

import structlog
from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import (
    Base,
    CoreDynamicData,
    CoreEntities,
    UcrAuditEvents,
    UcrDeployments,
    UniversalTransactions,
)
from ucr.services._helpers import JsonDict, dump_json, load_json, new_id, now_iso, today_iso
from ucr.services._types import TransactionDict
from ucr.services.errors import ConflictError, StorageError, ValidationError

logger = structlog.get_logger(__name__)

_QUERYABLE: dict[str, type[Base]] = {
    "core_entities": CoreEntities,
    "core_dynamic_data": CoreDynamicData,
    "universal_transactions": UniversalTransactions,
    "ucr_deployments": UcrDeployments,
    "ucr_audit_events": UcrAuditEvents,
}


class UniversalStore:
    """The narrow store contract used by the rule lifecycle."""

    def __init__(self, session: Session, organization_id: str) -> None:
        if not organization_id or not organization_id.strip():
            raise ValidationError("organization_id is required")
        self.session: Session = session
        self.organization_id: str = organization_id

    # -- scoping -----------------------------------------------------------

    def scoped(self, model: type[Base]) -> Select:
        """``SELECT model WHERE organization_id = <tenant>``; the only select entry point."""
        return select(model).where(model.organization_id == self.organization_id)  # type: ignore[attr-defined]

    def flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Universal store write conflicts with a stored row: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"Universal store write failed: {exc}") from exc

    # -- entities ----------------------------------------------------------

    def create_entity(
        self,
        *,
        entity_type: str,
        entity_name: str,
        smart_code: str,
        status: str,
        metadata: Mapping[str, object] | None = None,
        entity_code: str | None = None,
        created_by: str = "system",
    ) -> CoreEntities:
        ts: str = now_iso()
        entity = CoreEntities(
            id=new_id(),
            organization_id=self.organization_id,
            entity_type=entity_type,
            entity_name=entity_name,
            entity_code=entity_code,
            smart_code=smart_code,
            status=status,
            metadata_json=dump_json(dict(metadata or {})),
            created_by=created_by,
            created_at=ts,
            updated_at=ts,
        )
        self.session.add(entity)
        self.flush()
        return entity

    def get_entity(self, entity_id: str, entity_type: str | None = None) -> CoreEntities | None:
        stmt: Select = self.scoped(CoreEntities).where(CoreEntities.id == entity_id)
        if entity_type is not None:
            stmt = stmt.where(CoreEntities.entity_type == entity_type)
        return self.session.execute(stmt).scalar_one_or_none()

    def find_entities(
        self,
        entity_type: str,
        *,
        smart_codes: Sequence[str] | None = None,
        statuses: Sequence[str] | None = None,
        smart_code_prefix: str | None = None,
    ) -> list[CoreEntities]:
        stmt: Select = self.scoped(CoreEntities).where(CoreEntities.entity_type == entity_type)
        if smart_codes:
            stmt = stmt.where(CoreEntities.smart_code.in_(list(smart_codes)))
        if statuses:
            stmt = stmt.where(CoreEntities.status.in_(list(statuses)))
        if smart_code_prefix:
            stmt = stmt.where(CoreEntities.smart_code.startswith(smart_code_prefix))
        stmt = stmt.order_by(CoreEntities.created_at, CoreEntities.id)
        return list(self.session.execute(stmt).scalars().all())

    def update_entity(
        self,
        entity_id: str,
        *,
        entity_name: str | None = None,
        smart_code: str | None = None,
        status: str | None = None,
        metadata: Mapping[str, object] | None = None,
    ) -> CoreEntities:
        entity: CoreEntities | None = self.get_entity(entity_id)
        if entity is None:
            raise StorageError(f"Entity {entity_id} not found for organization {self.organization_id}")
        if entity_name is not None:
            entity.entity_name = entity_name
        if smart_code is not None:
            entity.smart_code = smart_code
        if status is not None:
            entity.status = status
        if metadata is not None:
            entity.metadata_json = dump_json(dict(metadata))
        entity.updated_at = now_iso()
        self.flush()
        return entity

    @staticmethod
    def entity_metadata(entity: CoreEntities) -> JsonDict:
        return load_json(entity.metadata_json) or {}

    # -- dynamic fields ----------------------------------------------------

    def set_dynamic_field(self, entity_id: str, field_name: str, value: object) -> None:
        stmt: Select = self.scoped(CoreDynamicData).where(
            CoreDynamicData.entity_id == entity_id,
            CoreDynamicData.field_name == field_name,
        )
        row: CoreDynamicData | None = self.session.execute(stmt).scalar_one_or_none()
        text: str = json.dumps(value, default=str, sort_keys=True)
        if row is None:
            row = CoreDynamicData(
                id=new_id(),
                organization_id=self.organization_id,
                entity_id=entity_id,
                field_name=field_name,
                field_value_text=text,
                updated_at=now_iso(),
            )
            self.session.add(row)
        else:
            row.field_value_text = text
            row.updated_at = now_iso()
        self.flush()

    def get_dynamic_fields(self, entity_id: str) -> dict[str, object]:
        stmt: Select = self.scoped(CoreDynamicData).where(CoreDynamicData.entity_id == entity_id)
        rows: Sequence[CoreDynamicData] = self.session.execute(stmt).scalars().all()
        return {
            r.field_name: json.loads(r.field_value_text) if r.field_value_text else None
            for r in rows
        }

    # -- generic query -----------------------------------------------------

    def query(self, table: str, filters: Mapping[str, object] | None = None) -> list[dict[str, object]]:
        """Equality-filtered rows of ``table``, scoped to the tenant."""
        model: type[Base] | None = _QUERYABLE.get(table)
        if model is None:
            raise ValidationError(f"Unknown table '{table}'")
        stmt: Select = self.scoped(model)
        columns = model.__table__.columns
        for name, value in (filters or {}).items():
            if name == "organization_id":
                continue
            if name not in columns:
                raise ValidationError(f"Unknown column '{name}' on {table}")
            stmt = stmt.where(columns[name] == value)
        return [row.to_dict() for row in self.session.execute(stmt).scalars().all()]

    # -- ledger ------------------------------------------------------------

    def create_transaction(
        self,
        *,
        transaction_type: str,
        smart_code: str,
        metadata: Mapping[str, object] | None = None,
        total_amount: float = 0,
        reference_number: str | None = None,
        created_by: str = "system",
    ) -> TransactionDict:
        txn_id: str = new_id()
        ts: str = now_iso()
        row = UniversalTransactions(
            id=txn_id,
            organization_id=self.organization_id,
            transaction_type=transaction_type,
            smart_code=smart_code,
            reference_number=reference_number or txn_id,
            transaction_date=today_iso(),
            total_amount=total_amount,
            metadata_json=dump_json(dict(metadata or {})),
            created_by=created_by,
            created_at=ts,
        )
        self.session.add(row)
        self.flush()
        logger.debug(
            "Transaction recorded",
            transaction_id=txn_id,
            transaction_type=transaction_type,
            organization_id=self.organization_id,
        )
        return TransactionDict(
            id=row.id,
            organization_id=row.organization_id,
            transaction_type=row.transaction_type,
            smart_code=row.smart_code,
            reference_number=row.reference_number,
            transaction_date=row.transaction_date,
            total_amount=row.total_amount,
            metadata=load_json(row.metadata_json) or {},
            created_by=row.created_by,
            created_at=row.created_at,
        )
