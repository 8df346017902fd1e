"""
Contract audit trail model.

This model provides the immutable, append-only history of every lifecycle
transition on a contract, plus refused signing attempts.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON, Enum as SQLEnum, event
from esign.database import Base
from esign.models.enums import AuditEventType


class AuditImmutabilityError(Exception):
    """Raised when something tries to change or remove a written audit event."""


class AuditEvent(Base):
    """
    Immutable audit event for reconstructing what happened to a contract.

    Invariants:
    - Once written, never edited or deleted
    - Append-only
    - Ordered by created_at, ties broken by id (insertion sequence)
    """
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    event_type = Column(SQLEnum(AuditEventType), nullable=False, index=True)
    user_id = Column(String, nullable=True)  # Nullable for system events (expiry)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    details = Column(JSON, nullable=False, default=dict)


@event.listens_for(AuditEvent, "before_update")
def _refuse_update(mapper, connection, target):
    raise AuditImmutabilityError(f"IMMUTABILITY VIOLATION: audit event {target.id} cannot be updated")


@event.listens_for(AuditEvent, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise AuditImmutabilityError(f"IMMUTABILITY VIOLATION: audit event {target.id} cannot be deleted")
