"""
Append-only audit trail recorder.

Every service writes its audit event through here, inside its own transaction,
so an event is committed if and only if the transition it describes is.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from esign.models.audit import AuditEvent
from esign.models.enums import AuditEventType
from esign.models.evidence import Certificate, ConsentRecord, ReviewSession, Signature


class AuditTrail:
    """Records and lists audit events for contracts."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        contract_id: int,
        event_type: AuditEventType,
        user_id: Optional[str],
        details: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> AuditEvent:
        """
        Append an event to the pending transaction. The caller commits.

        created_at never goes backwards within one contract: if the clock reads
        earlier than the last event, the last event's time is reused and the id
        keeps the order.
        """
        created_at = now or datetime.utcnow()
        latest = self.db.query(func.max(AuditEvent.created_at)).filter(
            AuditEvent.contract_id == contract_id
        ).scalar()
        if latest is not None and latest > created_at:
            created_at = latest

        audit = AuditEvent(
            contract_id=contract_id,
            event_type=event_type,
            user_id=user_id,
            details=dict(details or {}),
            created_at=created_at
        )
        self.db.add(audit)
        self.db.flush()
        return audit

    def evidence(self, contract_id: int) -> Dict[str, Any]:
        """Everything recorded about how a contract was signed, for reporting."""
        return {
            "contract_id": contract_id,
            "consents": self.db.query(ConsentRecord).filter(
                ConsentRecord.contract_id == contract_id
            ).order_by(ConsentRecord.id.asc()).all(),
            "reviews": self.db.query(ReviewSession).filter(
                ReviewSession.contract_id == contract_id
            ).order_by(ReviewSession.id.asc()).all(),
            "signatures": self.db.query(Signature).filter(
                Signature.contract_id == contract_id
            ).order_by(Signature.signed_at.asc(), Signature.id.asc()).all(),
            "certificates": self.db.query(Certificate).filter(
                Certificate.contract_id == contract_id
            ).order_by(Certificate.issued_at.asc(), Certificate.id.asc()).all(),
            "events": self.list_events(contract_id),
            "generated_at": datetime.utcnow(),
        }

    def list_events(self, contract_id: int) -> List[AuditEvent]:
        """All events for a contract, oldest first."""
        return self.db.query(AuditEvent).filter(
            AuditEvent.contract_id == contract_id
        ).order_by(
            AuditEvent.created_at.asc(),
            AuditEvent.id.asc()
        ).all()
