"""
Signature capture and certificate issue.

submit_signature is one atomic step: the signature row, its certificate, the
signer (and maybe contract) transition and their audit events are committed
together or not at all.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional
from esign.config import settings
from esign.models.enums import AuditEventType, ContractStatus
from esign.models.evidence import Certificate, Signature
from esign.services.base import ContractService
from esign.services.consent_ledger import ConsentLedger
from esign.services.errors import NotFoundError, SigningError, StorageFailure, ValidationFailure
from esign.services.notifications import Notifier
from esign.services.numbering import HASH_ALGORITHM, content_hash, new_certificate_number
from esign.services.review_tracker import ReviewTracker
from esign.services.state_machine import SignatureStateMachine

logger = logging.getLogger(__name__)

INTENT_STATEMENT = "I intend this to be my legally binding electronic signature"


def typed_name_matches(typed_name: str, expected_name: Optional[str]) -> Optional[bool]:
    """Case-insensitive comparison; None when there is no name to compare against."""
    if not expected_name or not expected_name.strip():
        return None
    return typed_name.strip().lower() == expected_name.strip().lower()


@dataclass
class SignatureResult:
    signature: Signature
    certificate: Certificate
    contract_status: ContractStatus


class SignatureCapture(ContractService):
    """Accepts signatures and issues one certificate per signature."""

    def __init__(self, db, now=None, locks=None, notifier: Optional[Notifier] = None,
                 audit_rejections: Optional[bool] = None, certificate_prefix: Optional[str] = None):
        super().__init__(db, now=now, locks=locks)
        self.notifier = notifier or Notifier()
        self.audit_rejections = settings.audit_rejections if audit_rejections is None else audit_rejections
        self.certificate_prefix = certificate_prefix or settings.certificate_prefix
        self.state_machine = SignatureStateMachine(db, now=self.now, locks=self.locks, notifier=self.notifier)

    def submit_signature(
        self,
        contract_id: int,
        user_id: str,
        mark: str,
        typed_name: str,
        agreed_to_terms: bool,
        intends_legal_signature: bool,
        signer_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        expected_name: Optional[str] = None
    ) -> SignatureResult:
        """
        Sign a contract as user_id.

        mark is the object-storage reference of the drawn signature. expected_name
        is the signer's name as the identity service knows it; when given, the
        certificate records whether the typed name matched it. Every refusal
        leaves the contract exactly as it was.
        """
        if not mark or not str(mark).strip():
            raise ValidationFailure("A drawn signature is required")
        if not typed_name or not typed_name.strip():
            raise ValidationFailure("Type your full name to sign")
        if agreed_to_terms is not True or intends_legal_signature is not True:
            raise ValidationFailure("Both intent confirmations must be checked to sign")

        with self.transition(contract_id) as contract:
            try:
                signature, certificate, completed = self._sign(
                    contract, user_id, mark, typed_name.strip(), signer_id, ip_address, user_agent, expected_name
                )
            except SigningError as e:
                self.db.rollback()
                self._record_rejection(contract_id, user_id, e)
                raise

        self.db.refresh(signature)
        self.db.refresh(certificate)
        self.db.refresh(contract)
        logger.info(
            "Contract %s signed by %s (certificate %s)",
            contract.contract_number, user_id, certificate.certificate_number
        )
        if completed:
            logger.info("Contract %s completed", contract.contract_number)
            self.notifier.contract_completed(contract)

        return SignatureResult(signature=signature, certificate=certificate, contract_status=contract.status)

    def _sign(self, contract, user_id, mark, typed_name, signer_id, ip_address, user_agent, expected_name):
        signer = self.state_machine.authorize_signature(contract, user_id, signer_id)

        now = self.now()
        digest = content_hash(contract.content)
        signature = Signature(
            contract_id=contract.id,
            signer_id=signer.id,
            user_id=user_id,
            mark_reference=str(mark),
            typed_name=typed_name,
            agreed_to_terms=True,
            intends_legal_signature=True,
            ip_address=ip_address,
            user_agent=user_agent,
            signed_at=now
        )
        self.db.add(signature)
        self.db.flush()

        consent = ConsentLedger(self.db, now=self.now, locks=self.locks).get_consent(contract.id, user_id)
        review = ReviewTracker(self.db, now=self.now, locks=self.locks).get_review(contract.id, user_id)
        certificate = Certificate(
            contract_id=contract.id,
            signature_id=signature.id,
            certificate_number=new_certificate_number(self.certificate_prefix, now),
            content_hash=digest,
            hash_algorithm=HASH_ALGORITHM,
            contract_number=contract.contract_number,
            document_title=contract.title,
            signer_user_id=user_id,
            signer_role=signer.role,
            signer_name=typed_name,
            signer_ip_address=ip_address,
            signer_user_agent=user_agent,
            certificate_data={
                "signature_id": signature.id,
                "contract_id": contract.id,
                "content_hash": digest,
                "hash_algorithm": HASH_ALGORITHM,
                "signing_timestamp": now.isoformat(),
                "signing_order": signer.signing_order,
                "signing_policy": contract.signing_policy.value,
                "intent_statement": INTENT_STATEMENT,
                "typed_name_match": typed_name_matches(typed_name, expected_name),
                "consent_timestamp": consent.consented_at.isoformat(),
                "disclosure_version": consent.disclosure_version,
                "disclosure_hash": consent.disclosure_hash,
                "review": {
                    "started_at": review.started_at.isoformat(),
                    "completed_at": review.completed_at.isoformat() if review.completed_at else None,
                    "duration_seconds": review.duration_seconds,
                    "max_scroll_percentage": review.max_scroll_percentage,
                    "scrolled_to_bottom": review.scrolled_to_bottom,
                    "auto_completed": review.auto_completed,
                },
            },
            issued_at=now
        )
        self.db.add(certificate)
        self.db.flush()

        completed = self.state_machine.mark_signed(
            contract,
            signer,
            user_id,
            {
                "signature_id": signature.id,
                "certificate_number": certificate.certificate_number,
                "content_hash": digest,
            }
        )
        self.commit()
        return signature, certificate, completed

    def _record_rejection(self, contract_id: int, user_id: str, error: SigningError) -> None:
        """Append a signature_rejected event in its own transaction."""
        if not self.audit_rejections or isinstance(error, StorageFailure):
            return
        logger.warning("Signature by %s on contract %s refused: %s", user_id, contract_id, error.message)
        try:
            with self.storage_guard():
                self.audit.record(
                    contract_id,
                    AuditEventType.SIGNATURE_REJECTED,
                    user_id,
                    {"code": error.code, "message": error.message},
                    now=self.now()
                )
                self.db.commit()
        except SigningError as audit_error:
            logger.warning("Could not record refused signature on contract %s: %s", contract_id, audit_error.message)

    def verify_document(self, contract_id: int) -> dict:
        """
        Recompute the content hash from the stored snapshot and compare it with
        every certificate issued for the contract.
        """
        with self.transition(contract_id) as contract:
            current = content_hash(contract.content)
            certificates = self.list_certificates(contract.id)

        results = [
            {
                "certificate_number": c.certificate_number,
                "signature_id": c.signature_id,
                "stored_hash": c.content_hash,
                "hash_algorithm": c.hash_algorithm,
                "verified": c.content_hash == current,
            }
            for c in certificates
        ]
        verified = bool(results) and all(r["verified"] for r in results)
        if not results:
            message = "No signatures found for this document"
        elif verified:
            message = "Document integrity verified - no modifications detected"
        else:
            message = "WARNING: document content does not match the signed hash"
            logger.error("Integrity check failed for contract %s", contract.contract_number)

        return {"verified": verified, "message": message, "current_hash": current, "results": results}

    def list_certificates(self, contract_id: int) -> List[Certificate]:
        return self.db.query(Certificate).filter(
            Certificate.contract_id == contract_id
        ).order_by(Certificate.issued_at.asc(), Certificate.id.asc()).all()

    def get_certificate(self, contract_id: int, signature_id: int) -> Certificate:
        certificate = self.db.query(Certificate).filter(
            Certificate.contract_id == contract_id,
            Certificate.signature_id == signature_id
        ).first()
        if certificate is None:
            raise NotFoundError("Certificate not found", contract_id=contract_id, signature_id=signature_id)
        return certificate
