"""
Signature state machine - the only code that changes contract and signer status.

This is the core enforcement mechanism: every transition goes through here,
is checked against the rules below, and writes exactly one audit event in the
same transaction.

Contract: draft → pending_signature → completed, with declined, expired and
cancelled as side exits. Signer: pending → signed | declined, once.
"""
import logging
from typing import List, Optional
from esign.models.domain import Contract, ContractSigner
from esign.models.enums import (
    AuditEventType,
    ContractStatus,
    SignerStatus,
    SigningPolicy,
)
from esign.services.base import ContractService
from esign.services.consent_ledger import ConsentLedger
from esign.services.errors import (
    IdentityMismatchError,
    IncompleteConsentError,
    IncompleteReviewError,
    InvalidStateError,
    NotFoundError,
    OutOfOrderError,
    ValidationFailure,
)
from esign.services.notifications import Notifier
from esign.services.review_tracker import ReviewTracker

logger = logging.getLogger(__name__)

SIGNABLE_STATUSES = (ContractStatus.PENDING_SIGNATURE,)
CANCELLABLE_STATUSES = (ContractStatus.DRAFT, ContractStatus.PENDING_SIGNATURE)


class SignatureStateMachine(ContractService):
    """Enforces contract and signer transition rules."""

    def __init__(self, db, now=None, locks=None, notifier: Optional[Notifier] = None):
        super().__init__(db, now=now, locks=locks)
        self.notifier = notifier or Notifier()

    @staticmethod
    def calculate_status(contract: Contract) -> ContractStatus:
        """
        Contract status implied by its signers.

        - Any declined signer means declined
        - All signers signed means completed
        - Otherwise the stored status stands
        """
        signers = contract.signers
        if any(s.status == SignerStatus.DECLINED for s in signers):
            return ContractStatus.DECLINED
        if signers and all(s.status == SignerStatus.SIGNED for s in signers):
            return ContractStatus.COMPLETED
        return contract.status

    def get_contract(self, contract_id: int) -> Contract:
        """Contract with signers, after settling any due expiry."""
        with self.transition(contract_id) as contract:
            return contract

    def send_for_signature(self, contract_id: int, actor_id: str) -> Contract:
        with self.transition(contract_id) as contract:
            self.require_status(contract, [ContractStatus.DRAFT], "send for signature")

            if not contract.signers:
                raise ValidationFailure("Contract has no signers")
            if contract.unresolved_placeholders:
                raise ValidationFailure(
                    f"Contract has unresolved placeholders: {', '.join(contract.unresolved_placeholders)}",
                    placeholders=list(contract.unresolved_placeholders)
                )

            now = self.now()
            if contract.expiration_date and now.date() > contract.expiration_date:
                raise InvalidStateError(
                    f"Contract {contract.contract_number} passed its expiration date before it was sent"
                )

            contract.status = ContractStatus.PENDING_SIGNATURE
            contract.sent_at = now
            self.audit.record(
                contract.id,
                AuditEventType.SENT,
                actor_id,
                {"signer_user_ids": [s.user_id for s in self.ordered_signers(contract)]},
                now=now
            )
            self.commit()

        self.db.refresh(contract)
        logger.info("Contract %s sent for signature", contract.contract_number)
        self.notifier.signature_requested(contract, self.ordered_signers(contract))
        return contract

    def authorize_signature(
        self,
        contract: Contract,
        user_id: str,
        signer_id: Optional[int] = None
    ) -> ContractSigner:
        """
        Check every precondition for user_id signing now and return their signer.

        Checks run in a fixed order so the same situation always yields the
        same refusal: contract state, identity, signer state, signing order,
        consent, review.
        """
        self.require_status(contract, SIGNABLE_STATUSES, "sign")
        signer = self._target_signer(contract, user_id, signer_id)

        if signer.status != SignerStatus.PENDING:
            raise InvalidStateError(
                f"This signer has already {signer.status.value}",
                signer_status=signer.status.value
            )

        waiting_on = self.blocking_signers(contract, signer)
        if waiting_on:
            raise OutOfOrderError(
                f"Waiting for earlier signer(s) to sign first: {', '.join(s.role for s in waiting_on)}",
                waiting_on=[s.role for s in waiting_on]
            )

        if not ConsentLedger(self.db, now=self.now, locks=self.locks).has_consent(contract.id, user_id):
            raise IncompleteConsentError("ESIGN consent is required before signing")

        if not ReviewTracker(self.db, now=self.now, locks=self.locks).is_review_complete(contract.id, user_id):
            raise IncompleteReviewError("The full document must be reviewed before signing")

        return signer

    def blocking_signers(self, contract: Contract, signer: ContractSigner) -> List[ContractSigner]:
        """Earlier-ordered signers who have not signed yet (always empty under parallel policy)."""
        if contract.signing_policy == SigningPolicy.PARALLEL:
            return []
        return [
            s for s in self.ordered_signers(contract)
            if s.signing_order < signer.signing_order and s.status != SignerStatus.SIGNED
        ]

    def mark_signed(self, contract: Contract, signer: ContractSigner, user_id: str, details: dict) -> bool:
        """
        Move the signer to signed and, if they were the last, the contract to completed.

        Does not commit: the caller persists this together with the signature
        and certificate. Returns True when the contract completed.
        """
        now = self.now()
        signer.status = SignerStatus.SIGNED
        signer.signed_at = now
        self.audit.record(
            contract.id,
            AuditEventType.SIGNED,
            user_id,
            dict(details, signer_id=signer.id, role=signer.role),
            now=now
        )

        if self.calculate_status(contract) != ContractStatus.COMPLETED:
            return False

        contract.status = ContractStatus.COMPLETED
        contract.completed_at = now
        self.audit.record(
            contract.id,
            AuditEventType.COMPLETED,
            user_id,
            {"signer_count": len(contract.signers)},
            now=now
        )
        return True

    def decline(
        self,
        contract_id: int,
        user_id: str,
        reason: Optional[str] = None,
        signer_id: Optional[int] = None
    ) -> Contract:
        """A pending signer refuses. The contract is declined and nobody else can sign."""
        with self.transition(contract_id) as contract:
            self.require_status(contract, SIGNABLE_STATUSES, "decline")
            signer = self._target_signer(contract, user_id, signer_id)
            if signer.status != SignerStatus.PENDING:
                raise InvalidStateError(
                    f"This signer has already {signer.status.value}",
                    signer_status=signer.status.value
                )

            now = self.now()
            signer.status = SignerStatus.DECLINED
            signer.declined_at = now
            signer.decline_reason = reason
            contract.status = self.calculate_status(contract)
            contract.declined_at = now
            self.audit.record(
                contract.id,
                AuditEventType.DECLINED,
                user_id,
                {"signer_id": signer.id, "role": signer.role, "reason": reason},
                now=now
            )
            self.commit()

        self.db.refresh(contract)
        logger.info("Contract %s declined by %s", contract.contract_number, user_id)
        return contract

    def cancel(self, contract_id: int, actor_id: str, reason: Optional[str] = None) -> Contract:
        """Administrative cancel from draft or pending_signature."""
        with self.transition(contract_id) as contract:
            self.require_status(contract, CANCELLABLE_STATUSES, "cancel")

            now = self.now()
            previous = contract.status
            contract.status = ContractStatus.CANCELLED
            contract.cancelled_at = now
            contract.cancellation_reason = reason
            self.audit.record(
                contract.id,
                AuditEventType.CANCELLED,
                actor_id,
                {"reason": reason, "previous_status": previous.value},
                now=now
            )
            self.commit()

        self.db.refresh(contract)
        logger.info("Contract %s cancelled by %s", contract.contract_number, actor_id)
        return contract

    def expire_overdue(self) -> List[Contract]:
        """
        Sweep every pending contract whose expiration date has passed.

        Each contract is expired under its own lock, the same way any other
        entry point would expire it on touch.
        """
        today = self.now().date()
        with self.storage_guard():
            candidate_ids = [
                contract_id for (contract_id,) in self.db.query(Contract.id).filter(
                    Contract.status == ContractStatus.PENDING_SIGNATURE,
                    Contract.expiration_date.isnot(None),
                    Contract.expiration_date < today
                ).all()
            ]

        expired = []
        for contract_id in candidate_ids:
            with self.transition(contract_id) as contract:
                if contract.status == ContractStatus.EXPIRED:
                    expired.append(contract)

        if expired:
            logger.info("Expiration sweep expired %d contract(s)", len(expired))
        return expired

    @staticmethod
    def _target_signer(contract: Contract, user_id: str, signer_id: Optional[int]) -> ContractSigner:
        if signer_id is None:
            return ContractService.signer_for_user(contract, user_id)

        for signer in contract.signers:
            if signer.id == signer_id:
                if signer.user_id != user_id:
                    raise IdentityMismatchError(
                        f"User {user_id} cannot act for the {signer.role} signer",
                        user_id=user_id
                    )
                return signer
        raise NotFoundError(f"Signer {signer_id} not found on contract {contract.contract_number}", signer_id=signer_id)
