"""
Tests that prove the signature lifecycle invariants.

Each test verifies one transition rule or refusal of the state machine.
"""
from datetime import date

import pytest
from esign.models.audit import AuditEvent
from esign.models.domain import Contract
from esign.models.enums import AuditEventType, ContractStatus, SignerStatus, SigningPolicy
from esign.models.evidence import Certificate, Signature
from esign.services.contract_factory import ContractFactory
from esign.services.errors import (
    IdentityMismatchError,
    IncompleteConsentError,
    IncompleteReviewError,
    InvalidStateError,
    NotFoundError,
    OutOfOrderError,
    ValidationFailure,
)
from esign.services.state_machine import SignatureStateMachine
from esign.services.templates import TemplateStore
from tests.conftest import ADMIN, CONSULTANT, CREATOR


def _signer(contract, role):
    return next(s for s in contract.signers if s.role == role)


class TestSendForSignature:

    def test_draft_moves_to_pending_signature(self, db_session, clock, draft_contract):
        assert draft_contract.status == ContractStatus.DRAFT

        contract = SignatureStateMachine(db_session, now=clock).send_for_signature(draft_contract.id, CREATOR)

        assert contract.status == ContractStatus.PENDING_SIGNATURE
        assert contract.sent_at == clock()

    def test_unresolved_placeholders_block_sending(self, db_session, clock):
        template = TemplateStore(db_session).create_template(
            name="SOW",
            content="Statement of work for {{client_name}} starting {{start_week}}",
            required_signer_roles=["consultant"]
        )
        contract = ContractFactory(db_session, now=clock).create_contract(
            template_id=template.id,
            created_by_id=CREATOR,
            title="SOW",
            consultant_id=CONSULTANT,
            parameters={"client_name": "Mercy Regional"}
        )
        assert contract.unresolved_placeholders == ["start_week"]

        with pytest.raises(ValidationFailure) as exc_info:
            SignatureStateMachine(db_session, now=clock).send_for_signature(contract.id, CREATOR)

        assert "start_week" in str(exc_info.value)
        db_session.refresh(contract)
        assert contract.status == ContractStatus.DRAFT

    def test_cannot_send_twice(self, db_session, clock, sent_contract):
        with pytest.raises(InvalidStateError):
            SignatureStateMachine(db_session, now=clock).send_for_signature(sent_contract.id, CREATOR)

    def test_unknown_contract_is_not_found(self, db_session, clock):
        with pytest.raises(NotFoundError):
            SignatureStateMachine(db_session, now=clock).send_for_signature(999, CREATOR)


class TestSequentialSigning:
    """Scenario: consultant then admin, sequential policy."""

    def test_full_sequence(self, db_session, clock, sent_contract, prepare_signer, sign):
        # Admin goes first - refused
        with pytest.raises(OutOfOrderError) as exc_info:
            sign(sent_contract, ADMIN)
        assert exc_info.value.details["waiting_on"] == ["consultant"]

        # Consultant signs
        prepare_signer(sent_contract, CONSULTANT)
        result = sign(sent_contract, CONSULTANT)
        db_session.refresh(sent_contract)

        assert result.contract_status == ContractStatus.PENDING_SIGNATURE
        assert _signer(sent_contract, "consultant").status == SignerStatus.SIGNED
        assert sent_contract.status == ContractStatus.PENDING_SIGNATURE

        # Admin signs last - contract completes
        prepare_signer(sent_contract, ADMIN)
        result = sign(sent_contract, ADMIN)
        db_session.refresh(sent_contract)

        assert result.contract_status == ContractStatus.COMPLETED
        assert sent_contract.status == ContractStatus.COMPLETED
        assert sent_contract.completed_at is not None

        completed_events = db_session.query(AuditEvent).filter(
            AuditEvent.contract_id == sent_contract.id,
            AuditEvent.event_type == AuditEventType.COMPLETED
        ).count()
        assert completed_events == 1

    def test_out_of_order_attempt_changes_nothing(self, db_session, clock, sent_contract, prepare_signer, sign):
        prepare_signer(sent_contract, ADMIN)

        with pytest.raises(OutOfOrderError):
            sign(sent_contract, ADMIN)

        db_session.refresh(sent_contract)
        assert _signer(sent_contract, "admin").status == SignerStatus.PENDING
        assert db_session.query(Signature).count() == 0
        assert db_session.query(Certificate).count() == 0
        assert db_session.query(AuditEvent).filter(AuditEvent.event_type == AuditEventType.SIGNED).count() == 0

    def test_order_checked_before_consent(self, db_session, clock, sent_contract, sign):
        # Admin has neither consent nor review, but order is the first rule broken
        with pytest.raises(OutOfOrderError):
            sign(sent_contract, ADMIN)

    def test_tied_signing_orders_may_sign_in_any_order(self, db_session, clock, sent_contract, prepare_signer, sign):
        for signer in sent_contract.signers:
            signer.signing_order = 1
        db_session.commit()

        prepare_signer(sent_contract, ADMIN)
        result = sign(sent_contract, ADMIN)

        assert result.contract_status == ContractStatus.PENDING_SIGNATURE


class TestParallelSigning:

    def test_any_order_is_accepted(self, db_session, clock, parallel_contract, prepare_signer, sign):
        assert parallel_contract.signing_policy == SigningPolicy.PARALLEL

        prepare_signer(parallel_contract, ADMIN)
        sign(parallel_contract, ADMIN)
        prepare_signer(parallel_contract, CONSULTANT)
        result = sign(parallel_contract, CONSULTANT)

        assert result.contract_status == ContractStatus.COMPLETED


class TestSigningPreconditions:

    def test_signing_without_consent_fails_even_after_review(self, db_session, clock, sent_contract, prepare_signer, sign):
        prepare_signer(sent_contract, CONSULTANT, consent=False, review=True)

        with pytest.raises(IncompleteConsentError):
            sign(sent_contract, CONSULTANT)

    def test_signing_without_consent_or_review_reports_consent(self, db_session, clock, sent_contract, sign):
        with pytest.raises(IncompleteConsentError):
            sign(sent_contract, CONSULTANT)

    def test_signing_without_review_fails_even_after_consent(self, db_session, clock, sent_contract, prepare_signer, sign):
        prepare_signer(sent_contract, CONSULTANT, consent=True, review=False)

        with pytest.raises(IncompleteReviewError):
            sign(sent_contract, CONSULTANT)

    def test_non_signer_cannot_sign(self, db_session, clock, sent_contract, sign):
        with pytest.raises(IdentityMismatchError):
            sign(sent_contract, "user_stranger")

    def test_cannot_sign_for_another_signer(self, db_session, clock, sent_contract, prepare_signer, sign):
        prepare_signer(sent_contract, ADMIN)
        consultant_signer = _signer(sent_contract, "consultant")

        with pytest.raises(IdentityMismatchError):
            sign(sent_contract, ADMIN, signer_id=consultant_signer.id)

        db_session.refresh(consultant_signer)
        assert consultant_signer.status == SignerStatus.PENDING

    def test_cannot_sign_a_draft(self, db_session, clock, draft_contract, sign):
        with pytest.raises(InvalidStateError):
            sign(draft_contract, CONSULTANT)

    def test_second_signature_by_same_signer_is_refused(self, db_session, clock, sent_contract, prepare_signer, sign):
        prepare_signer(sent_contract, CONSULTANT)
        sign(sent_contract, CONSULTANT)

        with pytest.raises(InvalidStateError):
            sign(sent_contract, CONSULTANT)

        assert db_session.query(Signature).count() == 1
        assert db_session.query(Certificate).count() == 1


class TestExpiration:
    """Scenario: a pending contract whose expiration date has passed."""

    def test_sign_after_expiration_is_refused_without_sweep(self, db_session, clock, sent_contract, prepare_signer, sign):
        prepare_signer(sent_contract, CONSULTANT)

        clock.current = clock.current.replace(year=2027, month=1, day=1)

        with pytest.raises(InvalidStateError):
            sign(sent_contract, CONSULTANT)

        db_session.refresh(sent_contract)
        assert sent_contract.status == ContractStatus.EXPIRED
        assert db_session.query(Signature).count() == 0

    def test_reading_an_overdue_contract_reports_expired(self, db_session, clock, sent_contract):
        clock.current = clock.current.replace(year=2027, month=1, day=1)

        contract = SignatureStateMachine(db_session, now=clock).get_contract(sent_contract.id)

        assert contract.status == ContractStatus.EXPIRED
        expired_events = db_session.query(AuditEvent).filter(
            AuditEvent.event_type == AuditEventType.EXPIRED
        ).all()
        assert len(expired_events) == 1
        assert expired_events[0].user_id is None

    def test_contract_is_still_pending_on_its_expiration_date(self, db_session, clock, sent_contract):
        clock.current = clock.current.replace(month=12, day=31, hour=23)

        contract = SignatureStateMachine(db_session, now=clock).get_contract(sent_contract.id)

        assert contract.status == ContractStatus.PENDING_SIGNATURE

    def test_sweep_expires_only_overdue_pending_contracts(self, db_session, clock, ica_template, sent_contract):
        later = ContractFactory(db_session, now=clock).create_contract(
            template_id=ica_template.id,
            created_by_id=CREATOR,
            title="Renewal",
            consultant_id="user_other",
            effective_date=date(2026, 3, 1),
            parameters={"consultant_name": "Ana"},
            signer_assignments={"admin": ADMIN},
            expiration_date=date(2027, 6, 30)
        )
        SignatureStateMachine(db_session, now=clock).send_for_signature(later.id, CREATOR)

        clock.current = clock.current.replace(year=2027, month=1, day=15)
        expired = SignatureStateMachine(db_session, now=clock).expire_overdue()

        assert [c.id for c in expired] == [sent_contract.id]
        assert db_session.get(Contract, later.id).status == ContractStatus.PENDING_SIGNATURE


class TestDecline:
    """Scenario: a signer declines and freezes everyone else."""

    def test_decline_freezes_remaining_signers(self, db_session, clock, parallel_contract, prepare_signer, sign):
        sm = SignatureStateMachine(db_session, now=clock)

        contract = sm.decline(parallel_contract.id, CONSULTANT, reason="Rate is wrong")

        assert contract.status == ContractStatus.DECLINED
        assert _signer(contract, "consultant").status == SignerStatus.DECLINED
        assert _signer(contract, "consultant").decline_reason == "Rate is wrong"

        with pytest.raises(InvalidStateError):
            sign(parallel_contract, ADMIN)
        assert _signer(contract, "admin").status == SignerStatus.PENDING

    def test_declined_signer_cannot_decline_again(self, db_session, clock, sent_contract):
        sm = SignatureStateMachine(db_session, now=clock)
        sm.decline(sent_contract.id, CONSULTANT)

        with pytest.raises(InvalidStateError):
            sm.decline(sent_contract.id, CONSULTANT)

    def test_signed_signer_cannot_decline(self, db_session, clock, sent_contract, prepare_signer, sign):
        prepare_signer(sent_contract, CONSULTANT)
        sign(sent_contract, CONSULTANT)

        with pytest.raises(InvalidStateError):
            SignatureStateMachine(db_session, now=clock).decline(sent_contract.id, CONSULTANT)

    def test_later_signer_may_decline_out_of_order(self, db_session, clock, sent_contract):
        contract = SignatureStateMachine(db_session, now=clock).decline(sent_contract.id, ADMIN)

        assert contract.status == ContractStatus.DECLINED


class TestCancel:

    def test_cancel_draft(self, db_session, clock, draft_contract):
        contract = SignatureStateMachine(db_session, now=clock).cancel(draft_contract.id, CREATOR, "Duplicate")

        assert contract.status == ContractStatus.CANCELLED
        assert contract.cancellation_reason == "Duplicate"

    def test_cancel_pending_then_signing_is_refused(self, db_session, clock, sent_contract, prepare_signer, sign):
        prepare_signer(sent_contract, CONSULTANT)
        SignatureStateMachine(db_session, now=clock).cancel(sent_contract.id, CREATOR)

        with pytest.raises(InvalidStateError):
            sign(sent_contract, CONSULTANT)

    def test_completed_contract_cannot_be_cancelled(self, db_session, clock, parallel_contract, prepare_signer, sign):
        for user in (CONSULTANT, ADMIN):
            prepare_signer(parallel_contract, user)
            sign(parallel_contract, user)

        with pytest.raises(InvalidStateError):
            SignatureStateMachine(db_session, now=clock).cancel(parallel_contract.id, CREATOR)


class TestStatusDerivation:

    def test_completed_if_and_only_if_every_signer_signed(self, db_session, clock, parallel_contract, prepare_signer, sign):
        def all_signed(contract):
            return all(s.status == SignerStatus.SIGNED for s in contract.signers)

        for user in (CONSULTANT, ADMIN):
            db_session.refresh(parallel_contract)
            assert (parallel_contract.status == ContractStatus.COMPLETED) == all_signed(parallel_contract)
            prepare_signer(parallel_contract, user)
            sign(parallel_contract, user)

        db_session.refresh(parallel_contract)
        assert parallel_contract.status == ContractStatus.COMPLETED
        assert all_signed(parallel_contract)

    def test_calculate_status_prefers_declined(self, db_session, clock, sent_contract):
        _signer(sent_contract, "consultant").status = SignerStatus.SIGNED
        _signer(sent_contract, "admin").status = SignerStatus.DECLINED

        assert SignatureStateMachine.calculate_status(sent_contract) == ContractStatus.DECLINED
        db_session.rollback()
