"""Pytest configuration and shared fixtures."""
import os
from datetime import date, datetime, timedelta

# Keep the module-level engine off the developer's database file
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from esign.database import Base
from esign.models.domain import ContractTemplate, Contract, ContractSigner
from esign.models.evidence import ConsentRecord, ReviewSession, Signature, Certificate
from esign.models.audit import AuditEvent
from esign.models.enums import SigningPolicy, TemplateType
from esign.services.consent_ledger import ConsentLedger
from esign.services.contract_factory import ContractFactory
from esign.services.review_tracker import ReviewTracker
from esign.services.signature_capture import SignatureCapture
from esign.services.state_machine import SignatureStateMachine
from esign.services.templates import TemplateStore

CONSULTANT = "user_consultant"
ADMIN = "user_admin"
CREATOR = "user_creator"

ALL_ACKNOWLEDGED = {
    "hardware_software_acknowledged": True,
    "paper_copy_right_acknowledged": True,
    "consent_withdrawal_acknowledged": True,
}

ICA_CLAUSES = "\n".join(
    f"{n}. The consultant shall perform the services described in schedule {n} with due care and skill."
    for n in range(1, 31)
)

ICA_CONTENT = (
    "INDEPENDENT CONTRACTOR AGREEMENT {{ contract_number }}\n\n"
    "This agreement between NICEHR Group and {{consultant_name}} takes effect on {{effective_date}}.\n\n"
    + ICA_CLAUSES
)


class FakeClock:
    """Controllable stand-in for datetime.utcnow."""

    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # In-memory SQLite for fast tests
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, 0))


@pytest.fixture
def ica_template(db_session):
    """ICA template needing the consultant then an admin, long enough to need scrolling."""
    return TemplateStore(db_session).create_template(
        name="Independent Contractor Agreement",
        content=ICA_CONTENT,
        required_signer_roles=["consultant", "admin"],
        template_type=TemplateType.ICA
    )


@pytest.fixture
def nda_template(db_session):
    """Short NDA: review completes as soon as it starts."""
    return TemplateStore(db_session).create_template(
        name="Mutual NDA",
        content="NDA {{contract_number}} with {{consultant_name}}. Keep it secret.",
        required_signer_roles=["consultant", "admin"],
        template_type=TemplateType.NDA
    )


def _create(db_session, clock, template, policy=SigningPolicy.SEQUENTIAL, expiration_date=None):
    return ContractFactory(db_session, now=clock).create_contract(
        template_id=template.id,
        created_by_id=CREATOR,
        title="Sarah Chen - Consultant Agreement",
        consultant_id=CONSULTANT,
        project_id="project_1",
        effective_date=date(2026, 3, 1),
        expiration_date=expiration_date or date(2026, 12, 31),
        parameters={"consultant_name": "Sarah Chen"},
        signer_assignments={"admin": ADMIN},
        signing_policy=policy
    )


@pytest.fixture
def draft_contract(db_session, clock, ica_template):
    return _create(db_session, clock, ica_template)


@pytest.fixture
def sent_contract(db_session, clock, draft_contract):
    """Sequential ICA contract, sent for signature."""
    return SignatureStateMachine(db_session, now=clock).send_for_signature(draft_contract.id, CREATOR)


@pytest.fixture
def parallel_contract(db_session, clock, ica_template):
    contract = _create(db_session, clock, ica_template, policy=SigningPolicy.PARALLEL)
    return SignatureStateMachine(db_session, now=clock).send_for_signature(contract.id, CREATOR)


@pytest.fixture
def prepare_signer(db_session, clock):
    """Record consent and a full review for a user on a contract."""
    def _prepare(contract, user_id, consent=True, review=True):
        if consent:
            ConsentLedger(db_session, now=clock).record_consent(contract.id, user_id, ALL_ACKNOWLEDGED)
        if review:
            tracker = ReviewTracker(db_session, now=clock)
            tracker.start_review(contract.id, user_id)
            clock.advance(seconds=45)
            tracker.record_progress(contract.id, user_id, scroll_percentage=100)
    return _prepare


@pytest.fixture
def sign(db_session, clock):
    """Submit a valid signature as a user."""
    def _sign(contract, user_id, **overrides):
        clock.advance(seconds=5)
        kwargs = dict(
            mark=f"s3://signatures/{contract.id}/{user_id}.png",
            typed_name=user_id.replace("_", " ").title(),
            agreed_to_terms=True,
            intends_legal_signature=True
        )
        kwargs.update(overrides)
        return SignatureCapture(db_session, now=clock).submit_signature(contract.id, user_id, **kwargs)
    return _sign
