"""
Signing evidence - consent, review, signatures and certificates.

These rows are what makes a signature defensible later: who agreed to the
disclosures, that they viewed the document, what they signed and the hash of
the exact text they signed.
"""
from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from esign.database import Base


class ConsentRecord(Base):
    """
    ESIGN-style consent for one user on one contract.

    Invariants:
    - all three acknowledgements are true (enforced by the consent ledger)
    - at most one record per (contract, user); re-affirmation overwrites it
    """
    __tablename__ = "consent_records"
    __table_args__ = (
        UniqueConstraint("contract_id", "user_id", name="uq_consent_contract_user"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    signer_id = Column(Integer, ForeignKey("contract_signers.id"), nullable=False)
    user_id = Column(String, nullable=False)

    hardware_software_acknowledged = Column(Boolean, nullable=False)
    paper_copy_right_acknowledged = Column(Boolean, nullable=False)
    consent_withdrawal_acknowledged = Column(Boolean, nullable=False)

    disclosure_version = Column(String, nullable=False)
    disclosure_hash = Column(String(64), nullable=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    consented_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ReviewSession(Base):
    """Tracks that a signer actually viewed the document before signing."""
    __tablename__ = "review_sessions"
    __table_args__ = (
        UniqueConstraint("contract_id", "user_id", name="uq_review_contract_user"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    signer_id = Column(Integer, ForeignKey("contract_signers.id"), nullable=False)
    user_id = Column(String, nullable=False)

    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    max_scroll_percentage = Column(Integer, nullable=False, default=0)
    scrolled_to_bottom = Column(Boolean, nullable=False, default=False)
    page_view_count = Column(Integer, nullable=False, default=1)
    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    auto_completed = Column(Boolean, nullable=False, default=False)


class Signature(Base):
    """
    A captured signature.

    The mark itself lives in object storage; only its reference is kept here.
    """
    __tablename__ = "signatures"
    __table_args__ = (
        UniqueConstraint("signer_id", name="uq_signature_signer"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    signer_id = Column(Integer, ForeignKey("contract_signers.id"), nullable=False)
    user_id = Column(String, nullable=False)

    mark_reference = Column(Text, nullable=False)
    typed_name = Column(String, nullable=False)
    agreed_to_terms = Column(Boolean, nullable=False)
    intends_legal_signature = Column(Boolean, nullable=False)

    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    signed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    certificate = relationship("Certificate", back_populates="signature", uselist=False)


class Certificate(Base):
    """
    Binds one signature to the hash of the contract snapshot it was made over.

    Invariant: content_hash always equals the hash of contract.content.
    """
    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    signature_id = Column(Integer, ForeignKey("signatures.id"), nullable=False, unique=True)
    certificate_number = Column(String, nullable=False, unique=True, index=True)

    content_hash = Column(String(64), nullable=False)
    hash_algorithm = Column(String, nullable=False, default="SHA-256")

    contract_number = Column(String, nullable=False)
    document_title = Column(String, nullable=False)
    signer_user_id = Column(String, nullable=False)
    signer_role = Column(String, nullable=False)
    signer_name = Column(String, nullable=False)
    signer_ip_address = Column(String, nullable=True)
    signer_user_agent = Column(String, nullable=True)
    certificate_data = Column(JSON, nullable=True)

    issued_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    signature = relationship("Signature", back_populates="certificate")
