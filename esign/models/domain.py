"""Domain models - templates, contracts and the signers bound to them."""
from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from esign.database import Base
from esign.models.enums import ContractStatus, SignerStatus, SigningPolicy, TemplateType


class ContractTemplate(Base):
    """
    Reusable contract text with {{ placeholders }} and the roles that must sign.

    Contracts copy the resolved text at creation, so editing a template (which
    bumps its version) never reaches a contract already created from it.
    """
    __tablename__ = "contract_templates"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    type = Column(SQLEnum(TemplateType), nullable=False, default=TemplateType.GENERAL)
    content = Column(Text, nullable=False)
    placeholders = Column(JSON, nullable=False, default=list)
    required_signer_roles = Column(JSON, nullable=False)  # Ordered; position = signing order
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    contracts = relationship("Contract", back_populates="template")


class Contract(Base):
    """
    A single agreement moving through signature.

    Invariants:
    - content is the resolved snapshot and never changes after creation
    - the signer set is fixed at creation
    - status is only written inside a ContractService transition
    """
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    contract_number = Column(String, nullable=False, unique=True, index=True)
    template_id = Column(Integer, ForeignKey("contract_templates.id"), nullable=False)
    template_version = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    unresolved_placeholders = Column(JSON, nullable=False, default=list)

    consultant_id = Column(String, nullable=True)
    project_id = Column(String, nullable=True)
    created_by_id = Column(String, nullable=False)

    status = Column(SQLEnum(ContractStatus), nullable=False, default=ContractStatus.DRAFT, index=True)
    signing_policy = Column(SQLEnum(SigningPolicy), nullable=False, default=SigningPolicy.SEQUENTIAL)
    effective_date = Column(Date, nullable=True)
    expiration_date = Column(Date, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    sent_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    declined_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(String, nullable=True)

    # Optimistic concurrency guard across processes
    lock_version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": lock_version}

    template = relationship("ContractTemplate", back_populates="contracts")
    signers = relationship(
        "ContractSigner",
        back_populates="contract",
        order_by=lambda: [ContractSigner.signing_order, ContractSigner.id],
    )


class ContractSigner(Base):
    """
    One required signature on a contract.

    Invariants:
    - status moves once, from pending to signed or declined
    - only the user named by user_id may act for this signer
    """
    __tablename__ = "contract_signers"
    __table_args__ = (
        UniqueConstraint("contract_id", "user_id", name="uq_signer_contract_user"),
        UniqueConstraint("contract_id", "role", name="uq_signer_contract_role"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False)
    signing_order = Column(Integer, nullable=False)
    status = Column(SQLEnum(SignerStatus), nullable=False, default=SignerStatus.PENDING)

    signed_at = Column(DateTime, nullable=True)
    declined_at = Column(DateTime, nullable=True)
    decline_reason = Column(String, nullable=True)

    lock_version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": lock_version}

    contract = relationship("Contract", back_populates="signers")
