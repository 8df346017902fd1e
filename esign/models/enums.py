"""Enums for the signing engine - these define the valid values for states and kinds."""
from enum import Enum


class TemplateType(str, Enum):
    """Kinds of contract template."""
    ICA = "ica"
    NDA = "nda"
    SOW = "sow"
    GENERAL = "general"


class ContractStatus(str, Enum):
    """
    Contract lifecycle: draft → pending_signature → completed.

    Side branches: declined, expired, cancelled. Everything but draft and
    pending_signature is terminal.
    """
    DRAFT = "draft"
    PENDING_SIGNATURE = "pending_signature"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class SignerStatus(str, Enum):
    """A signer moves once from pending to signed or declined."""
    PENDING = "pending"
    SIGNED = "signed"
    DECLINED = "declined"


class SigningPolicy(str, Enum):
    """Whether signers must sign in signing_order or may sign in any order."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class AuditEventType(str, Enum):
    """Every lifecycle occurrence recorded in the audit trail."""
    CREATED = "created"
    SENT = "sent"
    CONSENT_RECORDED = "consent_recorded"
    REVIEW_STARTED = "review_started"
    REVIEW_COMPLETED = "review_completed"
    SIGNED = "signed"
    DECLINED = "declined"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    # Refusal events
    SIGNATURE_REJECTED = "signature_rejected"
