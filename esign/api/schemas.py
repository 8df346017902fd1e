"""Pydantic schemas for request/response validation."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from esign.models.enums import (
    AuditEventType,
    ContractStatus,
    SignerStatus,
    SigningPolicy,
    TemplateType
)


# Template schemas
class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: TemplateType = TemplateType.GENERAL
    content: str = Field(..., min_length=1)
    required_signer_roles: List[str] = Field(..., min_length=1)
    placeholders: Optional[List[str]] = None


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = None
    required_signer_roles: Optional[List[str]] = None
    placeholders: Optional[List[str]] = None


class TemplateResponse(BaseModel):
    id: int
    name: str
    type: TemplateType
    content: str
    placeholders: List[str]
    required_signer_roles: List[str]
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Contract schemas
class ContractCreate(BaseModel):
    template_id: int
    title: str = Field(..., min_length=1, max_length=300)
    consultant_id: Optional[str] = None
    project_id: Optional[str] = None
    effective_date: Optional[date] = None
    expiration_date: Optional[date] = None
    parameters: Dict[str, str] = {}
    signer_assignments: Dict[str, str] = {}  # role -> user id
    signing_policy: Optional[SigningPolicy] = None


class SignerResponse(BaseModel):
    id: int
    user_id: str
    role: str
    signing_order: int
    status: SignerStatus
    signed_at: Optional[datetime]
    declined_at: Optional[datetime]
    decline_reason: Optional[str]

    class Config:
        from_attributes = True


class ContractResponse(BaseModel):
    id: int
    contract_number: str
    template_id: int
    template_version: int
    title: str
    content: str
    unresolved_placeholders: List[str]
    consultant_id: Optional[str]
    project_id: Optional[str]
    created_by_id: str
    status: ContractStatus
    signing_policy: SigningPolicy
    effective_date: Optional[date]
    expiration_date: Optional[date]
    created_at: datetime
    sent_at: Optional[datetime]
    completed_at: Optional[datetime]
    declined_at: Optional[datetime]
    expired_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    signers: List[SignerResponse]

    class Config:
        from_attributes = True


class DeclineRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
    signer_id: Optional[int] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


# Consent schemas
class DisclosureResponse(BaseModel):
    version: str
    text: str
    hash: str


class ConsentCreate(BaseModel):
    # Optional here so a missing flag is reported by the ledger, not the parser
    hardware_software_acknowledged: Optional[bool] = None
    paper_copy_right_acknowledged: Optional[bool] = None
    consent_withdrawal_acknowledged: Optional[bool] = None


class ConsentResponse(BaseModel):
    id: int
    contract_id: int
    signer_id: int
    user_id: str
    hardware_software_acknowledged: bool
    paper_copy_right_acknowledged: bool
    consent_withdrawal_acknowledged: bool
    disclosure_version: str
    disclosure_hash: str
    consented_at: datetime

    class Config:
        from_attributes = True


class ConsentStatusResponse(BaseModel):
    has_consent: bool
    consent: Optional[ConsentResponse]


# Review schemas
class ReviewProgress(BaseModel):
    scroll_percentage: Optional[float] = None
    scrolled_to_bottom: bool = False


class ReviewResponse(BaseModel):
    id: int
    contract_id: int
    signer_id: int
    user_id: str
    started_at: datetime
    max_scroll_percentage: int
    scrolled_to_bottom: bool
    page_view_count: int
    completed: bool
    completed_at: Optional[datetime]
    duration_seconds: Optional[int]
    auto_completed: bool

    class Config:
        from_attributes = True


# Signature schemas
class SignatureCreate(BaseModel):
    mark: str = ""  # Object storage reference of the drawn signature
    typed_name: str = ""
    agreed_to_terms: bool = False
    intends_legal_signature: bool = False
    signer_id: Optional[int] = None


class SignatureResponse(BaseModel):
    id: int
    contract_id: int
    signer_id: int
    user_id: str
    mark_reference: str
    typed_name: str
    agreed_to_terms: bool
    intends_legal_signature: bool
    signed_at: datetime

    class Config:
        from_attributes = True


class CertificateResponse(BaseModel):
    id: int
    contract_id: int
    signature_id: int
    certificate_number: str
    content_hash: str
    hash_algorithm: str
    contract_number: str
    document_title: str
    signer_user_id: str
    signer_role: str
    signer_name: str
    certificate_data: Optional[Dict[str, Any]]
    issued_at: datetime

    class Config:
        from_attributes = True


class SignResponse(BaseModel):
    signature: SignatureResponse
    certificate: CertificateResponse
    contract_status: ContractStatus


class VerificationItem(BaseModel):
    certificate_number: str
    signature_id: int
    stored_hash: str
    hash_algorithm: str
    verified: bool


class VerificationResponse(BaseModel):
    verified: bool
    message: str
    current_hash: str
    results: List[VerificationItem]


# Audit schemas
class AuditEventResponse(BaseModel):
    id: int
    contract_id: int
    event_type: AuditEventType
    user_id: Optional[str]
    details: Dict[str, Any]
    created_at: datetime

    class Config:
        from_attributes = True


class AuditTrailResponse(BaseModel):
    contract_id: int
    consents: List[ConsentResponse]
    reviews: List[ReviewResponse]
    signatures: List[SignatureResponse]
    certificates: List[CertificateResponse]
    events: List[AuditEventResponse]
    generated_at: datetime


# Error response
class ErrorResponse(BaseModel):
    """Response when an action is refused."""
    code: str
    message: str
    details: Dict[str, Any] = {}
