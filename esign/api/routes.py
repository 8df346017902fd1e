"""API routes for the contract signature workflow."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from esign.database import get_db
from esign.services.audit_trail import AuditTrail
from esign.services.consent_ledger import ACKNOWLEDGEMENT_FIELDS, ConsentLedger, get_disclosure
from esign.services.contract_factory import ContractFactory
from esign.services.review_tracker import ReviewTracker
from esign.services.signature_capture import SignatureCapture
from esign.services.state_machine import SignatureStateMachine
from esign.services.templates import TemplateStore
from esign.api.dependencies import get_acting_user, get_client_ip, get_user_agent, get_user_name
from esign.api.schemas import (
    AuditEventResponse,
    AuditTrailResponse,
    CancelRequest,
    CertificateResponse,
    ConsentCreate,
    ConsentResponse,
    ConsentStatusResponse,
    ContractCreate,
    ContractResponse,
    DeclineRequest,
    DisclosureResponse,
    ErrorResponse,
    ReviewProgress,
    ReviewResponse,
    SignatureCreate,
    SignResponse,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
    VerificationResponse
)

REFUSALS = {
    403: {"model": ErrorResponse, "description": "Acting user is not this signer"},
    404: {"model": ErrorResponse, "description": "Contract, signer or template not found"},
    409: {"model": ErrorResponse, "description": "Refused - state, order, consent, review or conflict"},
    422: {"model": ErrorResponse, "description": "Invalid input"},
}

router = APIRouter()


@router.get("/esign/disclosure", response_model=DisclosureResponse)
def read_disclosure():
    """ESIGN disclosure text with its version and SHA-256 hash."""
    return get_disclosure()


# Template endpoints
@router.post("/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED, responses=REFUSALS)
def create_template(template_data: TemplateCreate, db: Session = Depends(get_db)):
    return TemplateStore(db).create_template(
        name=template_data.name,
        content=template_data.content,
        required_signer_roles=template_data.required_signer_roles,
        template_type=template_data.type,
        placeholders=template_data.placeholders
    )


@router.get("/templates", response_model=List[TemplateResponse])
def list_templates(active_only: bool = False, db: Session = Depends(get_db)):
    return TemplateStore(db).list_templates(active_only=active_only)


@router.get("/templates/{template_id}", response_model=TemplateResponse, responses=REFUSALS)
def get_template(template_id: int, db: Session = Depends(get_db)):
    return TemplateStore(db).get_template(template_id)


@router.put("/templates/{template_id}", response_model=TemplateResponse, responses=REFUSALS)
def update_template(template_id: int, template_data: TemplateUpdate, db: Session = Depends(get_db)):
    """Edit a template. Content changes bump its version; existing contracts keep their snapshot."""
    return TemplateStore(db).update_template(
        template_id,
        name=template_data.name,
        content=template_data.content,
        required_signer_roles=template_data.required_signer_roles,
        placeholders=template_data.placeholders
    )


@router.post("/templates/{template_id}/deactivate", response_model=TemplateResponse, responses=REFUSALS)
def deactivate_template(template_id: int, db: Session = Depends(get_db)):
    return TemplateStore(db).deactivate_template(template_id)


# Contract endpoints
@router.post("/contracts", response_model=ContractResponse, status_code=status.HTTP_201_CREATED, responses=REFUSALS)
def create_contract(
    contract_data: ContractCreate,
    user_id: str = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    """Create a draft contract from a template. Content is resolved and frozen here."""
    return ContractFactory(db).create_contract(
        template_id=contract_data.template_id,
        created_by_id=user_id,
        title=contract_data.title,
        consultant_id=contract_data.consultant_id,
        project_id=contract_data.project_id,
        effective_date=contract_data.effective_date,
        expiration_date=contract_data.expiration_date,
        parameters=contract_data.parameters,
        signer_assignments=contract_data.signer_assignments,
        signing_policy=contract_data.signing_policy
    )


@router.post("/contracts/expire-overdue", response_model=List[ContractResponse])
def expire_overdue(db: Session = Depends(get_db)):
    """Expiration sweep, for an external scheduler. Contracts also expire on first touch."""
    return SignatureStateMachine(db).expire_overdue()


@router.get("/contracts/{contract_id}", response_model=ContractResponse, responses=REFUSALS)
def get_contract(contract_id: int, db: Session = Depends(get_db)):
    return SignatureStateMachine(db).get_contract(contract_id)


@router.post("/contracts/{contract_id}/send", response_model=ContractResponse, responses=REFUSALS)
def send_for_signature(contract_id: int, user_id: str = Depends(get_acting_user), db: Session = Depends(get_db)):
    """
    Send a draft for signature.

    WILL REFUSE if the contract has no signers or unresolved placeholders.
    """
    return SignatureStateMachine(db).send_for_signature(contract_id, user_id)


@router.post("/contracts/{contract_id}/decline", response_model=ContractResponse, responses=REFUSALS)
def decline_contract(
    contract_id: int,
    decline_data: DeclineRequest,
    user_id: str = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    return SignatureStateMachine(db).decline(
        contract_id, user_id, reason=decline_data.reason, signer_id=decline_data.signer_id
    )


@router.post("/contracts/{contract_id}/cancel", response_model=ContractResponse, responses=REFUSALS)
def cancel_contract(
    contract_id: int,
    cancel_data: CancelRequest,
    user_id: str = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    """Administrative cancel. Permission checks belong to the calling platform."""
    return SignatureStateMachine(db).cancel(contract_id, user_id, reason=cancel_data.reason)


# Consent endpoints
@router.post("/contracts/{contract_id}/consent", response_model=ConsentResponse, status_code=status.HTTP_201_CREATED, responses=REFUSALS)
def record_consent(
    contract_id: int,
    consent_data: ConsentCreate,
    user_id: str = Depends(get_acting_user),
    ip_address: Optional[str] = Depends(get_client_ip),
    user_agent: Optional[str] = Depends(get_user_agent),
    db: Session = Depends(get_db)
):
    acknowledgements = {
        field: getattr(consent_data, field)
        for field in ACKNOWLEDGEMENT_FIELDS
        if getattr(consent_data, field) is not None
    }
    return ConsentLedger(db).record_consent(
        contract_id, user_id, acknowledgements, ip_address=ip_address, user_agent=user_agent
    )


@router.get("/contracts/{contract_id}/consent", response_model=ConsentStatusResponse, responses=REFUSALS)
def read_consent(contract_id: int, user_id: str = Depends(get_acting_user), db: Session = Depends(get_db)):
    SignatureStateMachine(db).get_contract(contract_id)
    ledger = ConsentLedger(db)
    return {
        "has_consent": ledger.has_consent(contract_id, user_id),
        "consent": ledger.get_consent(contract_id, user_id)
    }


# Review endpoints
@router.post("/contracts/{contract_id}/review/start", response_model=ReviewResponse, responses=REFUSALS)
def start_review(contract_id: int, user_id: str = Depends(get_acting_user), db: Session = Depends(get_db)):
    return ReviewTracker(db).start_review(contract_id, user_id)


@router.patch("/contracts/{contract_id}/review/progress", response_model=ReviewResponse, responses=REFUSALS)
def record_review_progress(
    contract_id: int,
    progress: ReviewProgress,
    user_id: str = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    """Record scroll progress. Lower readings than already stored are ignored."""
    return ReviewTracker(db).record_progress(
        contract_id,
        user_id,
        scroll_percentage=progress.scroll_percentage,
        scrolled_to_bottom=progress.scrolled_to_bottom
    )


@router.get("/contracts/{contract_id}/review", response_model=Optional[ReviewResponse], responses=REFUSALS)
def read_review(contract_id: int, user_id: str = Depends(get_acting_user), db: Session = Depends(get_db)):
    SignatureStateMachine(db).get_contract(contract_id)
    return ReviewTracker(db).get_review(contract_id, user_id)


# Signing endpoints
@router.post("/contracts/{contract_id}/sign", response_model=SignResponse, status_code=status.HTTP_201_CREATED, responses=REFUSALS)
def sign_contract(
    contract_id: int,
    signature_data: SignatureCreate,
    user_id: str = Depends(get_acting_user),
    ip_address: Optional[str] = Depends(get_client_ip),
    user_agent: Optional[str] = Depends(get_user_agent),
    user_name: Optional[str] = Depends(get_user_name),
    db: Session = Depends(get_db)
):
    """
    Sign as the acting user.

    WILL REFUSE if:
    - Contract is not pending signature (including expired on the way in)
    - Acting user is not the targeted signer
    - An earlier signer has not signed (sequential contracts)
    - Consent or review is missing
    """
    result = SignatureCapture(db).submit_signature(
        contract_id,
        user_id,
        mark=signature_data.mark,
        typed_name=signature_data.typed_name,
        agreed_to_terms=signature_data.agreed_to_terms,
        intends_legal_signature=signature_data.intends_legal_signature,
        signer_id=signature_data.signer_id,
        ip_address=ip_address,
        user_agent=user_agent,
        expected_name=user_name
    )
    return {
        "signature": result.signature,
        "certificate": result.certificate,
        "contract_status": result.contract_status
    }


@router.get("/contracts/{contract_id}/certificates", response_model=List[CertificateResponse], responses=REFUSALS)
def list_certificates(contract_id: int, db: Session = Depends(get_db)):
    SignatureStateMachine(db).get_contract(contract_id)
    return SignatureCapture(db).list_certificates(contract_id)


@router.get("/contracts/{contract_id}/certificates/{signature_id}", response_model=CertificateResponse, responses=REFUSALS)
def get_certificate(contract_id: int, signature_id: int, db: Session = Depends(get_db)):
    return SignatureCapture(db).get_certificate(contract_id, signature_id)


@router.get("/contracts/{contract_id}/verify", response_model=VerificationResponse, responses=REFUSALS)
def verify_document(contract_id: int, db: Session = Depends(get_db)):
    """Recompute the document hash and compare it with every certificate."""
    return SignatureCapture(db).verify_document(contract_id)


# Audit endpoints
@router.get("/contracts/{contract_id}/audit-events", response_model=List[AuditEventResponse], responses=REFUSALS)
def list_audit_events(contract_id: int, db: Session = Depends(get_db)):
    """Audit events, oldest first."""
    SignatureStateMachine(db).get_contract(contract_id)
    return AuditTrail(db).list_events(contract_id)


@router.get("/contracts/{contract_id}/audit-trail", response_model=AuditTrailResponse, responses=REFUSALS)
def get_audit_trail(contract_id: int, db: Session = Depends(get_db)):
    """Consents, reviews, signatures, certificates and events in one read."""
    SignatureStateMachine(db).get_contract(contract_id)
    return AuditTrail(db).evidence(contract_id)
