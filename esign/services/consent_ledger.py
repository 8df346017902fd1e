"""
Consent ledger - ESIGN-style disclosure acknowledgements.

A signer must acknowledge all three disclosures before the engine will accept
a signature from them. Consent can be re-affirmed (the record is refreshed)
until that signer has signed; after that it is frozen.
"""
import hashlib
import logging
from typing import Mapping, Optional
from esign.models.enums import AuditEventType, ContractStatus, SignerStatus
from esign.models.evidence import ConsentRecord
from esign.services.base import ContractService
from esign.services.errors import (
    IncompleteConsentError,
    InvalidStateError,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

DISCLOSURE_VERSION = "1.0"

DISCLOSURE_TEXT = """ELECTRONIC SIGNATURE DISCLOSURE AND CONSENT

Before you sign electronically you must be told the following.

1. HARDWARE AND SOFTWARE
To view and keep electronic documents you need a device with internet access,
a current web browser, software able to open PDF documents, a working email
address, and storage space to keep copies.

2. PAPER COPIES
You may ask for a paper copy of any document at any time, free of charge.

3. WITHDRAWING CONSENT
You may withdraw your consent to electronic documents at any time. Withdrawal
does not affect documents you have already signed electronically.

By acknowledging each item you confirm you have read this disclosure, meet the
requirements above, and agree to do business electronically.
"""

DISCLOSURE_HASH = hashlib.sha256(DISCLOSURE_TEXT.encode("utf-8")).hexdigest()

ACKNOWLEDGEMENT_FIELDS = (
    "hardware_software_acknowledged",
    "paper_copy_right_acknowledged",
    "consent_withdrawal_acknowledged",
)


def get_disclosure() -> dict:
    return {"version": DISCLOSURE_VERSION, "text": DISCLOSURE_TEXT, "hash": DISCLOSURE_HASH}


def _check_acknowledgements(acknowledgements: Mapping[str, bool]) -> None:
    if not isinstance(acknowledgements, Mapping):
        raise ValidationFailure("Acknowledgements must be a set of named flags")

    missing = [f for f in ACKNOWLEDGEMENT_FIELDS if f not in acknowledgements]
    if missing:
        raise ValidationFailure(
            f"Missing acknowledgement(s): {', '.join(missing)}",
            required=list(ACKNOWLEDGEMENT_FIELDS)
        )
    malformed = [f for f in ACKNOWLEDGEMENT_FIELDS if not isinstance(acknowledgements[f], bool)]
    if malformed:
        raise ValidationFailure(f"Acknowledgement(s) must be true or false: {', '.join(malformed)}")

    unchecked = [f for f in ACKNOWLEDGEMENT_FIELDS if acknowledgements[f] is not True]
    if unchecked:
        raise IncompleteConsentError(
            "All three acknowledgements are required to proceed",
            required=list(ACKNOWLEDGEMENT_FIELDS),
            unchecked=unchecked
        )


class ConsentLedger(ContractService):
    """Records consent per (contract, user) and answers whether it exists."""

    def record_consent(
        self,
        contract_id: int,
        user_id: str,
        acknowledgements: Mapping[str, bool],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> ConsentRecord:
        _check_acknowledgements(acknowledgements)

        with self.transition(contract_id) as contract:
            self.require_status(contract, [ContractStatus.PENDING_SIGNATURE], "record consent")
            signer = self.signer_for_user(contract, user_id)
            if signer.status != SignerStatus.PENDING:
                raise InvalidStateError(
                    f"Consent is frozen: this signer has already {signer.status.value}",
                    signer_status=signer.status.value
                )

            now = self.now()
            record = self.get_consent(contract_id, user_id)
            reaffirmation = record is not None
            if record is None:
                record = ConsentRecord(
                    contract_id=contract.id,
                    signer_id=signer.id,
                    user_id=user_id,
                    created_at=now
                )
                self.db.add(record)

            record.hardware_software_acknowledged = True
            record.paper_copy_right_acknowledged = True
            record.consent_withdrawal_acknowledged = True
            record.disclosure_version = DISCLOSURE_VERSION
            record.disclosure_hash = DISCLOSURE_HASH
            record.ip_address = ip_address
            record.user_agent = user_agent
            record.consented_at = now

            self.audit.record(
                contract.id,
                AuditEventType.CONSENT_RECORDED,
                user_id,
                {
                    "signer_id": signer.id,
                    "disclosure_version": DISCLOSURE_VERSION,
                    "reaffirmation": reaffirmation,
                    "acknowledgements": {f: True for f in ACKNOWLEDGEMENT_FIELDS},
                },
                now=now
            )
            self.commit()

        self.db.refresh(record)
        logger.info("Consent recorded for user %s on contract %s", user_id, contract_id)
        return record

    def get_consent(self, contract_id: int, user_id: str) -> Optional[ConsentRecord]:
        return self.db.query(ConsentRecord).filter(
            ConsentRecord.contract_id == contract_id,
            ConsentRecord.user_id == user_id
        ).first()

    def has_consent(self, contract_id: int, user_id: str) -> bool:
        record = self.get_consent(contract_id, user_id)
        if record is None:
            return False
        return all(getattr(record, f) for f in ACKNOWLEDGEMENT_FIELDS)
