"""Contract numbers, certificate numbers and document hashes."""
import hashlib
import re
import secrets
import unicodedata
from datetime import datetime
from threading import RLock
from sqlalchemy.orm import Session
from esign.models.domain import Contract

HASH_ALGORITHM = "SHA-256"

_numbering_lock = RLock()


def canonical_bytes(content: str) -> bytes:
    """NFC-normalized UTF-8 with \\n line endings."""
    normalized = unicodedata.normalize("NFC", content)
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n")
    return normalized.encode("utf-8")


def content_hash(content: str) -> str:
    return hashlib.sha256(canonical_bytes(content)).hexdigest()


def next_contract_number(db: Session, prefix: str, year: int) -> str:
    """
    Next number in the PREFIX-YYYY-NNN sequence for the year.

    Callers must hold numbering_lock() until the contract row is committed.
    """
    stem = f"{prefix}-{year}-"
    numbers = db.query(Contract.contract_number).filter(
        Contract.contract_number.like(f"{stem}%")
    ).all()

    pattern = re.compile(rf"^{re.escape(stem)}(\d+)$")
    highest = 0
    for (number,) in numbers:
        match = pattern.match(number)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{stem}{highest + 1:03d}"


def numbering_lock() -> RLock:
    return _numbering_lock


def new_certificate_number(prefix: str, now: datetime) -> str:
    """
    Time-ordered, collision-resistant certificate number.

    Format: PREFIX-YYYYMMDDHHMMSSffffff-XXXXXXXX. Sorting the strings sorts by
    issue time; the random suffix separates numbers issued in the same microsecond.
    """
    return f"{prefix}-{now.strftime('%Y%m%d%H%M%S%f')}-{secrets.token_hex(4).upper()}"
