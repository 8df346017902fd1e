"""Shared plumbing for services that change a contract."""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, List, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from esign.models.domain import Contract, ContractSigner
from esign.models.enums import AuditEventType, ContractStatus
from esign.services.audit_trail import AuditTrail
from esign.services.errors import (
    ConcurrencyConflict,
    IdentityMismatchError,
    InvalidStateError,
    NotFoundError,
    SigningError,
    StorageFailure,
)
from esign.services.locks import ContractLocks, contract_locks

logger = logging.getLogger(__name__)


class ContractService:
    """
    Base for every service that reads or writes a contract.

    All writes happen inside transition(), which holds the contract's lock,
    reloads the committed row, and settles a due expiry before the caller
    sees the contract.
    """

    def __init__(
        self,
        db: Session,
        now: Optional[Callable[[], datetime]] = None,
        locks: Optional[ContractLocks] = None
    ):
        self.db = db
        self.now = now or datetime.utcnow
        self.locks = locks or contract_locks
        self.audit = AuditTrail(db)

    @contextmanager
    def transition(self, contract_id: int):
        with self.locks.hold(contract_id):
            with self.storage_guard():
                contract = self._load_contract(contract_id)
                self._expire_if_due(contract)
                yield contract

    @contextmanager
    def storage_guard(self):
        """
        Roll back on any error and report database errors as refusals.

        IntegrityError and StaleDataError mean another writer got there first;
        any other SQLAlchemyError means storage is unavailable.
        """
        try:
            yield
        except SigningError:
            self.db.rollback()
            raise
        except (IntegrityError, StaleDataError) as e:
            self.db.rollback()
            logger.warning("Concurrent write lost the race: %s", e)
            raise ConcurrencyConflict(
                "Another change to this contract was saved first. Reload and try again."
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Contract storage unavailable")
            raise StorageFailure("Contract storage is unavailable. Try again shortly.") from e
        except Exception:
            self.db.rollback()
            raise

    def _load_contract(self, contract_id: int) -> Contract:
        contract = self.db.query(Contract).filter(
            Contract.id == contract_id
        ).populate_existing().with_for_update().first()
        if contract is None:
            raise NotFoundError(f"Contract {contract_id} not found", contract_id=contract_id)

        # Refresh signer rows too; another session may have moved them
        self.db.query(ContractSigner).filter(
            ContractSigner.contract_id == contract_id
        ).populate_existing().all()
        return contract

    def _expire_if_due(self, contract: Contract) -> bool:
        """Move a pending contract past its expiration date to expired."""
        if contract.status != ContractStatus.PENDING_SIGNATURE or contract.expiration_date is None:
            return False

        now = self.now()
        if now.date() <= contract.expiration_date:
            return False

        contract.status = ContractStatus.EXPIRED
        contract.expired_at = now
        self.audit.record(
            contract.id,
            AuditEventType.EXPIRED,
            None,
            {"expiration_date": contract.expiration_date.isoformat()},
            now=now
        )
        self.commit()
        logger.info("Contract %s expired (expiration date %s)", contract.contract_number, contract.expiration_date)
        return True

    def commit(self) -> None:
        with self.storage_guard():
            self.db.commit()

    @staticmethod
    def require_status(contract: Contract, allowed: Iterable[ContractStatus], action: str) -> None:
        allowed = tuple(allowed)
        if contract.status not in allowed:
            raise InvalidStateError(
                f"Cannot {action}: contract {contract.contract_number} is {contract.status.value}",
                status=contract.status.value
            )

    @staticmethod
    def signer_for_user(contract: Contract, user_id: str) -> ContractSigner:
        for signer in contract.signers:
            if signer.user_id == user_id:
                return signer
        raise IdentityMismatchError(
            f"User {user_id} is not a signer on contract {contract.contract_number}",
            user_id=user_id
        )

    @staticmethod
    def ordered_signers(contract: Contract) -> List[ContractSigner]:
        return sorted(contract.signers, key=lambda s: (s.signing_order, s.id))
