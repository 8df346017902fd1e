"""Outbound notifications about contract progress."""
import logging
from typing import Iterable

from esign.models.domain import Contract, ContractSigner

logger = logging.getLogger(__name__)


class SignatureNotification:
    def __init__(self, user_id: str, title: str, message: str):
        self.user_id = user_id
        self.title = title
        self.message = message

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message
        }


class SignatureRequestedNotification(SignatureNotification):
    def __init__(self, contract: Contract, signer: ContractSigner):
        title = "Signature requested"
        message = f"Contract {contract.contract_number} '{contract.title}' is waiting for your signature as {signer.role}."
        super().__init__(signer.user_id, title, message)


class ContractCompletedNotification(SignatureNotification):
    def __init__(self, contract: Contract):
        title = "Contract completed"
        message = f"All parties have signed contract {contract.contract_number} '{contract.title}'."
        super().__init__(contract.created_by_id, title, message)


class Notifier:
    """
    Delivers notifications. The default implementation only logs them.

    Delivery runs after the transition has committed and never affects it.
    Subclass and override deliver() to hand off to a real channel.
    """

    def deliver(self, notification: SignatureNotification) -> None:
        logger.info("Notify %s: %s - %s", notification.user_id, notification.title, notification.message)

    def signature_requested(self, contract: Contract, signers: Iterable[ContractSigner]) -> None:
        for signer in signers:
            self._safe_deliver(SignatureRequestedNotification(contract, signer))

    def contract_completed(self, contract: Contract) -> None:
        self._safe_deliver(ContractCompletedNotification(contract))

    def _safe_deliver(self, notification: SignatureNotification) -> None:
        try:
            self.deliver(notification)
        except Exception:
            logger.exception("Notification to %s failed", notification.user_id)
