"""Review tracker - proof that a signer viewed the whole document."""
import logging
from numbers import Real
from typing import Optional
from esign.config import settings
from esign.models.domain import Contract
from esign.models.enums import AuditEventType, ContractStatus
from esign.models.evidence import ReviewSession
from esign.services.base import ContractService
from esign.services.errors import NotFoundError, ValidationFailure

logger = logging.getLogger(__name__)


class ReviewTracker(ContractService):
    """
    One review session per (contract, user).

    Progress only ever moves forward: a lower scroll reading than the one
    already stored is ignored rather than refused. Short documents, which may
    fit on screen with nothing to scroll, complete as soon as review starts.
    """

    def __init__(self, db, now=None, locks=None, complete_percent=None, autocomplete_chars=None):
        super().__init__(db, now=now, locks=locks)
        self.complete_percent = complete_percent if complete_percent is not None else settings.review_complete_percent
        self.autocomplete_chars = (
            autocomplete_chars if autocomplete_chars is not None else settings.review_autocomplete_chars
        )

    def start_review(self, contract_id: int, user_id: str) -> ReviewSession:
        """Start reviewing. Calling again only counts another page view."""
        with self.transition(contract_id) as contract:
            self.require_status(contract, [ContractStatus.PENDING_SIGNATURE], "start review")
            signer = self.signer_for_user(contract, user_id)

            session = self.get_review(contract_id, user_id)
            if session is not None:
                session.page_view_count = (session.page_view_count or 0) + 1
                self.commit()
                self.db.refresh(session)
                return session

            now = self.now()
            session = ReviewSession(
                contract_id=contract.id,
                signer_id=signer.id,
                user_id=user_id,
                started_at=now,
                max_scroll_percentage=0,
                scrolled_to_bottom=False,
                page_view_count=1,
                completed=False,
                auto_completed=False
            )
            self.db.add(session)
            self.audit.record(
                contract.id,
                AuditEventType.REVIEW_STARTED,
                user_id,
                {"signer_id": signer.id},
                now=now
            )

            if self._is_short(contract):
                session.max_scroll_percentage = 100
                session.scrolled_to_bottom = True
                session.auto_completed = True
                self._complete(contract, session, user_id)

            self.commit()

        self.db.refresh(session)
        logger.info("Review started by user %s on contract %s", user_id, contract_id)
        return session

    def record_progress(
        self,
        contract_id: int,
        user_id: str,
        scroll_percentage: Optional[float] = None,
        scrolled_to_bottom: bool = False
    ) -> ReviewSession:
        if scroll_percentage is None and not scrolled_to_bottom:
            raise ValidationFailure("Progress needs a scroll percentage or the scrolled-to-bottom flag")
        if scroll_percentage is not None:
            if isinstance(scroll_percentage, bool) or not isinstance(scroll_percentage, Real):
                raise ValidationFailure("Scroll percentage must be a number")
            if not 0 <= scroll_percentage <= 100:
                raise ValidationFailure("Scroll percentage must be between 0 and 100")

        with self.transition(contract_id) as contract:
            self.require_status(contract, [ContractStatus.PENDING_SIGNATURE], "record review progress")
            self.signer_for_user(contract, user_id)

            session = self.get_review(contract_id, user_id)
            if session is None:
                raise NotFoundError("Review has not been started for this signer", user_id=user_id)
            if session.completed:
                return session

            changed = False
            if scroll_percentage is not None and int(scroll_percentage) > session.max_scroll_percentage:
                session.max_scroll_percentage = int(scroll_percentage)
                changed = True
            if scrolled_to_bottom and not session.scrolled_to_bottom:
                session.scrolled_to_bottom = True
                changed = True

            if not changed:
                return session

            if session.scrolled_to_bottom or session.max_scroll_percentage >= self.complete_percent:
                self._complete(contract, session, user_id)

            self.commit()

        self.db.refresh(session)
        return session

    def get_review(self, contract_id: int, user_id: str) -> Optional[ReviewSession]:
        return self.db.query(ReviewSession).filter(
            ReviewSession.contract_id == contract_id,
            ReviewSession.user_id == user_id
        ).first()

    def is_review_complete(self, contract_id: int, user_id: str) -> bool:
        session = self.get_review(contract_id, user_id)
        return bool(session and session.completed)

    def _is_short(self, contract: Contract) -> bool:
        return len(contract.content) <= self.autocomplete_chars

    def _complete(self, contract: Contract, session: ReviewSession, user_id: str) -> None:
        now = self.now()
        session.completed = True
        session.completed_at = now
        session.duration_seconds = max(0, int((now - session.started_at).total_seconds()))
        self.audit.record(
            contract.id,
            AuditEventType.REVIEW_COMPLETED,
            user_id,
            {
                "signer_id": session.signer_id,
                "max_scroll_percentage": session.max_scroll_percentage,
                "scrolled_to_bottom": session.scrolled_to_bottom,
                "auto_completed": bool(session.auto_completed),
                "duration_seconds": session.duration_seconds,
            },
            now=now
        )
        logger.info("Review completed by user %s on contract %s", user_id, contract.contract_number)
