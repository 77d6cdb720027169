# affiliate_system/services/failure_service.py
"""
Admin review queue for events the engine could not process.
"""
from typing import List, Optional
from sqlalchemy.orm import Session
import logging

from models import FailedEvent
from affiliate_system.errors import AffiliateError
from affiliate_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class FailureService:

    def __init__(self, session: Session):
        self.session = session

    def recordFailure(
            self,
            source: str,
            eventType: str,
            eventRef,
            error: Exception
    ) -> FailedEvent:
        """
        Store a failed item in its own transaction.
        Callers must roll back their work on the item first.
        """
        errorKind = error.errorKind if isinstance(error, AffiliateError) else "unexpected"
        failure = FailedEvent(
            source=source,
            eventType=eventType,
            eventRef=None if eventRef is None else str(eventRef),
            errorKind=errorKind,
            reason=str(error) or error.__class__.__name__,
        )
        self.session.add(failure)
        self.session.commit()

        logger.error(f"{source}: {eventType} {eventRef} failed ({errorKind}): {error}")
        return failure

    def listOpenFailures(self, eventType: Optional[str] = None) -> List[FailedEvent]:
        query = self.session.query(FailedEvent).filter(FailedEvent.resolved == False)
        if eventType:
            query = query.filter(FailedEvent.eventType == eventType)
        return query.order_by(FailedEvent.failureID).all()

    def resolveFailure(self, failureId: int) -> bool:
        failure = self.session.query(FailedEvent).filter_by(failureID=failureId).first()
        if not failure:
            return False

        failure.resolved = True
        failure.resolvedAt = timeMachine.now
        self.session.commit()
        logger.info(f"Failed event {failureId} resolved")
        return True
