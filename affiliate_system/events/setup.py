# affiliate_system/events/setup.py
"""
Persists Notification rows for user-facing engine events.
Delivery of notifications is handled elsewhere.
"""
import logging

from models import Notification
from affiliate_system.events.event_bus import eventBus, AffiliateEvents

logger = logging.getLogger(__name__)


def _commissionText(data):
    return f"New {data['type']} commission: ${data['amount']}"


def _promotionText(data):
    return f"Congratulations! You have been promoted to {data['newRank']}"


def _claimableText(data):
    return f"Your settlement for the week of {data['weekStart']} is ready to claim: ${data['grandTotal']}"


def _claimedText(data):
    return f"Settlement for the week of {data['weekStart']} claimed: ${data['grandTotal']}"


NOTIFICATION_RULES = {
    AffiliateEvents.COMMISSION_CREATED: ("commission", "normal", _commissionText),
    AffiliateEvents.RANK_PROMOTED: ("rank", "high", _promotionText),
    AffiliateEvents.RANK_ASSIGNED: ("rank", "high", _promotionText),
    AffiliateEvents.SETTLEMENT_CLAIMABLE: ("settlement", "high", _claimableText),
    AffiliateEvents.SETTLEMENT_CLAIMED: ("settlement", "normal", _claimedText),
}


def setupEventHandlers(sessionFactory):
    """Subscribe notification writers; returns the handlers for unsubscribe."""
    subscribed = {}

    for eventName, (category, importance, render) in NOTIFICATION_RULES.items():

        def handler(data, eventName=eventName, category=category, importance=importance, render=render):
            with sessionFactory() as session:
                session.add(Notification(
                    source=eventName,
                    userID=data["userId"],
                    category=category,
                    importance=importance,
                    text=render(data),
                    payload={k: str(v) for k, v in data.items()},
                ))
                session.commit()

        handler.__name__ = f"notify_{category}_{eventName.split('.')[-1]}"
        eventBus.subscribe(eventName, handler)
        subscribed[eventName] = handler

    logger.info(f"Notification handlers subscribed for {len(subscribed)} events")
    return subscribed
