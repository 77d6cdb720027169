# affiliate_system/events/event_bus.py
"""
Event bus for notification-worthy engine events.

Services emit only after their transaction is committed, so a handler
never sees data that may still be rolled back.
"""
from typing import Dict, List, Callable, Any
import logging
import asyncio

logger = logging.getLogger(__name__)


class EventBus:
    """In-process publish/subscribe, one instance per process."""

    _instance = None
    _handlers: Dict[str, List[Callable]] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._handlers = {}
        return cls._instance

    def subscribe(self, eventName: str, handler: Callable):
        self._handlers.setdefault(eventName, [])
        if handler in self._handlers[eventName]:
            return
        self._handlers[eventName].append(handler)
        logger.debug(f"Handler {handler.__name__} subscribed to {eventName}")

    def unsubscribe(self, eventName: str, handler: Callable):
        if eventName in self._handlers and handler in self._handlers[eventName]:
            self._handlers[eventName].remove(handler)
            logger.debug(f"Handler {handler.__name__} unsubscribed from {eventName}")

    async def emit(self, eventName: str, data: Dict[str, Any]):
        """Emit event to all subscribers. A failing handler does not stop the others."""
        handlers = self._handlers.get(eventName)
        if not handlers:
            return

        logger.debug(f"Emitting event {eventName} with data: {data}")

        for handler in list(handlers):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(data)
                else:
                    handler(data)
            except Exception as e:
                logger.error(f"Error in handler {handler.__name__} for event {eventName}: {e}", exc_info=True)

    def clear(self):
        """Clear all event handlers."""
        self._handlers.clear()


# Global event bus instance
eventBus = EventBus()


class AffiliateEvents:
    """Events emitted by the compensation engine."""

    PURCHASE_PROCESSED = "purchase.processed"
    COMMISSION_CREATED = "commission.created"

    GHOST_BV_GRANTED = "ghost_bv.granted"
    GHOST_BV_EXPIRED = "ghost_bv.expired"

    RANK_PROMOTED = "rank.promoted"
    RANK_ASSIGNED = "rank.assigned"

    LEADERSHIP_POOL_DISTRIBUTED = "leadership_pool.distributed"

    SETTLEMENT_CALCULATED = "settlement.calculated"
    SETTLEMENT_CLAIMABLE = "settlement.claimable"
    SETTLEMENT_CLAIMED = "settlement.claimed"

    EVENT_FAILED = "event.failed"
