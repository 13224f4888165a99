# affiliate_system/events/event_bus.py
"""
In-process notifications. Admin alerts, emails and analytics subscribe here;
the core only emits, and only for state that is already committed.
"""
from collections import defaultdict
from typing import Dict, List, Callable, Any
import inspect
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """Handler failures are logged and never reach the emitter."""

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)

    def subscribe(self, eventName: str, handler: Callable):
        self._handlers[eventName].append(handler)
        logger.debug(f"{getattr(handler, '__name__', handler)!s} subscribed to {eventName}")

    async def emit(self, eventName: str, data: Dict[str, Any]):
        handlers = list(self._handlers.get(eventName, ()))
        if not handlers:
            return

        logger.debug(f"{eventName} -> {len(handlers)} handler(s): {data}")
        for handler in handlers:
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Handler {getattr(handler, '__name__', handler)!s} failed on {eventName}: {e}",
                             exc_info=True)

    def clear(self):
        self._handlers.clear()


# Shared by every service in the process
eventBus = EventBus()


class AffiliateEvents:
    """Event names emitted by the tracking core."""

    VISIT_RECORDED = "visit.recorded"
    CLICK_TRACKED = "click.tracked"
    CLICK_MERCHANT_UNKNOWN = "click.merchant_unknown"

    CONVERSION_CREATED = "conversion.created"
    CONVERSION_CONFIRMED = "conversion.confirmed"
    CONVERSION_PAID = "conversion.paid"
    CONVERSION_CANCELLED = "conversion.cancelled"

    COMMISSION_CONFIGURATION_ERROR = "commission.configuration_error"
    TIER_CHANGED = "tier.changed"

    CASHBACK_CREDITED = "cashback.credited"
    CASHBACK_CLAWED_BACK = "cashback.clawed_back"

    FRAUD_FLAGGED = "fraud.flagged"
