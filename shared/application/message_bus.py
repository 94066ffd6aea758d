"""
Message Bus

Routes committed domain events to in-process handlers. Apps register
their handlers from ``AppConfig.ready()``; a handler that needs real
work done (a payout, an email) hands it off to Celery or a service that
never raises.
"""

from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Type
import logging

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)

Handler = Callable[[DomainEvent], None]


class MessageBus:
    """Event type to handlers registry (1:N)"""

    def __init__(self):
        self._subscribers: Dict[Type[DomainEvent], List[Handler]] = defaultdict(list)

    def register_event_handler(self, event_type: Type[DomainEvent], handler: Handler):
        """Subscribe ``handler`` to ``event_type``; repeated registration is ignored."""
        subscribers = self._subscribers[event_type]
        if handler not in subscribers:
            subscribers.append(handler)

    def handlers_for(self, event_type: Type[DomainEvent]) -> List[Handler]:
        return list(self._subscribers.get(event_type, ()))

    def publish_events(self, events: Iterable[DomainEvent]):
        """
        Deliver each event to every subscriber in registration order.

        A failing handler is logged and does not stop the others.
        """
        for event in events:
            name = type(event).__name__
            handlers = self.handlers_for(type(event))
            if not handlers:
                logger.debug(f"No handlers for {name}")
                continue
            logger.info(f"Dispatching {name} (aggregate {event.aggregate_id}) to {len(handlers)} handler(s)")
            for handler in handlers:
                try:
                    handler(event)
                except Exception:
                    logger.exception(f"Handler {handler.__name__} failed for {name}")


message_bus = MessageBus()
