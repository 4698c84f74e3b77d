"""
Event System Module

Publish/subscribe dispatcher used as the audit sink of the engine. Each
loan state transition is published here; handlers run synchronously but
their failures are logged and never propagate back into the engine.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock

from .logging_config import get_logger, log_action


class DomainEvent(Enum):
    """Domain events raised by the loan engine"""

    # Loan lifecycle events
    LOAN_CREATED = "loan.created"
    LOAN_APPROVED = "loan.approved"
    LOAN_REJECTED = "loan.rejected"
    LOAN_DISBURSED = "loan.disbursed"
    LOAN_CLOSED = "loan.closed"

    # Repayment events
    INSTALLMENT_PAID = "installment.paid"
    INSTALLMENT_PARTIALLY_PAID = "installment.partially_paid"
    PAYMENT_OVERPAID = "payment.overpaid"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        """Create from dictionary"""
        return cls(
            event_type=DomainEvent(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            data=data['data'],
            timestamp=datetime.fromisoformat(data['timestamp']) if isinstance(data['timestamp'], str) else data['timestamp'],
            event_id=data['event_id']
        )


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventDispatcher:
    """Central event dispatcher - publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = get_logger("loan_engine.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to every event type"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def subscribe_all_once(self, handler: Callable) -> bool:
        """
        Subscribe to every event type unless a global handler of the same
        class is already subscribed

        Returns:
            True if the handler was added
        """
        with self._lock:
            if any(type(existing) is type(handler) for existing in self._global_handlers):
                return False
            self.subscribe_all(handler)
            return True

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
                self.logger.debug(f"Unsubscribed handler {_handler_name(handler)} from {event_type.value}")
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # Log but don't break the main operation
                self.logger.error(
                    f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}"
                )

    def emit(self, event_type: DomainEvent, entity_type: str, entity_id: str,
             data: Optional[Dict[str, Any]] = None) -> EventPayload:
        """Build and publish an event in one call"""
        event = EventPayload(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            data=data or {}
        )
        self.publish(event)
        return event

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


class AuditLogHandler:
    """Writes every domain event to the audit logger as a structured record"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger("loan_engine.audit")
        self.__name__ = "audit_log_handler"

    def __call__(self, event: EventPayload) -> None:
        log_action(
            self.logger,
            "info",
            f"{event.event_type.value} {event.entity_type}:{event.entity_id}",
            action=event.event_type.value,
            resource=f"{event.entity_type}:{event.entity_id}",
            correlation_id=event.event_id,
            extra=event.data
        )
