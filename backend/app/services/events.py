import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionEvent:
    """A plan or payout status change. beneficiary_id is None for plan-level transitions."""
    plan_id: uuid.UUID
    status: str
    amount: int
    beneficiary_id: str | None = None
    error_kind: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "plan_id": str(self.plan_id),
            "beneficiary_id": self.beneficiary_id,
            "status": self.status,
            "amount": self.amount,
            "error_kind": self.error_kind,
            "occurred_at": self.occurred_at.isoformat(),
        }


Subscriber = Callable[[TransitionEvent], Union[None, Awaitable[None]]]


class EventBus:
    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def publish(self, event: TransitionEvent) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if result is not None:
                    await result
            except Exception:
                # Subscribers never interrupt a dispatch.
                logger.exception(f"Subscriber {callback!r} failed for plan {event.plan_id}")


def log_transition(event: TransitionEvent) -> None:
    level = logging.WARNING if event.error_kind else logging.INFO
    logger.log(level, "royalty transition %s", event.to_dict(), extra={"transition": event.to_dict()})
