"""
Step-transition events emitted by the per-account controllers.

Protocol code only emits structured events; presentation (logs, dashboards,
console narration) subscribes to them.
"""
import logging
import threading
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepEvent:
    """
    A single controller state transition.

    Attributes:
        account: Delegated account the controller serves
        state: Controller state entered (``ControllerState`` value)
        step: Human-readable step name, e.g. ``authorize(0x...)``
        nonce: Batch nonce known at the time, if any
        tx_hash: Transaction involved in the step, if any
        detail: Free-form structured details
        timestamp: When the transition happened (UTC)
    """
    account: str
    state: str
    step: Optional[str] = None
    nonce: Optional[int] = None
    tx_hash: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


Subscriber = Callable[[StepEvent], None]


class EventEmitter:
    """Thread-safe fan-out of ``StepEvent`` to subscribers"""

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Subscriber:
        """Register ``subscriber``; returns it so it can be used as a decorator"""
        with self._lock:
            self._subscribers.append(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def emit(self, event: StepEvent) -> None:
        """
        Deliver ``event`` to every subscriber.

        A subscriber that raises is logged and skipped; observers never
        interrupt the protocol.
        """
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception as e:
                logger.error(f"Event subscriber {subscriber!r} failed on {event.state}: {e}")


class LoggingSubscriber:
    """Writes step events to a standard logger"""

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.logger = logger or logging.getLogger("batchrelay_sdk.steps")
        self.level = level

    def __call__(self, event: StepEvent) -> None:
        parts = [f"[{event.account}] {event.state}"]
        if event.step:
            parts.append(f"step={event.step}")
        if event.nonce is not None:
            parts.append(f"nonce={event.nonce}")
        if event.tx_hash:
            parts.append(f"tx={event.tx_hash}")
        for key, value in event.detail.items():
            parts.append(f"{key}={value}")
        self.logger.log(self.level, " ".join(parts))
