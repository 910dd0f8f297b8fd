"""
cachewatch - Probe progress events
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .core import ProbeResult, UsageSample

logger = logging.getLogger(__name__)


class EventStatus(Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ProbeEvent:
    """Progress notification for one probe of one model"""
    model_id: str
    display_name: str
    probe_name: str
    status: EventStatus
    progress: float = 0.0
    result: Optional[ProbeResult] = None
    request_payload: Optional[Dict[str, Any]] = None
    response_usage: Optional[UsageSample] = None
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "display_name": self.display_name,
            "probe_name": self.probe_name,
            "status": self.status.value,
            "progress": self.progress,
            "result": self.result.to_dict() if self.result else None,
            "request_payload": self.request_payload,
            "response_usage": self.response_usage.to_dict() if self.response_usage else None,
            "error_message": self.error_message,
            "timestamp": self.timestamp.isoformat(),
        }


Subscriber = Callable[[ProbeEvent], None]


class EventBus:
    """Fan-out of ProbeEvents to synchronous subscribers"""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: ProbeEvent):
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                # A broken listener must not abort the model run
                logger.exception("Event subscriber %r failed on %s/%s",
                                 callback, event.model_id, event.probe_name)
