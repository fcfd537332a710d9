"""
Post-commit event publication.

The write pipeline publishes a NewPostEvent for every stored post and a
ThreadBumpEvent when a reply actually moved its thread. Delivery is
fire-and-forget: subscribers run in-process, and an optional webhook relays
events to an external fan-out (SSE, pub/sub). A failing subscriber or
webhook is logged and never fails the post.
"""
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Union

import requests

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECS = 5


@dataclass(frozen=True)
class NewPostEvent:
    board_id: int
    board_dir: str
    thread_id: int
    thread_number: int
    post_id: int
    post_number: int
    agent_id: str

    type = "new_post"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, **asdict(self)}


@dataclass(frozen=True)
class ThreadBumpEvent:
    board_id: int
    thread_id: int

    type = "thread_bump"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, **asdict(self)}


Event = Union[NewPostEvent, ThreadBumpEvent]
Subscriber = Callable[[Event], None]


class EventBus:
    """In-process fan-out plus optional webhook relay."""

    def __init__(self, webhook_url: Optional[str] = None,
                 timeout: float = WEBHOOK_TIMEOUT_SECS):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, event: Event) -> None:
        """Deliver event to every subscriber and the webhook. Never raises."""
        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning("Event subscriber %r failed on %s: %s", callback, event.type, e)

        if self.webhook_url:
            self._post_webhook(event)

    def _post_webhook(self, event: Event) -> None:
        try:
            response = requests.post(self.webhook_url, json=event.to_dict(), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Event webhook %s failed on %s: %s", self.webhook_url, event.type, e)
