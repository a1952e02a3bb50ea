"""In-process fan-out of lifecycle events to connected subscribers, grouped by room."""
from __future__ import annotations
import asyncio
import logging
from asyncio import QueueEmpty
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Set, Tuple

from .config import get_settings

logger = logging.getLogger(__name__)

ADMIN_GROUP = "admin"

QR_NEW = "qr:new"
QR_CONSUMED = "qr:consumed"
SCAN_LOGGED = "scan:logged"
DASHBOARD_RESET = "dashboard:reset"

Relay = Callable[[str, str, Dict[str, Any]], Awaitable[None]]

def display_group(display_id: str) -> str:
    return f"display:{display_id}"

@dataclass(eq=False)
class Subscription:
    groups: Tuple[str, ...]
    queue: "asyncio.Queue[Dict[str, Any]]"

class BroadcastHub:
    """
    publish() never suspends the caller and never fails it: with nobody
    listening the event is dropped, and a subscriber that falls behind loses
    its oldest queued event. There is no replay; clients resync by pulling
    current state.
    """

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._groups: Dict[str, Set[Subscription]] = {}
        self._relays: List[Relay] = []
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, *groups: str) -> Subscription:
        sub = Subscription(groups=tuple(groups), queue=asyncio.Queue(maxsize=self._queue_size))
        for g in sub.groups:
            self._groups.setdefault(g, set()).add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        for g in sub.groups:
            members = self._groups.get(g)
            if members is None:
                continue
            members.discard(sub)
            if not members:
                del self._groups[g]

    def subscriber_count(self, group: str) -> int:
        return len(self._groups.get(group, ()))

    def add_relay(self, relay: Relay) -> None:
        self._relays.append(relay)

    def clear_relays(self) -> None:
        self._relays.clear()

    def publish(self, group: str, event: str, payload: Dict[str, Any] | None = None) -> int:
        message = {"event": event, "data": payload or {}}
        delivered = 0
        for sub in list(self._groups.get(group, ())):
            try:
                if sub.queue.full():
                    try:
                        sub.queue.get_nowait()
                    except QueueEmpty:
                        pass
                sub.queue.put_nowait(message)
                delivered += 1
            except Exception as e:
                logger.warning("Failed to deliver %s to a %s subscriber: %s", event, group, e)
        if self._relays:
            self._schedule_relays(group, event, message["data"])
        return delivered

    def _schedule_relays(self, group: str, event: str, data: Dict[str, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; skipping relays for %s", event)
            return
        for relay in self._relays:
            task = loop.create_task(relay(group, event, data))
            self._tasks.add(task)
            task.add_done_callback(self._relay_done)

    def _relay_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Broadcast relay failed: %s", exc)

hub = BroadcastHub(queue_size=get_settings().subscriber_queue_size)
