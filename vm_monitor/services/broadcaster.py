"""Subscriber registry and event fan-out.

Events pushed to subscribers:
- vm-info: IdentitySnapshot, once per connection, before any other event
- stats: SystemStats, every tick
- processes: top process list, every tick, right after stats
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional, Set

import structlog
from fastapi import WebSocket

from vm_monitor.models.stats import dump_processes
from vm_monitor.models.vm_info import FALLBACK_IP, IdentitySnapshot
from vm_monitor.services.aggregator import Snapshot

log = structlog.get_logger()

EVENT_VM_INFO = "vm-info"
EVENT_STATS = "stats"
EVENT_PROCESSES = "processes"


class Subscriber:
    """A connected client that receives pushed events."""

    def __init__(self, subscriber_id: Optional[str] = None) -> None:
        self.id = subscriber_id or uuid.uuid4().hex

    async def send(self, event: str, payload: Any) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"


class WebSocketSubscriber(Subscriber):
    """Subscriber on a WebSocket connection; one JSON text frame per event."""

    def __init__(self, websocket: WebSocket, subscriber_id: Optional[str] = None) -> None:
        super().__init__(subscriber_id)
        self.websocket = websocket

    async def send(self, event: str, payload: Any) -> None:
        await self.websocket.send_json({"event": event, "data": payload})


class SubscriptionManager:
    """Owns the set of live subscribers; all mutation goes through join/leave."""

    def __init__(self) -> None:
        self._subscribers: Set[Subscriber] = set()
        self._lock = asyncio.Lock()

    @property
    def count(self) -> int:
        return len(self._subscribers)

    async def join(self, subscriber: Subscriber) -> None:
        async with self._lock:
            self._subscribers.add(subscriber)
            count = len(self._subscribers)
        log.info("subscriber_joined", subscriber=subscriber.id, count=count)

    async def leave(self, subscriber: Subscriber) -> None:
        async with self._lock:
            if subscriber not in self._subscribers:
                return
            self._subscribers.discard(subscriber)
            count = len(self._subscribers)
        log.info("subscriber_left", subscriber=subscriber.id, count=count)

    async def snapshot(self) -> List[Subscriber]:
        """Return a copy of the current subscribers, safe to iterate while others join or leave."""
        async with self._lock:
            return list(self._subscribers)


def build_identity(os_info: Dict[str, Any], interfaces: List[Dict[str, Any]]) -> IdentitySnapshot:
    """Build the vm-info payload from OS identity and the interface list."""
    main_interface = next(
        (iface for iface in interfaces if not iface.get("internal") and iface.get("ip4")),
        None,
    )
    return IdentitySnapshot(
        instance_id=os_info["hostname"],
        ip=main_interface["ip4"] if main_interface else FALLBACK_IP,
        os=f"{os_info['distro']} {os_info['release']}",
        kernel=os_info["kernel"],
    )


class Broadcaster:
    """Delivers per-tick snapshots to every subscriber and vm-info to new ones."""

    def __init__(self, subscriptions: SubscriptionManager) -> None:
        self.subscriptions = subscriptions

    async def publish(self, snapshot: Snapshot) -> int:
        """
        Push one tick's stats and processes to all current subscribers.

        Delivery is fire-and-forget: a subscriber whose send fails is dropped,
        nothing is retried. Returns the number of subscribers reached.
        """
        subscribers = await self.subscriptions.snapshot()
        if not subscribers:
            return 0

        stats = snapshot.stats.model_dump(mode="json", by_alias=True)
        processes = dump_processes(snapshot.processes)

        results = await asyncio.gather(
            *(self._deliver(subscriber, stats, processes) for subscriber in subscribers)
        )
        return sum(1 for delivered in results if delivered)

    async def _deliver(
        self,
        subscriber: Subscriber,
        stats: Dict[str, Any],
        processes: List[Dict[str, Any]],
    ) -> bool:
        try:
            await subscriber.send(EVENT_STATS, stats)
            await subscriber.send(EVENT_PROCESSES, processes)
        except Exception as exc:
            log.info("subscriber_send_failed", subscriber=subscriber.id, error=repr(exc))
            await self.subscriptions.leave(subscriber)
            return False
        return True

    async def send_onboarding(self, subscriber: Subscriber, source: Any) -> Optional[IdentitySnapshot]:
        """
        Query the host identity once and send it to `subscriber` only.

        If the identity query fails the subscriber gets no vm-info for this
        connection; None is returned and the failure is only logged.
        """
        try:
            os_info, interfaces = await asyncio.gather(
                source.os_info(),
                source.network_interfaces(),
            )
            identity = build_identity(os_info, list(interfaces or []))
        except Exception as exc:
            log.warning("onboarding_query_failed", subscriber=subscriber.id, error=repr(exc))
            return None

        try:
            await subscriber.send(EVENT_VM_INFO, identity.model_dump(mode="json", by_alias=True))
        except Exception as exc:
            log.info("subscriber_send_failed", subscriber=subscriber.id, error=repr(exc))
            return None
        return identity
