"""
World State Cache - Holds the latest world snapshot and recent events.

Single owner: only the agent service writes here. Readers (scheduler,
tools, status API) go through the accessors and never mutate.
"""

import logging
import time
from typing import Callable, Optional

from .models import WorldEvent, WorldSnapshot

logger = logging.getLogger(__name__)

MAX_EVENTS = 20
EVENT_TTL = 5 * 60  # seconds


class WorldStateCache:
    """
    The world as last observed.

    The snapshot is replaced atomically on every update. The event log is
    bounded by count and by age; both bounds are applied on every push and
    every read.
    """

    def __init__(
        self,
        max_events: int = MAX_EVENTS,
        event_ttl: float = EVENT_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.max_events = max_events
        self.event_ttl = event_ttl
        self._clock = clock

        self._world: Optional[WorldSnapshot] = None
        self._events: list[WorldEvent] = []

    def update_world(self, snapshot: WorldSnapshot) -> None:
        """Replace the current snapshot. Last write wins."""
        self._world = snapshot

    def get_world(self) -> Optional[WorldSnapshot]:
        """Current snapshot, or None before the first update."""
        return self._world

    def push_event(self, event: WorldEvent) -> None:
        """Append an event, then prune by age and count."""
        self._events.append(event)
        self._events = self._unexpired()[-self.max_events:]

    def get_recent_events(self) -> list[WorldEvent]:
        """Events not yet expired, oldest first."""
        self._events = self._unexpired()
        return list(self._events)

    def clear(self) -> None:
        """Drop the snapshot and the event log."""
        self._world = None
        self._events = []
        logger.debug("World state cleared")

    def _unexpired(self) -> list[WorldEvent]:
        cutoff = self._clock() - self.event_ttl
        return [e for e in self._events if e.timestamp > cutoff]

    def get_summary(self) -> dict:
        """Compact summary for status output."""
        world = self._world
        if world is None:
            return {"world": None, "events": len(self._events)}
        return {
            "position": {"x": world.position.x, "y": world.position.y},
            "balance_cents": world.balance_cents,
            "owned_land": len(world.owned_land),
            "nearby_agents": len(world.nearby_agents),
            "events": len(self.get_recent_events()),
        }
