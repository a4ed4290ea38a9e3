"""
Action Scheduler - Decides when to ask the decision engine for a move.

Periodic ticks run on a single timer task after a warm-up delay. Reactive
ticks are debounced: a trigger arriving within the debounce window of the
last tick is dropped, not queued. At most one decision runs at a time.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60.0
DEFAULT_WARMUP = 10.0
DEFAULT_DEBOUNCE = 10.0


class ActionScheduler:
    """
    Periodic plus debounced-reactive tick driver.

    One scheduler per agent. `decide` is the external decision step; its
    failures are logged and never stop the timer.
    """

    def __init__(
        self,
        decide: Callable[[], Awaitable[object]],
        is_connected: Callable[[], bool],
        interval: float = DEFAULT_INTERVAL,
        warmup: float = DEFAULT_WARMUP,
        debounce: float = DEFAULT_DEBOUNCE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._decide = decide
        self._is_connected = is_connected
        self.interval = interval
        self.warmup = warmup
        self.debounce = debounce
        self._clock = clock

        self._timer_task: Optional[asyncio.Task] = None
        self._tick_tasks: set[asyncio.Task] = set()
        self._running = False
        self._in_flight = False
        self._last_tick: Optional[float] = None

        # Stats
        self.ticks_run = 0
        self.ticks_skipped = 0
        self.triggers_dropped = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_tick(self) -> Optional[float]:
        return self._last_tick

    def start(self) -> None:
        """Start the warm-up delay followed by the periodic timer."""
        if self._running:
            return
        self._running = True
        self._timer_task = asyncio.create_task(self._periodic(), name="stamn-scheduler")
        logger.info(
            f"Autonomous loop starting (every {self.interval:g}s after {self.warmup:g}s warm-up)"
        )

    async def stop(self) -> None:
        """Cancel the timer and warm-up. In-flight decisions finish on their own."""
        if not self._running:
            return
        self._running = False
        task = self._timer_task
        self._timer_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Autonomous loop stopped")

    async def _periodic(self) -> None:
        # Fixed rate: a long decision never delays the next evaluation
        await asyncio.sleep(self.warmup)
        while self._running:
            self._track(asyncio.create_task(self.tick("periodic")))
            await asyncio.sleep(self.interval)

    def _track(self, task: asyncio.Task) -> None:
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)

    def trigger_reactive(self, reason: str = "event") -> Optional[asyncio.Task]:
        """
        Ask for a tick in response to an inbound event.

        Returns the task running the tick, or None when the trigger was
        dropped by the debounce window or because a tick is in flight.
        """
        if not self._running:
            return None
        if self._in_flight or self._within_debounce():
            self.triggers_dropped += 1
            logger.debug(f"Reactive trigger dropped ({reason})")
            return None

        # Claim the slot now so a second trigger in the same loop turn is dropped
        self._last_tick = self._clock()
        task = asyncio.create_task(self.tick(f"reactive: {reason}", debounced=True))
        self._track(task)
        return task

    def _within_debounce(self) -> bool:
        if self._last_tick is None:
            return False
        return self._clock() - self._last_tick < self.debounce

    async def tick(self, reason: str = "manual", debounced: bool = False) -> bool:
        """
        Run one decision if connected and nothing else is in flight.

        Returns True when the decision step was invoked. Every fired tick
        restarts the debounce window, including ones skipped here.
        """
        if not debounced:
            self._last_tick = self._clock()
        if self._in_flight:
            self.ticks_skipped += 1
            logger.debug(f"Skipping tick ({reason}): decision already in flight")
            return False
        if not self._is_connected():
            self.ticks_skipped += 1
            logger.debug(f"Skipping tick ({reason}): not connected")
            return False

        self._in_flight = True
        self.ticks_run += 1
        logger.debug(f"Tick ({reason})")
        try:
            await self._decide()
        except Exception as e:
            self.failures += 1
            logger.warning(f"Autonomous loop: {e}")
        finally:
            self._in_flight = False
        return True

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "ticks_run": self.ticks_run,
            "ticks_skipped": self.ticks_skipped,
            "triggers_dropped": self.triggers_dropped,
            "failures": self.failures,
        }
