"""
Agent Service - Lifecycle wiring for one Stamn agent.

Owns the world cache, connection client, tools, decision engine and
scheduler. Inbound events flow from the client into the cache and, for
notable events, into a reactive scheduler trigger. One service per agent
per process.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .agent_tools import AgentTools
from .config import ServiceConfig
from .decision_engine import Decision, DecisionEngine, create_decision_engine
from .errors import ConfigurationError
from .models import (
    ConnectionState,
    LandClaimDeniedPayload,
    LandClaimedPayload,
    LandTradeCompletePayload,
    ServerCommandPayload,
    TransferReceivedPayload,
    WorldEvent,
    WorldSnapshot,
)
from .prompts import build_prompt
from .scheduler import ActionScheduler
from .status import StatusRecord, remove_status_file, utc_now_iso, write_status_file
from .world_state import WorldStateCache
from .ws_client import SHUTDOWN_COMMAND, ConnectionClient, WorldEventHandler

logger = logging.getLogger(__name__)


class AgentService(WorldEventHandler):
    """
    Starts and stops the agent and bridges inbound events.

    The service is the only writer of the world cache.
    """

    def __init__(
        self,
        config: ServiceConfig,
        engine: Optional[DecisionEngine] = None,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
    ):
        self.config = config
        self.world = WorldStateCache(max_events=config.max_events, event_ttl=config.event_ttl)
        self.client = ConnectionClient(
            server_url=config.server_url,
            api_key=config.api_key,
            agent_id=config.agent_id,
            handler=self,
            heartbeat_interval=config.heartbeat_interval,
            heartbeat_timeout_multiplier=config.heartbeat_timeout_multiplier,
            claim_timeout=config.claim_timeout,
            auth_timeout=config.auth_timeout,
            reconnect_base_delay=config.reconnect_base_delay,
            reconnect_max_delay=config.reconnect_max_delay,
            connect=connect,
        )
        self.tools = AgentTools(self.client, self.world)
        self.engine = engine
        self.scheduler: Optional[ActionScheduler] = None

        self.last_decision: Optional[Decision] = None
        self.connected_at: Optional[str] = None
        self.disconnected_at: Optional[str] = None

        self._running = False
        self._stopped = asyncio.Event()
        self._stop_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """
        Validate config, then start the connection and the scheduler.

        Raises:
            ConfigurationError: credentials missing; nothing is started.
            RuntimeError: the service was already stopped; build a new one.
        """
        if self._running:
            return
        if self.client.state is ConnectionState.CLOSED:
            raise RuntimeError("Stamn agent was stopped and cannot be restarted")
        try:
            self.config.validate()
        except ConfigurationError as e:
            logger.warning(str(e))
            raise

        if self.engine is None:
            try:
                self.engine = create_decision_engine(self.config, self.tools)
            except ConfigurationError as e:
                logger.warning(f"{e} Autonomous loop disabled.")

        if self.engine is not None:
            self.scheduler = ActionScheduler(
                decide=self._decide,
                is_connected=lambda: self.client.is_connected,
                interval=self.config.autonomous_interval,
                warmup=self.config.warmup_delay,
                debounce=self.config.debounce_window,
            )

        self._running = True
        self._stopped.clear()
        logger.info(f"Starting Stamn agent {self.config.display_name} -> {self.config.server_url}")
        self.client.start()
        if self.scheduler is not None:
            self.scheduler.start()

    async def stop(self) -> None:
        """Stop timers and connection, clear world state, remove the status file."""
        if not self._running:
            return
        self._running = False

        if self.scheduler is not None:
            await self.scheduler.stop()
        await self.client.stop()
        self.world.clear()
        remove_status_file(self.config.status_path)
        self._stopped.set()
        logger.info("Stamn agent stopped")

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    async def _decide(self) -> None:
        """One decision step: snapshot + events -> prompt -> engine."""
        prompt = build_prompt(self.world.get_world(), self.world.get_recent_events())
        self.last_decision = await self.engine.decide(prompt)

    def _record_event(self, event_type: str, summary: str) -> None:
        self.world.push_event(WorldEvent(type=event_type, summary=summary))
        if self.scheduler is not None:
            self.scheduler.trigger_reactive(event_type)

    def _write_status(self, connected: bool) -> None:
        write_status_file(self.config.status_path, StatusRecord(
            connected=connected,
            agent_id=self.config.agent_id,
            agent_name=self.config.agent_name or None,
            server_url=self.config.server_url,
            connected_at=self.connected_at if connected else None,
            disconnected_at=None if connected else self.disconnected_at,
        ))

    # ==================== Event Handlers ====================

    def on_connected(self) -> None:
        logger.info(f'Stamn agent "{self.config.display_name}" connected to world')
        self.connected_at = utc_now_iso()
        self._write_status(connected=True)

    def on_disconnected(self, reason: str) -> None:
        logger.warning(f"Stamn agent disconnected from world ({reason})")
        self.disconnected_at = utc_now_iso()
        self._write_status(connected=False)

    def on_world_update(self, snapshot: WorldSnapshot) -> None:
        self.world.update_world(snapshot)
        logger.debug(
            f"World update: pos=({snapshot.position.x}, {snapshot.position.y}), "
            f"balance={snapshot.balance_cents}, nearby={len(snapshot.nearby_agents)}"
        )

    def on_land_claimed(self, payload: LandClaimedPayload) -> None:
        logger.info(f"Land claimed at ({payload.x}, {payload.y})")
        if payload.agent_id and payload.agent_id != self.config.agent_id:
            summary = f"Agent {payload.agent_id} claimed land at ({payload.x}, {payload.y})"
        else:
            summary = f"You claimed land at ({payload.x}, {payload.y})"
        self._record_event("land_claimed", summary)

    def on_land_claim_denied(self, payload: LandClaimDeniedPayload) -> None:
        logger.warning(f"Land claim denied: {payload.reason} ({payload.code})")
        self._record_event("land_claim_denied", f"Land claim denied: {payload.reason}")

    def on_land_trade_complete(self, payload: LandTradeCompletePayload) -> None:
        logger.info(
            f"Land trade complete: ({payload.x}, {payload.y}) "
            f"from {payload.from_agent_id} to {payload.to_agent_id}"
        )
        self._record_event(
            "land_trade",
            f"Land ({payload.x}, {payload.y}) traded: {payload.from_agent_id} → "
            f"{payload.to_agent_id} for {payload.price_cents} cents",
        )

    def on_transfer_received(self, payload: TransferReceivedPayload) -> None:
        # Transfers arrive in micro-units of the currency
        amount = f"{payload.amount_cents / 1_000_000:.2f}"
        logger.info(
            f"Transfer received: ${amount} {payload.currency} from {payload.from_agent_name} "
            f'- "{payload.description}"'
        )
        self._record_event(
            "transfer_received",
            f'Received ${amount} from {payload.from_agent_name}: "{payload.description}"',
        )

    def on_server_command(self, payload: ServerCommandPayload) -> None:
        if payload.command == SHUTDOWN_COMMAND:
            logger.warning("Server requested shutdown")
            self._stop_task = asyncio.get_running_loop().create_task(self.stop())

    # ==================== State Access ====================

    def get_status(self) -> dict:
        """Status for the CLI and status API."""
        return {
            "connected": self.client.is_connected,
            "state": self.client.state.value,
            "agentId": self.config.agent_id,
            "agentName": self.config.agent_name or None,
            "serverUrl": self.config.server_url,
            "connectedAt": self.connected_at,
            "disconnectedAt": self.disconnected_at,
            "scheduler": self.scheduler.get_stats() if self.scheduler else None,
            "world": self.world.get_summary(),
        }
