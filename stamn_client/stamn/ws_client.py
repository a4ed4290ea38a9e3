"""
WebSocket Client - Long-lived connection to the Stamn world server.

Owns the transport, authentication handshake, heartbeats, auto-reconnect,
inbound dispatch, and correlation of claim requests with their server
confirmation or denial. One client per agent; all state lives on the
event loop that runs it.
"""

import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import (
    ActionDenied,
    ConnectionLostError,
    ProtocolError,
    RequestTimeout,
    TransportError,
)
from .models import (
    ClaimResult,
    ConnectionState,
    LandClaimDeniedPayload,
    LandClaimedPayload,
    LandTradeCompletePayload,
    MoveDirection,
    ServerCommandPayload,
    SpendRequest,
    TransferReceivedPayload,
    WorldSnapshot,
)
from .protocol import Frame, Inbound, Outbound, decode_frame, encode_frame

logger = logging.getLogger(__name__)


# Legal state transitions. Anything else is a bug.
TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING, ConnectionState.CLOSED},
    ConnectionState.CONNECTING: {
        ConnectionState.AUTHENTICATING,
        ConnectionState.RECONNECTING,
        ConnectionState.CLOSED,
    },
    ConnectionState.AUTHENTICATING: {
        ConnectionState.CONNECTED,
        ConnectionState.RECONNECTING,
        ConnectionState.CLOSED,
    },
    ConnectionState.CONNECTED: {ConnectionState.RECONNECTING, ConnectionState.CLOSED},
    ConnectionState.RECONNECTING: {ConnectionState.CONNECTING, ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),
}

SHUTDOWN_COMMAND = "shutdown"


class WorldEventHandler:
    """
    Observer for everything the client reports.

    One method per inbound message kind plus the two lifecycle hooks.
    Methods are called synchronously on the event loop, in receipt order.
    The defaults do nothing.
    """

    def on_connected(self) -> None:
        pass

    def on_disconnected(self, reason: str) -> None:
        pass

    def on_world_update(self, snapshot: WorldSnapshot) -> None:
        pass

    def on_land_claimed(self, payload: LandClaimedPayload) -> None:
        pass

    def on_land_claim_denied(self, payload: LandClaimDeniedPayload) -> None:
        pass

    def on_land_trade_complete(self, payload: LandTradeCompletePayload) -> None:
        pass

    def on_transfer_received(self, payload: TransferReceivedPayload) -> None:
        pass

    def on_server_command(self, payload: ServerCommandPayload) -> None:
        pass


@dataclass(eq=False)
class PendingClaim:
    """An outstanding claim waiting for its confirmation or denial."""
    x: int
    y: int
    future: asyncio.Future
    deadline: float
    timer: Optional[asyncio.TimerHandle] = None


ClaimOutcome = Union[ClaimResult, BaseException]


class ConnectionClient:
    """Async WebSocket client for the Stamn world server."""

    def __init__(
        self,
        server_url: str,
        api_key: str,
        agent_id: str,
        handler: Optional[WorldEventHandler] = None,
        heartbeat_interval: float = 15.0,
        heartbeat_timeout_multiplier: float = 3.0,
        claim_timeout: float = 10.0,
        auth_timeout: float = 10.0,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
    ):
        self.server_url = server_url
        self.api_key = api_key
        self.agent_id = agent_id
        self.handler = handler

        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_interval * heartbeat_timeout_multiplier
        self.claim_timeout = claim_timeout
        self.auth_timeout = auth_timeout
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay

        self._connect = connect or ws_connect
        self._ws: Optional[Any] = None
        self._state = ConnectionState.DISCONNECTED
        self._run_task: Optional[asyncio.Task] = None
        self._shutdown_requested = False
        self._reconnect_attempt = 0
        self._last_ack = 0.0
        self._position: Optional[tuple[int, int]] = None
        self._pending: list[PendingClaim] = []

        # (old, new) pairs, most recent last
        self.transitions: deque[tuple[ConnectionState, ConnectionState]] = deque(maxlen=100)

    # ==================== State ====================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def position(self) -> Optional[tuple[int, int]]:
        """Last position reported by the server."""
        return self._position

    @property
    def pending_claims(self) -> int:
        return len(self._pending)

    def _set_state(self, new: ConnectionState) -> None:
        old = self._state
        if new not in TRANSITIONS[old]:
            raise RuntimeError(f"Illegal connection transition {old.name} -> {new.name}")
        self._state = new
        self.transitions.append((old, new))
        logger.debug(f"Connection state: {old.name} -> {new.name}")

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Start connecting in the background."""
        if self._state is not ConnectionState.DISCONNECTED:
            logger.warning(f"start() ignored in state {self._state.name}")
            return
        self._run_task = asyncio.create_task(self._run(), name="stamn-connection")

    async def stop(self) -> None:
        """Close the connection for good. No reconnect afterwards."""
        if self._state is ConnectionState.CLOSED:
            return
        self._close("client stopped")

        task = self._run_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if self._ws is not None:
            await self._close_transport(self._ws)
            self._ws = None

    def _close(self, reason: str) -> None:
        self._set_state(ConnectionState.CLOSED)
        self._fail_pending(ConnectionLostError(f"Connection closed: {reason}"))
        logger.info(f"Connection closed ({reason})")

    async def _run(self) -> None:
        """Connect, serve, and reconnect until closed."""
        while self._state is not ConnectionState.CLOSED:
            self._set_state(ConnectionState.CONNECTING)
            try:
                reason = await self._connect_once()
            except Exception as e:
                logger.error(f"Unexpected connection error: {e}", exc_info=True)
                reason = f"unexpected error: {e}"

            if self._state is ConnectionState.CLOSED:
                break
            if self._shutdown_requested:
                self._close("server requested shutdown")
                break

            self._enter_reconnecting(reason)
            delay = self._next_backoff()
            logger.info(f"Reconnecting in {delay:.1f}s ({reason})")
            await asyncio.sleep(delay)

    async def _connect_once(self) -> str:
        """One connection attempt. Returns why it ended."""
        try:
            ws = await self._open_transport()
        except TransportError as e:
            logger.warning(str(e))
            return str(e)

        self._ws = ws
        try:
            self._set_state(ConnectionState.AUTHENTICATING)
            await self._authenticate(ws)

            self._set_state(ConnectionState.CONNECTED)
            self._reconnect_attempt = 0
            self._last_ack = asyncio.get_running_loop().time()
            logger.info(f"Connected to {self.server_url} as {self.agent_id}")
            self._notify("on_connected")

            return await self._run_connected(ws)
        except TransportError as e:
            logger.warning(str(e))
            return str(e)
        finally:
            self._ws = None
            await self._close_transport(ws)

    def _enter_reconnecting(self, reason: str) -> None:
        was_connected = self.is_connected
        self._set_state(ConnectionState.RECONNECTING)
        self._fail_pending(ConnectionLostError(f"Connection lost: {reason}"))
        if was_connected:
            logger.warning(f"Disconnected from world server: {reason}")
            self._notify("on_disconnected", reason)

    def _next_backoff(self) -> float:
        """Capped exponential backoff with jitter."""
        exponent = min(self._reconnect_attempt, 16)
        delay = min(self.reconnect_max_delay, self.reconnect_base_delay * (2 ** exponent))
        self._reconnect_attempt += 1
        return delay * random.uniform(0.5, 1.0)

    # ==================== Transport ====================

    async def _open_transport(self) -> Any:
        try:
            return await self._connect(self.server_url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise TransportError(f"Connect to {self.server_url} failed: {e}") from e

    async def _close_transport(self, ws: Any) -> None:
        try:
            await ws.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Error while closing transport: {e}")

    async def _send_frame(self, ws: Any, frame_type: Outbound, payload: Any = None) -> None:
        try:
            await ws.send(encode_frame(frame_type, payload))
        except (ConnectionClosed, OSError) as e:
            raise TransportError(f"Send {frame_type.value} failed: {e}") from e
        logger.debug(f"Sent: {frame_type.value}")

    async def _authenticate(self, ws: Any) -> None:
        """Send credentials and wait for the server's verdict."""
        await self._send_frame(ws, Outbound.AUTH, {
            "apiKey": self.api_key,
            "agentId": self.agent_id,
        })

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.auth_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TransportError("Authentication timed out")
            try:
                raw = await asyncio.wait_for(ws.recv(), remaining)
            except asyncio.TimeoutError:
                raise TransportError("Authentication timed out")
            except (ConnectionClosed, OSError) as e:
                raise TransportError(f"Closed during authentication: {e}") from e

            try:
                frame = decode_frame(raw)
            except ProtocolError as e:
                logger.warning(f"Dropping frame during authentication: {e}")
                continue

            if frame.type is Inbound.AUTH_OK:
                return
            if frame.type is Inbound.AUTH_ERROR:
                raise TransportError(f"Authentication rejected: {frame.payload.reason}")
            logger.debug(f"Ignoring {frame.type.value} before authentication")

    # ==================== Connected ====================

    async def _run_connected(self, ws: Any) -> str:
        """Run receive and heartbeat loops until either ends."""
        receiver = asyncio.create_task(self._receive_loop(ws))
        heartbeat = asyncio.create_task(self._heartbeat_loop(ws))
        try:
            done, _ = await asyncio.wait(
                {receiver, heartbeat}, return_when=asyncio.FIRST_COMPLETED
            )
            return done.pop().result()
        finally:
            receiver.cancel()
            heartbeat.cancel()
            await asyncio.gather(receiver, heartbeat, return_exceptions=True)

    async def _receive_loop(self, ws: Any) -> str:
        while True:
            try:
                raw = await ws.recv()
            except ConnectionClosed as e:
                return f"connection closed: {e}"
            except OSError as e:
                return f"socket error: {e}"

            if self._handle_raw(raw):
                self._shutdown_requested = True
                return "server requested shutdown"

    async def _heartbeat_loop(self, ws: Any) -> str:
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            silence = loop.time() - self._last_ack
            if silence > self.heartbeat_timeout:
                logger.warning(f"No heartbeat ack for {silence:.1f}s")
                return "heartbeat timeout"
            try:
                await self._send_frame(ws, Outbound.HEARTBEAT, {"timestamp": int(time.time() * 1000)})
            except TransportError as e:
                return str(e)

    def _handle_raw(self, raw: Any) -> bool:
        """Decode and dispatch one frame. Returns True on a shutdown command."""
        try:
            frame = decode_frame(raw)
        except ProtocolError as e:
            logger.warning(f"Dropping frame: {e}")
            return False
        return self._dispatch(frame)

    def _dispatch(self, frame: Frame) -> bool:
        payload = frame.payload

        if frame.type is Inbound.WORLD_UPDATE:
            self._position = (payload.position.x, payload.position.y)
            self._notify("on_world_update", payload)

        elif frame.type is Inbound.LAND_CLAIMED:
            pending = self._match_pending(payload.x, payload.y)
            if pending and payload.agent_id and payload.agent_id != self.agent_id:
                self._resolve(pending, ActionDenied(
                    "already_owned", f"Cell claimed by {payload.agent_id}"
                ))
            elif pending:
                self._resolve(pending, ClaimResult.claimed(payload.x, payload.y))
            self._notify("on_land_claimed", payload)

        elif frame.type is Inbound.LAND_CLAIM_DENIED:
            pending = self._match_pending(payload.x, payload.y)
            if pending:
                self._resolve(pending, ActionDenied(payload.code, payload.reason))
            self._notify("on_land_claim_denied", payload)

        elif frame.type is Inbound.LAND_TRADE_COMPLETE:
            self._notify("on_land_trade_complete", payload)

        elif frame.type is Inbound.TRANSFER_RECEIVED:
            self._notify("on_transfer_received", payload)

        elif frame.type is Inbound.SERVER_COMMAND:
            logger.info(f"Server command: {payload.command} {payload.params or ''}")
            self._notify("on_server_command", payload)
            return payload.command == SHUTDOWN_COMMAND

        elif frame.type is Inbound.HEARTBEAT_ACK:
            self._last_ack = asyncio.get_running_loop().time()

        else:
            logger.debug(f"Ignoring {frame.type.value} while connected")

        return False

    def _notify(self, method: str, *args: Any) -> None:
        if self.handler is None:
            return
        try:
            getattr(self.handler, method)(*args)
        except Exception as e:
            logger.error(f"Event handler error in {method}: {e}", exc_info=True)

    # ==================== Claim Correlation ====================

    def _match_pending(self, x: Optional[int], y: Optional[int]) -> Optional[PendingClaim]:
        for pending in self._pending:
            if pending.x == x and pending.y == y and not pending.future.done():
                return pending
        return None

    def _resolve(self, pending: PendingClaim, outcome: ClaimOutcome) -> bool:
        """Settle a pending claim exactly once. Later outcomes are ignored."""
        if pending in self._pending:
            self._pending.remove(pending)
        if pending.timer is not None:
            pending.timer.cancel()
        if pending.future.done():
            return False
        if isinstance(outcome, BaseException):
            pending.future.set_exception(outcome)
        else:
            pending.future.set_result(outcome)
        return True

    def _fail_pending(self, error: BaseException) -> None:
        for pending in list(self._pending):
            self._resolve(pending, error)

    async def claim_land_and_wait(self, timeout: Optional[float] = None) -> ClaimResult:
        """
        Claim the cell the agent is standing on and wait for the verdict.

        Resolves exactly once: with the confirmation, the server's denial,
        a timeout, or a connection loss. Never raises for those outcomes.
        """
        if not self.is_connected or self._ws is None:
            return ClaimResult.failed("not_connected", "Not connected to Stamn server.")
        if self._position is None:
            return ClaimResult.failed("position_unknown", "No world update received yet.")

        timeout = self.claim_timeout if timeout is None else timeout
        x, y = self._position
        loop = asyncio.get_running_loop()
        pending = PendingClaim(x=x, y=y, future=loop.create_future(), deadline=loop.time() + timeout)
        pending.timer = loop.call_at(
            pending.deadline,
            self._resolve,
            pending,
            RequestTimeout(f"No response to claim at ({x}, {y}) within {timeout:g}s"),
        )
        self._pending.append(pending)

        try:
            await self._send_frame(self._ws, Outbound.CLAIM_LAND, {"x": x, "y": y})
        except TransportError as e:
            self._resolve(pending, ConnectionLostError(str(e)))

        try:
            return await pending.future
        except ActionDenied as e:
            return ClaimResult.failed(e.code, e.reason, x, y)
        except RequestTimeout as e:
            logger.warning(str(e))
            return ClaimResult.failed(RequestTimeout.code, str(e), x, y)
        except ConnectionLostError as e:
            return ClaimResult.failed(ConnectionLostError.code, str(e), x, y)
        finally:
            if pending in self._pending:
                self._pending.remove(pending)
            pending.timer.cancel()

    # ==================== Fire-and-forget Actions ====================

    async def _fire(self, frame_type: Outbound, payload: Any) -> None:
        ws = self._ws
        if not self.is_connected or ws is None:
            logger.debug(f"Not connected, dropping {frame_type.value}")
            return
        try:
            await self._send_frame(ws, frame_type, payload)
        except TransportError as e:
            logger.warning(f"{frame_type.value} not sent: {e}")

    async def move(self, direction: MoveDirection) -> None:
        await self._fire(Outbound.MOVE, {"direction": MoveDirection(direction).value})

    async def offer_land(self, x: int, y: int, to_agent_id: str, price_cents: int) -> None:
        await self._fire(Outbound.OFFER_LAND, {
            "x": x,
            "y": y,
            "toAgentId": to_agent_id,
            "priceCents": price_cents,
        })

    async def list_land(self, x: int, y: int, price_cents: int) -> None:
        await self._fire(Outbound.LIST_LAND, {"x": x, "y": y, "priceCents": price_cents})

    async def request_spend(self, payload: SpendRequest) -> None:
        await self._fire(Outbound.SPEND_REQUEST, payload)
