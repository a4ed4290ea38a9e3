"""
Pytest configuration and fixtures for Stamn tests.

The world server is replaced by an in-memory fake transport handed to the
client through its `connect` factory. No network access is needed.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import pytest
from websockets.exceptions import ConnectionClosed

# Add stamn_client to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from stamn.models import WorldSnapshot
from stamn.ws_client import ConnectionClient, WorldEventHandler


TEST_SERVER_URL = "ws://stamn.test/ws/agent"
TEST_API_KEY = "test-key"
TEST_AGENT_ID = "agent-1"

_CLOSE = object()


# ==================== Fake Transport ====================

class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, auto_ack: bool = True):
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.auto_ack = auto_ack

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosed(None, None)
        frame = json.loads(message)
        self.sent.append(frame)
        if self.auto_ack and frame["type"] == "heartbeat":
            self.push("heartbeat_ack")

    async def recv(self) -> Any:
        if self.closed and self.inbox.empty():
            raise ConnectionClosed(None, None)
        item = await self.inbox.get()
        if item is _CLOSE:
            self.closed = True
            raise ConnectionClosed(None, None)
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.inbox.put_nowait(_CLOSE)

    def push(self, frame_type: str, payload: Optional[dict] = None) -> None:
        """Queue a frame as if the server had sent it."""
        self.push_raw(json.dumps({"type": frame_type, "payload": payload or {}}))

    def push_raw(self, raw: Any) -> None:
        self.inbox.put_nowait(raw)

    def sent_of(self, frame_type: str) -> list[dict]:
        return [f["payload"] for f in self.sent if f["type"] == frame_type]


class FakeServer:
    """Connect factory that hands out FakeWebSockets."""

    def __init__(self):
        self.connections: list[FakeWebSocket] = []
        self.urls: list[str] = []
        self.fail_next = 0
        self.auth_reply: Optional[str] = "auth_ok"
        self.auto_ack = True

    async def connect(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if self.fail_next:
            self.fail_next -= 1
            raise OSError("connection refused")
        ws = FakeWebSocket(auto_ack=self.auto_ack)
        if self.auth_reply == "auth_ok":
            ws.push("auth_ok")
        elif self.auth_reply == "auth_error":
            ws.push("auth_error", {"reason": "bad api key"})
        self.connections.append(ws)
        return ws

    @property
    def ws(self) -> FakeWebSocket:
        """Most recent connection."""
        return self.connections[-1]


class RecordingHandler(WorldEventHandler):
    """Records every callback as (name, payload)."""

    def __init__(self):
        self.events: list[tuple[str, Any]] = []

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> list[Any]:
        return [payload for n, payload in self.events if n == name]

    def on_connected(self):
        self.events.append(("connected", None))

    def on_disconnected(self, reason):
        self.events.append(("disconnected", reason))

    def on_world_update(self, snapshot):
        self.events.append(("world_update", snapshot))

    def on_land_claimed(self, payload):
        self.events.append(("land_claimed", payload))

    def on_land_claim_denied(self, payload):
        self.events.append(("land_claim_denied", payload))

    def on_land_trade_complete(self, payload):
        self.events.append(("land_trade_complete", payload))

    def on_transfer_received(self, payload):
        self.events.append(("transfer_received", payload))

    def on_server_command(self, payload):
        self.events.append(("server_command", payload))


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ==================== World Data ====================

def world_payload(
    x: int = 5,
    y: int = 5,
    balance: int = 1000,
    owned: tuple = (),
    nearby_land: tuple = (),
    nearby_agents: tuple = (),
    all_agents: tuple = (),
) -> dict:
    """A world_update payload in wire (camelCase) form."""
    return {
        "gridWidth": 100,
        "gridHeight": 100,
        "position": {"x": x, "y": y},
        "balanceCents": balance,
        "ownedLand": [
            {"x": px, "y": py, "ownerAgentId": TEST_AGENT_ID} for px, py in owned
        ],
        "nearbyLand": [
            {"x": px, "y": py, "ownerAgentId": owner} for px, py, owner in nearby_land
        ],
        "nearbyAgents": [
            {"agentId": aid, "name": name, "x": ax, "y": ay, "status": "online"}
            for aid, name, ax, ay in nearby_agents
        ],
        "allAgents": [
            {"agentId": aid, "name": name, "x": ax, "y": ay, "status": "online"}
            for aid, name, ax, ay in all_agents
        ],
    }


def make_snapshot(**kwargs) -> WorldSnapshot:
    return WorldSnapshot.model_validate(world_payload(**kwargs))


# ==================== Fixtures ====================

@pytest.fixture
def wait_until():
    """Poll a condition on the running loop until it holds."""

    async def _wait_until(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait_until


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def client(server, handler):
    """Client wired to the fake server. Not started."""
    client = ConnectionClient(
        server_url=TEST_SERVER_URL,
        api_key=TEST_API_KEY,
        agent_id=TEST_AGENT_ID,
        handler=handler,
        heartbeat_interval=1.0,
        claim_timeout=0.5,
        auth_timeout=0.2,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.02,
        connect=server.connect,
    )
    yield client
    await client.stop()


@pytest.fixture
async def connected_client(client, server, handler, wait_until):
    """Started client that has authenticated and seen one world update at (5, 5)."""
    client.start()
    await wait_until(lambda: client.is_connected)
    server.ws.push("world_update", world_payload(x=5, y=5))
    await wait_until(lambda: client.position == (5, 5))
    return client
