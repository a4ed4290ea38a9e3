"""Tests for the ConnectionClient - lifecycle, dispatch and claim correlation."""

import asyncio

import pytest

from stamn.models import ConnectionState, MoveDirection, SpendRequest
from stamn.ws_client import TRANSITIONS, ConnectionClient

from conftest import (
    TEST_AGENT_ID,
    TEST_API_KEY,
    TEST_SERVER_URL,
    RecordingHandler,
    world_payload,
)


def make_client(server, handler=None, **kwargs) -> ConnectionClient:
    options = dict(
        heartbeat_interval=1.0,
        claim_timeout=0.5,
        auth_timeout=0.2,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.02,
    )
    options.update(kwargs)
    return ConnectionClient(
        TEST_SERVER_URL,
        TEST_API_KEY,
        TEST_AGENT_ID,
        handler=handler,
        connect=server.connect,
        **options,
    )


class TestTransitions:
    """Tests for the connection state machine table."""

    def test_closed_is_terminal(self):
        assert TRANSITIONS[ConnectionState.CLOSED] == set()

    def test_cannot_skip_authentication(self):
        assert ConnectionState.CONNECTED not in TRANSITIONS[ConnectionState.CONNECTING]
        assert ConnectionState.CONNECTED not in TRANSITIONS[ConnectionState.DISCONNECTED]

    def test_every_state_can_close(self):
        for state, targets in TRANSITIONS.items():
            if state is not ConnectionState.CLOSED:
                assert ConnectionState.CLOSED in targets

    async def test_illegal_transition_raises(self, server):
        client = make_client(server)
        with pytest.raises(RuntimeError):
            client._set_state(ConnectionState.CONNECTED)
        assert client.state is ConnectionState.DISCONNECTED


class TestLifecycle:
    """Tests for connect, authenticate, reconnect and stop."""

    async def test_connects_and_authenticates(self, client, server, handler, wait_until):
        client.start()
        await wait_until(lambda: client.is_connected)

        assert server.urls == [TEST_SERVER_URL]
        assert server.ws.sent[0] == {
            "type": "auth",
            "payload": {"apiKey": TEST_API_KEY, "agentId": TEST_AGENT_ID},
        }
        assert handler.names() == ["connected"]
        assert list(client.transitions) == [
            (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
            (ConnectionState.CONNECTING, ConnectionState.AUTHENTICATING),
            (ConnectionState.AUTHENTICATING, ConnectionState.CONNECTED),
        ]

    async def test_start_twice_opens_one_connection(self, client, server, wait_until):
        client.start()
        client.start()
        await wait_until(lambda: client.is_connected)
        await asyncio.sleep(0.02)
        assert len(server.connections) == 1

    async def test_connect_failures_are_retried(self, client, server, handler, wait_until):
        server.fail_next = 2
        client.start()
        await wait_until(lambda: client.is_connected)

        assert len(server.urls) == 3
        # Never connected before, so no disconnect notifications
        assert handler.names() == ["connected"]

    async def test_auth_error_reconnects_without_connecting(self, client, server, handler, wait_until):
        server.auth_reply = "auth_error"
        client.start()
        await wait_until(lambda: len(server.connections) >= 2)

        reached = [new for _, new in client.transitions]
        assert ConnectionState.CONNECTED not in reached
        assert ConnectionState.RECONNECTING in reached
        assert handler.events == []

    async def test_auth_timeout_reconnects(self, client, server, wait_until):
        server.auth_reply = None
        client.start()
        await wait_until(lambda: len(server.connections) >= 2)
        assert not client.is_connected
        assert server.connections[0].closed

    async def test_frames_before_auth_ok_are_ignored(self, server, handler, wait_until):
        server.auth_reply = None
        client = make_client(server, handler)
        client.start()
        await wait_until(lambda: len(server.connections) == 1)

        server.ws.push("world_update", world_payload())
        server.ws.push("auth_ok")
        await wait_until(lambda: client.is_connected)
        assert handler.names() == ["connected"]
        await client.stop()

    async def test_server_close_reconnects(self, client, server, handler, wait_until):
        client.start()
        await wait_until(lambda: client.is_connected)

        await server.connections[0].close()
        await wait_until(lambda: len(server.connections) == 2 and client.is_connected)

        assert handler.names() == ["connected", "disconnected", "connected"]
        assert ConnectionState.RECONNECTING in [new for _, new in client.transitions]

    async def test_stop_closes_for_good(self, client, server, wait_until):
        client.start()
        await wait_until(lambda: client.is_connected)

        await client.stop()
        assert client.state is ConnectionState.CLOSED
        assert server.ws.closed

        await asyncio.sleep(0.05)
        assert len(server.connections) == 1

    async def test_stop_is_idempotent(self, client, wait_until):
        client.start()
        await wait_until(lambda: client.is_connected)
        await client.stop()
        await client.stop()
        assert client.state is ConnectionState.CLOSED

    async def test_stop_before_start(self, client):
        await client.stop()
        assert client.state is ConnectionState.CLOSED


class TestHeartbeat:
    """Tests for liveness checks."""

    async def test_sends_heartbeats(self, server, wait_until):
        client = make_client(server, heartbeat_interval=0.02)
        client.start()
        await wait_until(lambda: client.is_connected)
        await wait_until(lambda: len(server.ws.sent_of("heartbeat")) >= 2)

        payload = server.ws.sent_of("heartbeat")[0]
        assert isinstance(payload["timestamp"], int)
        assert len(server.connections) == 1
        await client.stop()

    async def test_missing_acks_force_reconnect(self, server, wait_until):
        server.auto_ack = False
        handler = RecordingHandler()
        client = make_client(
            server, handler, heartbeat_interval=0.02, heartbeat_timeout_multiplier=2
        )
        client.start()
        await wait_until(lambda: len(server.connections) >= 2)

        assert "heartbeat timeout" in handler.of("disconnected")
        await client.stop()


class TestDispatch:
    """Tests for inbound frame routing."""

    async def test_world_update_sets_position(self, connected_client, handler):
        snapshots = handler.of("world_update")
        assert len(snapshots) == 1
        assert snapshots[0].position.x == 5
        assert connected_client.position == (5, 5)

    async def test_malformed_frames_are_dropped(self, connected_client, server, handler, wait_until):
        server.ws.push_raw("not json")
        server.ws.push_raw(b"\xff\xfe")
        server.ws.push("teleport", {"x": 1})
        server.ws.push("world_update", {"position": "nowhere"})
        server.ws.push("world_update", world_payload(x=6, y=5))

        await wait_until(lambda: connected_client.position == (6, 5))
        assert connected_client.is_connected
        assert len(server.connections) == 1
        assert len(handler.of("world_update")) == 2

    async def test_trade_and_transfer_forwarded(self, connected_client, server, handler, wait_until):
        server.ws.push("land_trade_complete", {
            "x": 1, "y": 2, "fromAgentId": "a", "toAgentId": "b", "priceCents": 300,
        })
        server.ws.push("transfer_received", {
            "amountCents": 2_500_000, "fromAgentName": "Bob", "description": "rent",
        })
        await wait_until(lambda: handler.of("transfer_received"))

        trade = handler.of("land_trade_complete")[0]
        assert (trade.from_agent_id, trade.to_agent_id, trade.price_cents) == ("a", "b", 300)
        transfer = handler.of("transfer_received")[0]
        assert transfer.amount_cents == 2_500_000
        assert transfer.currency == "USDC"

    async def test_handler_errors_do_not_break_receive_loop(self, server, wait_until):
        class Exploding(RecordingHandler):
            def on_world_update(self, snapshot):
                raise RuntimeError("boom")

        handler = Exploding()
        client = make_client(server, handler)
        client.start()
        await wait_until(lambda: client.is_connected)

        server.ws.push("world_update", world_payload())
        server.ws.push("server_command", {"command": "ping"})
        await wait_until(lambda: handler.of("server_command"))
        assert client.is_connected
        await client.stop()

    async def test_shutdown_command_closes(self, connected_client, server, handler, wait_until):
        server.ws.push("server_command", {"command": "shutdown"})
        await wait_until(lambda: connected_client.state is ConnectionState.CLOSED)

        assert handler.of("server_command")[0].command == "shutdown"
        assert "disconnected" not in handler.names()
        await asyncio.sleep(0.05)
        assert len(server.connections) == 1

    async def test_other_commands_keep_connection(self, connected_client, server, handler, wait_until):
        server.ws.push("server_command", {"command": "refresh", "params": {"full": True}})
        await wait_until(lambda: handler.of("server_command"))
        assert handler.of("server_command")[0].params == {"full": True}
        assert connected_client.is_connected


class TestClaims:
    """Tests for claim_land_and_wait correlation."""

    async def claim(self, client, server, wait_until, timeout=None):
        task = asyncio.create_task(client.claim_land_and_wait(timeout))
        await wait_until(lambda: server.ws.sent_of("claim_land"))
        return task

    async def test_not_connected(self, client):
        result = await client.claim_land_and_wait()
        assert not result.success
        assert result.code == "not_connected"

    async def test_position_unknown(self, client, wait_until):
        client.start()
        await wait_until(lambda: client.is_connected)
        result = await client.claim_land_and_wait()
        assert result.code == "position_unknown"

    async def test_claim_confirmed(self, connected_client, server, wait_until):
        task = await self.claim(connected_client, server, wait_until)
        assert server.ws.sent_of("claim_land") == [{"x": 5, "y": 5}]

        server.ws.push("land_claimed", {"x": 5, "y": 5, "agentId": TEST_AGENT_ID})
        result = await task
        assert result.success
        assert (result.x, result.y) == (5, 5)
        assert connected_client.pending_claims == 0

    async def test_claim_denied(self, connected_client, server, handler, wait_until):
        task = await self.claim(connected_client, server, wait_until)
        server.ws.push("land_claim_denied", {
            "x": 5, "y": 5, "code": "already_owned", "reason": "Cell is owned",
        })
        result = await task

        assert not result.success
        assert result.code == "already_owned"
        assert result.reason == "Cell is owned"
        assert len(handler.of("land_claim_denied")) == 1

    async def test_other_coordinates_do_not_resolve(self, connected_client, server, handler, wait_until):
        task = await self.claim(connected_client, server, wait_until, timeout=0.1)
        server.ws.push("land_claimed", {"x": 6, "y": 6, "agentId": "someone-else"})
        await wait_until(lambda: handler.of("land_claimed"))
        assert not task.done()

        result = await task
        assert result.code == "timeout"

    async def test_claim_by_other_agent_is_not_ours(self, connected_client, server, handler, wait_until):
        task = await self.claim(connected_client, server, wait_until)
        server.ws.push("land_claimed", {"x": 5, "y": 5, "agentId": "rival-agent"})
        result = await task

        assert not result.success
        assert result.code == "already_owned"
        assert "rival-agent" in result.reason
        assert len(handler.of("land_claimed")) == 1
        assert connected_client.pending_claims == 0

    async def test_concurrent_claims_resolve_independently(self, connected_client, server, wait_until):
        first = asyncio.create_task(connected_client.claim_land_and_wait())
        second = asyncio.create_task(connected_client.claim_land_and_wait())
        await wait_until(lambda: len(server.ws.sent_of("claim_land")) == 2)
        assert connected_client.pending_claims == 2

        server.ws.push("land_claimed", {"x": 5, "y": 5, "agentId": TEST_AGENT_ID})
        server.ws.push("land_claim_denied", {
            "x": 5, "y": 5, "code": "already_owned", "reason": "Cell is owned",
        })
        results = await asyncio.gather(first, second)

        assert [r.success for r in results] == [True, False]
        assert results[1].code == "already_owned"
        assert connected_client.pending_claims == 0

    async def test_late_confirmation_after_timeout_is_ignored(self, connected_client, server, handler, wait_until):
        task = await self.claim(connected_client, server, wait_until, timeout=0.05)
        result = await task
        assert result.code == "timeout"

        server.ws.push("land_claimed", {"x": 5, "y": 5})
        await wait_until(lambda: handler.of("land_claimed"))
        assert result.code == "timeout"
        assert connected_client.pending_claims == 0
        assert connected_client.is_connected

    async def test_connection_loss_fails_pending(self, connected_client, server, wait_until):
        task = await self.claim(connected_client, server, wait_until)
        await server.ws.close()
        result = await task
        assert result.code == "connection_lost"

    async def test_stop_fails_pending(self, connected_client, server, wait_until):
        task = await self.claim(connected_client, server, wait_until)
        await connected_client.stop()
        result = await task
        assert result.code == "connection_lost"
        assert connected_client.pending_claims == 0


class TestActions:
    """Tests for fire-and-forget sends."""

    async def test_move(self, connected_client, server):
        await connected_client.move(MoveDirection.UP)
        assert server.ws.sent_of("move") == [{"direction": "up"}]

    async def test_offer_and_list_land(self, connected_client, server):
        await connected_client.offer_land(3, 4, "agent-2", 450)
        await connected_client.list_land(3, 4, 900)
        assert server.ws.sent_of("offer_land") == [
            {"x": 3, "y": 4, "toAgentId": "agent-2", "priceCents": 450}
        ]
        assert server.ws.sent_of("list_land") == [{"x": 3, "y": 4, "priceCents": 900}]

    async def test_spend_request(self, connected_client, server):
        await connected_client.request_spend(SpendRequest(
            request_id="req-1", amount_cents=100, vendor="OpenAI", description="tokens",
        ))
        assert server.ws.sent_of("spend_request") == [{
            "requestId": "req-1",
            "amountCents": 100,
            "currency": "USDC",
            "category": "api",
            "rail": "internal",
            "vendor": "OpenAI",
            "description": "tokens",
        }]

    async def test_actions_dropped_when_disconnected(self, client):
        await client.move(MoveDirection.LEFT)
        await client.list_land(1, 1, 100)
        assert client.state is ConnectionState.DISCONNECTED


class TestBackoff:
    """Tests for reconnect delay growth."""

    def test_doubles_and_caps(self, server, monkeypatch):
        monkeypatch.setattr("stamn.ws_client.random.uniform", lambda a, b: b)
        client = make_client(server, reconnect_base_delay=1.0, reconnect_max_delay=8.0)
        assert [client._next_backoff() for _ in range(6)] == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]

    def test_jitter_stays_in_range(self, server):
        client = make_client(server, reconnect_base_delay=2.0, reconnect_max_delay=2.0)
        for _ in range(50):
            assert 1.0 <= client._next_backoff() <= 2.0
