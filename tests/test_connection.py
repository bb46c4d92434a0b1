"""Tests for the shared reconnecting connection, using an in-memory socket."""

from __future__ import annotations

import asyncio
import json

from signal_feed.transport import ConnectionState, SharedConnection

URL = "ws://feed.test/ws"


class FakeSocket:
    """Async-iterable socket fed from a queue; ``None`` ends the stream."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    def send(self, message) -> None:
        self.queue.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        self.queue.put_nowait(None)

    def fail(self) -> None:
        self.queue.put_nowait(ConnectionResetError("reset by peer"))


class FakeServer:
    def __init__(self, refuse: int = 0) -> None:
        self.sockets: list[FakeSocket] = []
        self.refuse = refuse

    def connect(self, url: str) -> FakeSocket:
        assert url == URL
        if self.refuse:
            self.refuse -= 1
            raise ConnectionRefusedError("refused")
        sock = FakeSocket()
        self.sockets.append(sock)
        return sock


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _connection(server: FakeServer, reconnect_delay_s=0.05, idle_close_s=0.05) -> SharedConnection:
    return SharedConnection(
        URL,
        reconnect_delay_s=reconnect_delay_s,
        idle_close_s=idle_close_s,
        connector=server.connect,
    )


class TestLazyLifecycle:
    def test_no_socket_until_first_subscriber(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server)
            await settle()
            assert server.sockets == []
            assert conn.state is ConnectionState.IDLE

            conn.subscribe(lambda e: None)
            await settle()
            assert len(server.sockets) == 1
            assert conn.state is ConnectionState.OPEN
            await conn.close()

        asyncio.run(scenario())

    def test_many_subscribers_share_one_socket(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server)
            a, b = [], []
            conn.subscribe(a.append)
            conn.subscribe(b.append)
            await settle()
            server.sockets[0].send({"type": "signal", "payload": {"pair": "EURUSD"}})
            await settle()
            assert len(server.sockets) == 1
            assert conn.listener_count == 2
            await conn.close()
            return a, b

        a, b = asyncio.run(scenario())
        assert len(a) == len(b) == 1
        assert a[0].type == "signal"
        assert a[0] is b[0]

    def test_idle_close_after_last_unsubscribe(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server, idle_close_s=0.02)
            sub = conn.subscribe(lambda e: None)
            await settle()
            sub.unsubscribe()
            await settle()
            assert server.sockets[0].closed is False
            await asyncio.sleep(0.05)
            await settle()
            assert server.sockets[0].closed is True
            assert conn.state is ConnectionState.IDLE
            assert not conn.running

        asyncio.run(scenario())

    def test_resubscribe_within_grace_keeps_socket(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server, idle_close_s=0.03)
            sub = conn.subscribe(lambda e: None)
            await settle()
            sub.unsubscribe()
            conn.subscribe(lambda e: None)
            await asyncio.sleep(0.06)
            assert len(server.sockets) == 1
            assert server.sockets[0].closed is False
            assert conn.state is ConnectionState.OPEN
            await conn.close()

        asyncio.run(scenario())

    def test_unsubscribe_is_idempotent(self):
        async def scenario():
            conn = _connection(FakeServer())
            sub = conn.subscribe(lambda e: None)
            other = conn.subscribe(lambda e: None)
            sub.unsubscribe()
            sub.unsubscribe()
            assert conn.listener_count == 1
            other.unsubscribe()
            await conn.close()

        asyncio.run(scenario())


class TestReconnect:
    def test_reconnects_after_drop(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server, reconnect_delay_s=0.03)
            conn.subscribe(lambda e: None)
            await settle()
            server.sockets[0].drop()
            await settle()
            assert conn.state is ConnectionState.CLOSED
            assert len(server.sockets) == 1
            await asyncio.sleep(0.06)
            await settle()
            assert len(server.sockets) == 2
            assert conn.state is ConnectionState.OPEN
            await conn.close()

        asyncio.run(scenario())

    def test_reconnects_after_error(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server, reconnect_delay_s=0.01)
            conn.subscribe(lambda e: None)
            await settle()
            server.sockets[0].fail()
            await asyncio.sleep(0.04)
            await settle()
            assert len(server.sockets) == 2
            await conn.close()

        asyncio.run(scenario())

    def test_retries_refused_connect(self):
        async def scenario():
            server = FakeServer(refuse=2)
            conn = _connection(server, reconnect_delay_s=0.01)
            conn.subscribe(lambda e: None)
            await asyncio.sleep(0.08)
            await settle()
            assert conn.connect_attempts == 3
            assert len(server.sockets) == 1
            assert conn.state is ConnectionState.OPEN
            await conn.close()

        asyncio.run(scenario())

    def test_reconnect_stops_without_subscribers(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server, reconnect_delay_s=0.03)
            sub = conn.subscribe(lambda e: None)
            await settle()
            server.sockets[0].drop()
            await settle()
            sub.unsubscribe()
            await asyncio.sleep(0.08)
            assert len(server.sockets) == 1
            assert conn.state is ConnectionState.IDLE
            assert not conn.running

        asyncio.run(scenario())


class TestDelivery:
    def test_listener_error_does_not_block_others(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server)
            received = []

            def broken(event):
                raise ValueError("bad listener")

            conn.subscribe(broken)
            conn.subscribe(received.append)
            await settle()
            server.sockets[0].send({"type": "trade_opened"})
            server.sockets[0].send({"type": "trade_closed"})
            await settle()
            await conn.close()
            return received

        assert [e.type for e in asyncio.run(scenario())] == ["trade_opened", "trade_closed"]

    def test_invalid_frames_dropped(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server)
            received = []
            conn.subscribe(received.append)
            await settle()
            server.sockets[0].send("{broken")
            server.sockets[0].send({"type": "quote"})
            await settle()
            await conn.close()
            return conn, received

        conn, received = asyncio.run(scenario())
        assert [e.type for e in received] == ["quote"]
        assert conn.messages_received == 1

    def test_envelope_is_normalized(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server)
            received = []
            conn.subscribe(received.append)
            await settle()
            server.sockets[0].send({"event": "custom_thing", "data": {"x": 1}})
            await settle()
            await conn.close()
            return received

        (event,) = asyncio.run(scenario())
        assert event.type == "custom_thing"
        assert event.payload == {"x": 1}
        assert event.id.startswith("custom_thing-")
        assert event.timestamp > 0

    def test_unsubscribed_listener_stops_receiving(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server)
            a, b = [], []
            sub = conn.subscribe(a.append)
            conn.subscribe(b.append)
            await settle()
            sub.unsubscribe()
            server.sockets[0].send({"type": "signal"})
            await settle()
            await conn.close()
            return a, b

        a, b = asyncio.run(scenario())
        assert a == []
        assert len(b) == 1


class TestConnectionStates:
    def test_clean_close_is_closed_and_error_is_errored(self):
        async def scenario():
            server = FakeServer()
            conn = _connection(server, reconnect_delay_s=0.05)
            conn.subscribe(lambda e: None)
            await settle()
            server.sockets[0].drop()
            await settle()
            assert conn.state is ConnectionState.CLOSED
            await asyncio.sleep(0.07)
            await settle()
            server.sockets[1].fail()
            await settle()
            assert conn.state is ConnectionState.ERRORED
            await conn.close()

        asyncio.run(scenario())

    def test_refused_connect_is_errored(self):
        async def scenario():
            server = FakeServer(refuse=1)
            conn = _connection(server, reconnect_delay_s=1)
            conn.subscribe(lambda e: None)
            await settle()
            assert conn.state is ConnectionState.ERRORED
            await conn.close()

        asyncio.run(scenario())

    def test_unsubscribe_while_errored_stops_at_once(self):
        async def scenario():
            server = FakeServer(refuse=1)
            conn = _connection(server, reconnect_delay_s=1)
            sub = conn.subscribe(lambda e: None)
            await settle()
            sub.unsubscribe()
            await settle()
            assert not conn.running
            assert conn.state is ConnectionState.IDLE

        asyncio.run(scenario())
