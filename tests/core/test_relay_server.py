import asyncio
from unittest.mock import AsyncMock

import pytest

from chatrelay.core.errors import ConnectionClosedError
from chatrelay.core.models.config import RelayMode
from chatrelay.core.models.events import DisconnectReason
from chatrelay.core.transport.connection import PeerConnection
from chatrelay.core.transport.framing import encode_frame
from chatrelay.core.transport.server import RelayServer
from tests.helpers import EventRecorder, wait_until


async def start_server(config, **kwargs) -> RelayServer:
    server = RelayServer(config=config, loop=asyncio.get_event_loop(), **kwargs)
    await server.start()
    return server


async def join(server: RelayServer, count: int = 1) -> list[tuple[PeerConnection, EventRecorder]]:
    """Connect clients one at a time, waiting for the server to track each."""
    clients = []
    for _ in range(count):
        expected = len(server.connections) + 1
        client = await PeerConnection.connect(*server.listen)
        received = EventRecorder()
        client.on_message_received.subscribe(received)
        client.start()
        await wait_until(lambda: len(server.connections) == expected)
        clients.append((client, received))
    return clients


@pytest.mark.it
@pytest.mark.asyncio
async def test_hello_is_relayed_byte_identical(server_config):
    server = await start_server(server_config)
    (alice, alice_received), (bob, bob_received) = await join(server, 2)

    hello = "hello".encode("utf-16-le")
    await alice.send(hello)
    await wait_until(lambda: len(bob_received) == 1)

    assert bob_received.calls == [(bob, hello)]
    assert len(alice_received) == 0

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_forward_excludes_originator(server_config):
    server = await start_server(server_config)
    (a, a_received), (b, b_received), (c, c_received) = await join(server, 3)

    await a.send(b"from a")
    await wait_until(lambda: len(b_received) == 1 and len(c_received) == 1)
    # give a stray echo the chance to arrive
    await asyncio.sleep(0.05)

    assert b_received.values() == [b"from a"]
    assert c_received.values() == [b"from a"]
    assert len(a_received) == 0

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_broadcast_mode_echoes_to_sender(server_config):
    server_config.relay_mode = RelayMode.BROADCAST
    server = await start_server(server_config)
    (a, a_received), (b, b_received) = await join(server, 2)

    await a.send(b"to everyone")
    await wait_until(lambda: len(a_received) == 1 and len(b_received) == 1)

    assert a_received.values() == [b"to everyone"]
    assert b_received.values() == [b"to everyone"]

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_broadcast_reaches_every_connection(server_config):
    server = await start_server(server_config)
    clients = await join(server, 3)

    await server.broadcast(b"announcement")
    await wait_until(lambda: all(len(received) == 1 for _, received in clients))

    for _, received in clients:
        assert received.values() == [b"announcement"]

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_messages_from_one_client_keep_their_order(server_config):
    server = await start_server(server_config)
    (a, _), (b, b_received) = await join(server, 2)

    messages = [f"line {i}".encode() for i in range(20)]
    for message in messages:
        await a.send(message)
    await wait_until(lambda: len(b_received) == len(messages))

    assert b_received.values() == messages

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_client_connected_event(server_config):
    server = await start_server(server_config)
    connected = EventRecorder()
    server.on_client_connected.subscribe(connected)

    await join(server, 2)
    await wait_until(lambda: len(connected) == 2)

    assert {call[1] for call in connected.calls} == server.connections
    assert all(call[0] is server for call in connected.calls)

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_removed_connection_is_not_relayed_to(server_config):
    server = await start_server(server_config)
    accepted = EventRecorder()
    server.on_client_connected.subscribe(accepted)
    (a, _), (b, b_received), (c, _) = await join(server, 3)
    server_side_c = accepted.calls[2][1]

    await c.disconnect()
    await wait_until(lambda: len(server.connections) == 2)
    assert server_side_c not in server.connections

    server_side_c.send = AsyncMock()
    await a.send(b"after c left")
    await wait_until(lambda: len(b_received) == 1)
    await server.broadcast(b"broadcast after c left")

    server_side_c.send.assert_not_awaited()

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_remote_close_is_one_graceful_disconnect(server_config):
    server = await start_server(server_config)
    accepted = EventRecorder()
    server.on_client_connected.subscribe(accepted)
    [(client, _)] = await join(server, 1)
    server_side = accepted.last[1]
    disconnected = EventRecorder()
    server_side.on_disconnected.subscribe(disconnected)

    await client.disconnect()
    await wait_until(lambda: len(server.connections) == 0)
    await server_side.receive_task

    assert server_side.receive_task.exception() is None
    assert disconnected.values() == [DisconnectReason.REMOTE_GRACEFUL]
    assert server_side.live is False

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_shutdown_disconnects_every_connection(server_config):
    server = await start_server(server_config)
    server_side = EventRecorder()
    shutdown = EventRecorder()
    server.on_server_shutdown.subscribe(shutdown)

    def track(_, connection):
        connection.on_disconnected.subscribe(server_side)

    server.on_client_connected.subscribe(track)
    clients = await join(server, 3)

    client_side = EventRecorder()
    for client, _ in clients:
        client.on_disconnected.subscribe(client_side)

    await server.shutdown()

    assert server.running is False
    assert len(server.connections) == 0
    assert len(server.state.tasks) == 0
    assert server_side.values() == [DisconnectReason.SERVER_SHUTDOWN] * 3
    assert shutdown.calls == [(server,)]

    await wait_until(lambda: len(client_side) == 3)
    assert client_side.values() == [DisconnectReason.REMOTE_GRACEFUL] * 3

    for client, _ in clients:
        assert client.live is False
        with pytest.raises(ConnectionClosedError):
            await asyncio.wait_for(client.send(b"anyone?"), timeout=1.0)


@pytest.mark.it
@pytest.mark.asyncio
async def test_shutdown_is_idempotent(server_config):
    server = await start_server(server_config)
    shutdown = EventRecorder()
    server.on_server_shutdown.subscribe(shutdown)

    await server.shutdown()
    await server.shutdown()

    assert len(shutdown) == 1


@pytest.mark.it
@pytest.mark.asyncio
async def test_shutdown_stops_accepting(server_config):
    server = await start_server(server_config)
    host, port = server.listen
    await server.shutdown()

    with pytest.raises(OSError):
        await PeerConnection.connect(host, port, timeout=1.0)

    with pytest.raises(RuntimeError):
        await server.start()


@pytest.mark.it
@pytest.mark.asyncio
async def test_start_twice_raises(server_config):
    server = await start_server(server_config)

    with pytest.raises(RuntimeError):
        await server.start()

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_listen_reports_bound_port(server_config):
    server = await start_server(server_config)
    host, port = server.listen

    assert host == "127.0.0.1"
    assert port != 0
    assert server.running is True

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_custom_factory_builds_connections(server_config):
    built = []

    class TaggedConnection(PeerConnection):
        pass

    def factory(reader, writer):
        connection = TaggedConnection(reader=reader, writer=writer, max_message_size=64)
        built.append(connection)
        return connection

    server = await start_server(server_config, factory=factory)
    await join(server, 2)

    assert len(built) == 2
    assert server.connections == set(built)
    assert all(isinstance(c, TaggedConnection) for c in server.connections)

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_oversized_frame_drops_the_sender(server_config):
    server = await start_server(server_config)
    accepted = EventRecorder()
    server.on_client_connected.subscribe(accepted)
    [(client, _)] = await join(server, 1)
    server_side = accepted.last[1]
    disconnected = EventRecorder()
    server_side.on_disconnected.subscribe(disconnected)
    client_closed = EventRecorder()
    client.on_disconnected.subscribe(client_closed)

    # server accepts at most 1024 bytes per message
    await client.send(b"x" * 4096)
    await wait_until(lambda: len(server.connections) == 0)
    await wait_until(lambda: len(client_closed) == 1)

    assert disconnected.values() == [DisconnectReason.PROTOCOL_ERROR]

    await server.shutdown()


@pytest.mark.it
@pytest.mark.asyncio
async def test_raw_stream_client_interoperates(server_config):
    """A client speaking the wire format by hand is relayed like any other."""
    server = await start_server(server_config)
    [(peer, received)] = await join(server, 1)

    reader, writer = await asyncio.open_connection(*server.listen)
    await wait_until(lambda: len(server.connections) == 2)

    writer.write(b"\x03\x00\x00\x00abc")
    await writer.drain()
    await wait_until(lambda: len(received) == 1)
    assert received.values() == [b"abc"]

    await peer.send(b"back")
    assert await reader.readexactly(8) == encode_frame(b"back")

    writer.close()
    await writer.wait_closed()
    await server.shutdown()
