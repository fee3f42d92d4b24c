import asyncio
import logging

from chatrelay.core.errors import ConnectionClosedError
from chatrelay.core.helpers.events import EventHook
from chatrelay.core.helpers.spawn import TaskSpawner
from chatrelay.core.models.config import RelayMode, ServerConfig
from chatrelay.core.models.events import DisconnectReason
from chatrelay.core.models.state import ServerState
from chatrelay.core.ports.factory import ConnectionFactory
from chatrelay.core.transport.addr import format_addr, get_remote_addr
from chatrelay.core.transport.connection import PeerConnection


class RelayServer:
    """
    Accepts TCP connections, tracks them and relays messages among them.

    Each accepted stream pair is wrapped by the injected ConnectionFactory,
    added to the shared ServerState, subscribed to, and only then started.
    A message received from one connection is relayed according to the
    configured RelayMode: `forward` to every other connection, `broadcast`
    to all of them. Relaying runs in a background task so that a slow target
    never blocks the receive loop of the sender.

    A connection leaves the tracked set when it notifies its disconnect,
    whether the remote end went away or the server closed it. Shutdown is
    idempotent: it stops the listener, disconnects a snapshot of the tracked
    connections with a `server shutdown` reason, waits for their receive
    loops to end and notifies `on_server_shutdown`.

    Events:
    - `on_client_connected(server, connection)`
    - `on_server_shutdown(server)`
    """
    def __init__(
        self,
        config: ServerConfig,
        factory: ConnectionFactory | None = None,
        spawner: TaskSpawner | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._config = config
        self._loop = loop or asyncio.get_event_loop()
        self._spawner = spawner or TaskSpawner(self._loop)
        self._factory = factory or self._default_factory
        self.state = ServerState()

        self.on_client_connected = EventHook("client_connected")
        self.on_server_shutdown = EventHook("server_shutdown")

        self._server: asyncio.Server | None = None
        self._stopping = False
        self._logger = logging.getLogger("core.transport.server")

    @property
    def running(self) -> bool:
        return self._server is not None and not self._stopping

    @property
    def listen(self) -> tuple[str, int]:
        """Address the listener is bound to, with the actual port."""
        if self._server is None or not self._server.sockets:
            return self._config.host, self._config.port

        host, port = self._server.sockets[0].getsockname()[:2]
        return host, port

    @property
    def connections(self) -> set[PeerConnection]:
        return self.state.connections

    async def start(self, port: int | None = None) -> None:
        if self._stopping:
            raise RuntimeError("Server has been shut down")
        if self._server is not None:
            raise RuntimeError("Server already started")

        config = self._config
        self._server = await asyncio.start_server(
            self._handle_accept,
            host=config.host,
            port=config.port if port is None else port,
            backlog=config.backlog,
        )
        self._logger.info("Listening on %s", format_addr(self.listen))

    async def forward(self, origin: PeerConnection, message: bytes) -> None:
        """Send a message to every tracked connection except `origin`."""
        targets = [
            connection
            for connection in self.state.connections
            if connection is not origin
        ]
        await self._send_all(targets, message)

    async def broadcast(self, message: bytes) -> None:
        """Send a message to every tracked connection."""
        await self._send_all(list(self.state.connections), message)

    async def shutdown(self) -> None:
        if self._stopping:
            return

        self._stopping = True
        self._logger.info("Shutting down relay server")

        if self._server is not None:
            self._server.close()

        # each disconnect removes its connection from the live set
        connections = list(self.state.connections)
        await asyncio.gather(
            *(
                connection.disconnect(DisconnectReason.SERVER_SHUTDOWN)
                for connection in connections
            )
        )

        try:
            await asyncio.wait_for(
                self._wait_task_complete(),
                timeout=self._config.timeout_graceful_shutdown
            )
        except asyncio.TimeoutError:
            self._logger.error(
                f"Cancel {len(self.state.tasks)} running task(s), "
                f"timeout graceful shutdown: {self.state.tasks}"
            )
            for task in self.state.tasks:
                task.cancel("Task cancelled, timeout graceful shutdown exceeded")

        self.state.connections.clear()
        await self.on_server_shutdown.emit(self)
        self._logger.info("Relay server shut down")

    def _default_factory(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> PeerConnection:
        return PeerConnection(
            reader=reader,
            writer=writer,
            spawner=self._spawner,
            max_message_size=self._config.max_message_size,
        )

    async def _handle_accept(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        who = format_addr(get_remote_addr(writer))

        if self._stopping:
            # accept raced with shutdown
            self._logger.debug(f"{who} - Rejected, server is shutting down")
            writer.close()
            return

        connection = self._factory(reader, writer)
        self.state.connections.add(connection)
        connection.on_message_received.subscribe(self._on_message_received)
        connection.on_disconnected.subscribe(self._on_client_disconnected)

        task = connection.start()
        task.add_done_callback(self.state.tasks.discard)
        self.state.tasks.add(task)

        self._logger.info(
            f"{who} - Client connected ({len(self.state.connections)} online)"
        )
        await self.on_client_connected.emit(self, connection)

    def _on_message_received(self, connection: PeerConnection, message: bytes) -> None:
        if self._config.relay_mode is RelayMode.BROADCAST:
            self._spawner.spawn(self.broadcast(message))
        else:
            self._spawner.spawn(self.forward(connection, message))

    def _on_client_disconnected(
        self,
        connection: PeerConnection,
        reason: DisconnectReason,
    ) -> None:
        self.state.connections.discard(connection)
        self._logger.info(
            f"{connection.peername} - Client removed: {reason} "
            f"({len(self.state.connections)} online)"
        )

    async def _send_all(self, targets: list[PeerConnection], message: bytes) -> None:
        results = await asyncio.gather(
            *(self._send_one(connection, message) for connection in targets if connection.live),
            return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    @staticmethod
    async def _send_one(connection: PeerConnection, message: bytes) -> None:
        try:
            await connection.send(message)
        except ConnectionClosedError:
            # target closed between the snapshot and the write
            pass

    async def _wait_task_complete(self) -> None:
        if self.state.tasks:
            self._logger.info("Waiting for receive loops to complete.")

        while self.state.tasks:
            await asyncio.sleep(0.1)

        if self._server is not None:
            await self._server.wait_closed()
