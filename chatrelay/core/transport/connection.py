import asyncio
import logging

from chatrelay.core.errors import ConnectionClosedError
from chatrelay.core.helpers.events import EventHook
from chatrelay.core.helpers.spawn import TaskSpawner
from chatrelay.core.models.events import DisconnectReason
from chatrelay.core.transport.addr import format_addr, get_remote_addr
from chatrelay.core.transport.framing import encode_frame, read_frame

DEFAULT_MAX_MESSAGE_SIZE = 1 * 1024 * 1024  # 1MB

_WRITE_ERRORS = (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)


class PeerConnection:
    """
    One end of a TCP connection exchanging length‑prefixed messages.

    A PeerConnection is either Live (stream open, receive loop running) or
    Closed (stream released, receive loop terminated). Closed is terminal:
    a connection is never reopened, a new one must be created instead.

    Lifecycle is explicit and two‑step. The connection is built first, either
    from an accepted stream pair or through `connect()` for an outbound
    connection, then observers are registered and `start()` launches the
    receive loop. No event can therefore fire before its consumers exist.

    Events, each produced only by this object:
    - `on_message_received(connection, message)` for every decoded frame
    - `on_message_sent(connection, message)` once a frame has been flushed
    - `on_disconnected(connection, reason)` exactly once, when the
      connection becomes Closed

    All observers are dropped after the disconnect notification so that a
    closed connection keeps no reference to its former consumers.

    Writes are serialized by a per‑connection lock, so concurrent `send()`
    calls never interleave partial frames on the stream.
    """
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        spawner: TaskSpawner | None = None,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._spawner = spawner or TaskSpawner()
        self._max_message_size = max_message_size
        self._write_lock = asyncio.Lock()
        self._receive_task: asyncio.Task | None = None
        self._live = True

        self._peer = get_remote_addr(writer)
        self.on_message_received = EventHook("message_received")
        self.on_message_sent = EventHook("message_sent")
        self.on_disconnected = EventHook("disconnected")

        self._logger = logging.getLogger("core.transport.connection")

    def __repr__(self) -> str:
        state = "live" if self._live else "closed"
        return f"<PeerConnection {self.peername} {state}>"

    @classmethod
    async def connect(
        cls,
        host: str,
        port: int,
        spawner: TaskSpawner | None = None,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
        timeout: float | None = None,
    ) -> "PeerConnection":
        """
        Open an outbound connection and return it, not yet started.

        A failed connect raises to the caller (OSError, or TimeoutError when
        a timeout is given); no PeerConnection exists in that case.
        """
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host=host, port=port),
            timeout=timeout
        )
        return cls(
            reader=reader,
            writer=writer,
            spawner=spawner,
            max_message_size=max_message_size,
        )

    @property
    def live(self) -> bool:
        return self._live

    @property
    def peername(self) -> str:
        return format_addr(self._peer)

    @property
    def receive_task(self) -> asyncio.Task | None:
        return self._receive_task

    def start(self) -> asyncio.Task:
        """Launch the receive loop. A connection can be started only once."""
        if not self._live:
            raise ConnectionClosedError(f"Connection to {self.peername} is closed")
        if self._receive_task is not None:
            raise RuntimeError(f"Connection to {self.peername} already started")

        self._receive_task = self._spawner.spawn(
            self._receive_loop(), name=f"recv-{self.peername}"
        )
        self._logger.debug(f"{self.peername} - Receive loop started")
        return self._receive_task

    async def send(self, message: bytes) -> None:
        """
        Write one message as a frame and wait until it is flushed.

        Raises ConnectionClosedError if the connection is already Closed.
        A transport failure during the write is not raised: the connection
        is torn down with an abrupt‑close reason and the caller learns about
        it through `on_disconnected`, like any other disconnect.
        """
        if not message:
            # A zero length frame reads as a close on the remote end.
            raise ValueError("Cannot send an empty message")

        frame = encode_frame(message, self._max_message_size)

        failed: OSError | None = None

        async with self._write_lock:
            if not self._live:
                raise ConnectionClosedError(
                    f"Connection to {self.peername} is closed"
                )

            try:
                self._writer.write(frame)
                await self._writer.drain()
            except _WRITE_ERRORS as exc:
                if not self._live:
                    raise ConnectionClosedError(
                        f"Connection to {self.peername} is closed"
                    ) from exc
                failed = exc

        # disconnect handlers may send, so the lock must be released first
        if failed is not None:
            self._logger.warning(f"{self.peername} - Send failed: {failed}")
            await self.disconnect(DisconnectReason.REMOTE_ABRUPT)
            return

        await self.on_message_sent.emit(self, message)

    async def disconnect(
        self,
        reason: DisconnectReason = DisconnectReason.LOCAL,
    ) -> None:
        """
        Close the connection and notify observers once.

        Safe to call any number of times and from several tasks at once:
        the first caller performs the teardown, later callers return
        immediately. Closing the stream also ends the receive loop, which
        observes the end of file and exits without a second notification.
        """
        if not self._live:
            return

        self._live = False
        self._logger.debug(f"{self.peername} - Disconnecting: {reason}")

        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (OSError, RuntimeError) as exc:
            self._logger.debug(f"{self.peername} - Error while closing: {exc!r}")

        self._logger.info(f"{self.peername} - Disconnected: {reason}")
        try:
            await self.on_disconnected.emit(self, reason)
        finally:
            self.on_message_received.clear()
            self.on_message_sent.clear()
            self.on_disconnected.clear()

    async def _receive_loop(self) -> None:
        try:
            while self._live:
                result = await read_frame(self._reader, self._max_message_size)

                if result.closed:
                    if self._live:
                        await self.disconnect(result.reason)
                    # otherwise a local disconnect closed the stream under us
                    break

                await self.on_message_received.emit(self, result.payload)
        except Exception:
            await self.disconnect(DisconnectReason.PROTOCOL_ERROR)
            raise
        finally:
            self._logger.debug(f"{self.peername} - Receive loop ended")
