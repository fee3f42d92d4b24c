import logging

from chatrelay.core.models.events import DisconnectReason
from chatrelay.core.models.message import ChatMessage
from chatrelay.core.transport.connection import PeerConnection


class ChatSession:
    """
    Chat participant on top of a client PeerConnection.

    Keeps the transcript a chat window would display: every line sent by
    this participant and every line relayed from the others, in the order
    the connection reported them.
    """
    def __init__(self, connection: PeerConnection, username: str) -> None:
        self.connection = connection
        self.username = username
        self.transcript: list[ChatMessage] = []
        self.closed_reason: DisconnectReason | None = None

        connection.on_message_received.subscribe(self._log_message)
        connection.on_message_sent.subscribe(self._log_message)
        connection.on_disconnected.subscribe(self._on_disconnected)

        self._logger = logging.getLogger("core.service.chat")

    @property
    def connected(self) -> bool:
        return self.connection.live

    async def say(self, text: str) -> None:
        # nothing typed, nothing sent
        if not text:
            return
        message = ChatMessage(username=self.username, text=text)
        await self.connection.send(message.to_bytes())

    async def leave(self) -> None:
        await self.connection.disconnect(DisconnectReason.LOCAL)

    def _log_message(self, connection: PeerConnection, payload: bytes) -> None:
        message = ChatMessage.from_bytes(payload)
        self.transcript.append(message)
        self._logger.debug(f"{connection.peername} - {message}")

    def _on_disconnected(self, connection: PeerConnection, reason: DisconnectReason) -> None:
        self.closed_reason = reason
        self._logger.info(f"{self.username} left {connection.peername}: {reason}")
