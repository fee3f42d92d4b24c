from dataclasses import dataclass
from enum import StrEnum


class DisconnectReason(StrEnum):
    """
    Why a PeerConnection ended.

    The reason travels as metadata on the `disconnected` event and is not
    used for control flow outside the receive loop.
    """
    LOCAL = "Local client disconnected"
    REMOTE_GRACEFUL = "Remote host disconnected gracefully"
    REMOTE_ABRUPT = "Remote host disconnected ungracefully"
    SERVER_SHUTDOWN = "Server shutdown"
    PROTOCOL_ERROR = "Protocol error"


@dataclass(frozen=True)
class ReadResult:
    """
    Outcome of reading one frame from a stream.

    Exactly one of `payload` and `reason` is set: a decoded message, or the
    reason the stream ended.
    """
    payload: bytes | None = None
    """Decoded message body."""

    reason: DisconnectReason | None = None
    """Set when the stream ended instead of yielding a message."""

    @property
    def closed(self) -> bool:
        return self.reason is not None

    @classmethod
    def message(cls, payload: bytes) -> "ReadResult":
        return cls(payload=payload)

    @classmethod
    def end(cls, reason: DisconnectReason) -> "ReadResult":
        return cls(reason=reason)
