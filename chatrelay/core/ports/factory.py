import asyncio
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from chatrelay.core.transport.connection import PeerConnection


class ConnectionFactory(Protocol):
    """
    Builds the connection wrapper for a newly accepted stream pair.

    The RelayServer only tracks, relays and disconnects what the factory
    returns; it does not know how messages are interpreted on top of the
    framing. Implementations must return a connection that is not started
    yet, the server subscribes to its events before starting it.
    """

    def __call__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> "PeerConnection":
        """Wrap an accepted inbound stream into a PeerConnection."""
