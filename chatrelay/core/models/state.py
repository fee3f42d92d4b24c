import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatrelay.core.transport.connection import PeerConnection


@dataclass
class ServerState:
    """
    Shared runtime state for a RelayServer.

    This object is mutated by:
    - the accept path: adds new connections and their receive tasks
    - disconnect notifications: remove closed connections
    - RelayServer.shutdown(): snapshots connections and waits for tasks

    Every mutation runs synchronously on the event loop thread, between two
    suspension points, so none of them can interleave with another.
    """
    connections: set["PeerConnection"] = field(default_factory=set)
    """
    Set of Live PeerConnection instances accepted by the server.
    """

    tasks: set[asyncio.Task[None]] = field(default_factory=set)
    """
    Receive loop tasks of the tracked connections. Each task removes itself
    via task.add_done_callback(tasks.discard) once it ends.
    """
