from dataclasses import dataclass
from enum import StrEnum


class RelayMode(StrEnum):
    FORWARD = "forward"
    """Relay a received message to every other connection (chat relay)."""

    BROADCAST = "broadcast"
    """Relay a received message to every connection, the sender included."""


@dataclass
class ServerConfig:
    """
    Static configuration for a chatrelay RelayServer.

    This structure defines all parameters required to start a server:
    networking, resource limits, relay policy, and shutdown behavior.
    """
    port: int
    """
    TCP port to bind. If set to 0, the OS selects an available port.
    """

    host: str = "0.0.0.0"
    """
    Address on which the server listens. Defaults to all local interfaces.
    """

    backlog: int = 100
    """
    Maximum number of pending TCP connections waiting for accept().
    """

    max_message_size: int = 1 * 1024 * 1024  # 1MB
    """
    Maximum size of a single message payload, in both directions.
    A peer announcing a larger frame is disconnected.
    """

    relay_mode: RelayMode = RelayMode.FORWARD
    """
    What the server does with a message received from one connection.
    """

    timeout_graceful_shutdown: float = 5.0
    """
    Maximum time (in seconds) allowed for receive loops to finish after
    every connection has been disconnected on shutdown. After this timeout,
    remaining tasks are cancelled.
    """
