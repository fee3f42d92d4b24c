class ChatRelayError(Exception):
    """Base class for errors raised by the chatrelay core."""


class FrameError(ChatRelayError):
    """
    A frame could not be decoded: negative length prefix, truncated or
    oversized buffer. The stream is no longer synchronised on frame
    boundaries and the connection cannot continue.
    """


class FrameTooLargeError(FrameError):
    """The declared or actual payload length exceeds the configured limit."""


class ConnectionClosedError(ChatRelayError):
    """An operation was attempted on a connection that is already closed."""
