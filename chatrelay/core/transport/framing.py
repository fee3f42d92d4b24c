import asyncio
import logging
import struct

from chatrelay.core.errors import FrameError, FrameTooLargeError
from chatrelay.core.models.events import DisconnectReason, ReadResult

# "<i" = int32 little-endian, as written by the desktop chat clients
HEADER = struct.Struct("<i")

_ABRUPT_ERRORS = (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)

_logger = logging.getLogger("core.transport.framing")


def encode_frame(message: bytes, max_size: int | None = None) -> bytes:
    """
    Build a frame: a 4‑byte little‑endian length prefix followed by the
    message bytes. The codec does not look at the payload content.
    """
    length = len(message)
    if max_size is not None and length > max_size:
        raise FrameTooLargeError(f"Message too large: {length} > {max_size}")

    return HEADER.pack(length) + bytes(message)


def decode_frame(frame: bytes, max_size: int | None = None) -> bytes:
    """
    Decode one complete frame held in memory.

    This is the buffer‑level inverse of `encode_frame`. Unlike `read_frame`,
    a zero length is a valid empty message here since there is no stream to
    have been closed.
    """
    if len(frame) < HEADER.size:
        raise FrameError(f"Truncated header: {len(frame)} byte(s)")

    (length,) = HEADER.unpack_from(frame)
    _check_length(length, max_size)

    payload = frame[HEADER.size:]
    if len(payload) != length:
        raise FrameError(
            f"Frame declares {length} byte(s) but carries {len(payload)}"
        )

    return bytes(payload)


async def read_frame(
    reader: asyncio.StreamReader,
    max_size: int | None = None,
) -> ReadResult:
    """
    Read exactly one frame from the stream.

    The read happens in two phases: the 4‑byte header, then exactly the
    number of bytes it announces. Nothing is buffered across messages.

    The end of the stream is reported as an outcome, not raised:
    - end of file, or a zero length prefix -> remote graceful close
    - reset/abort reported by the transport -> remote abrupt close

    A negative or oversized length means the stream lost frame
    synchronisation; FrameError is raised and must not be ignored.
    """
    try:
        header = await reader.readexactly(HEADER.size)
        (length,) = HEADER.unpack(header)

        if length == 0:
            return ReadResult.end(DisconnectReason.REMOTE_GRACEFUL)

        _check_length(length, max_size)
        payload = await reader.readexactly(length)
    except asyncio.IncompleteReadError as exc:
        if exc.partial:
            _logger.debug(
                f"Stream ended after {len(exc.partial)} of {exc.expected} byte(s)"
            )
        return ReadResult.end(DisconnectReason.REMOTE_GRACEFUL)
    except _ABRUPT_ERRORS as exc:
        _logger.debug(f"Transport reported {exc!r}")
        return ReadResult.end(DisconnectReason.REMOTE_ABRUPT)

    return ReadResult.message(payload)


def _check_length(length: int, max_size: int | None) -> None:
    if length < 0:
        raise FrameError(f"Invalid frame length: {length}")
    if max_size is not None and length > max_size:
        raise FrameTooLargeError(f"Frame too large: {length} > {max_size}")
