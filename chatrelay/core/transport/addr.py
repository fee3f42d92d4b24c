import asyncio


def get_remote_addr(writer: asyncio.StreamWriter) -> tuple[str, int] | None:
    """
    Return the (host, port) of the remote end of a stream, or None when the
    transport does not expose it (closed socket, unix socket, test double).
    """
    info = writer.get_extra_info("peername")
    if isinstance(info, (list, tuple)) and len(info) >= 2:
        return str(info[0]), int(info[1])
    return None


def format_addr(addr: tuple[str, int] | None) -> str:
    if addr is None:
        return "unknown"
    host, port = addr
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"
