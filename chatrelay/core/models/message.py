import re
from dataclasses import dataclass

ENCODING = "utf-16-le"
"""
Chat lines travel as 16-bit code units, little-endian, without a BOM.
"""

_LINE = re.compile(r"^<(?P<username>[^>]*)> (?P<text>.*)$", re.DOTALL)


@dataclass(frozen=True)
class ChatMessage:
    """
    Application-level chat line.

    The transport treats payloads as opaque bytes; this is the format the
    chat front-ends put inside them: `<username> text`.
    """
    username: str
    """
    Display name of the author, as typed by the user.
    """

    text: str
    """
    The message itself.
    """

    def __str__(self) -> str:
        return f"<{self.username}> {self.text}"

    def to_bytes(self) -> bytes:
        return str(self).encode(ENCODING)

    @classmethod
    def from_bytes(cls, data: bytes) -> "ChatMessage":
        """
        Decode a chat line. A line without the `<username> ` prefix is kept
        whole as text with an empty username.
        """
        line = data.decode(ENCODING, errors="replace")
        match = _LINE.match(line)
        if match is None:
            return cls(username="", text=line)
        return cls(username=match["username"], text=match["text"])
