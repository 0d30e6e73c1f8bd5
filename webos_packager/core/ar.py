"""Debian ``ar`` archive writer and reader.

WHY: An .ipk is an ``ar`` container. The format is tiny but unforgiving:
package managers reject archives whose headers are off by a single byte.
This module owns the exact encoding so nothing else has to.

HOW: ArWriter collects ArMember records in order. Each member renders a
60-byte fixed-width ASCII header followed by its content and, when the
content length is odd, a single newline pad byte. ArWriter.buffer()
prefixes the global ``!<arch>\\n`` magic and concatenates the members.
read_ar() walks a finished buffer back into (identifier, content) pairs.

RULES:
- Header fields (left-justified, space padded): identifier 16,
  mtime 12, owner 6, group 6, mode 8 (octal digits), size 10, "`\\n" 2
- Identifiers longer than 16 bytes fail in append(), never later
- Odd-length content gets exactly one "\\n" pad byte; even gets none
- Member order is the order of append() calls
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple, Union

from webos_packager.config import AR_MEMBER_MODE, load_build_timestamp

AR_MAGIC = b"!<arch>\n"
AR_HEADER_SIZE = 60
AR_TERMINATOR = b"`\n"
MAX_IDENTIFIER_LENGTH = 16


class ArError(ValueError):
    """Raised for identifiers the format cannot hold or malformed archives."""


@dataclass(frozen=True)
class ArMember:
    """One member of an ar archive.

    RULES:
    - identifier must be ASCII and at most 16 bytes (checked on construction)
    - file_mode is rendered as octal digits, e.g. 0o100644 → "100644"
    """

    identifier: str
    content: bytes
    timestamp: int
    owner_id: int = 0
    group_id: int = 0
    file_mode: int = AR_MEMBER_MODE

    def __post_init__(self) -> None:
        try:
            encoded = self.identifier.encode("ascii")
        except UnicodeEncodeError:
            raise ArError(
                "Identifier ({}) must be ASCII.".format(self.identifier)
            ) from None
        if len(encoded) > MAX_IDENTIFIER_LENGTH:
            raise ArError(
                "Identifier ({}) is too long: {} bytes, limit is {}.".format(
                    self.identifier, len(encoded), MAX_IDENTIFIER_LENGTH
                )
            )

    def header(self) -> bytes:
        header = "".join([
            self.identifier.ljust(MAX_IDENTIFIER_LENGTH),
            str(self.timestamp).ljust(12),
            str(self.owner_id).ljust(6),
            str(self.group_id).ljust(6),
            format(self.file_mode, "o").ljust(8),
            str(len(self.content)).ljust(10),
        ]).encode("ascii") + AR_TERMINATOR
        if len(header) != AR_HEADER_SIZE:
            raise ArError(
                "Header for {} is {} bytes, expected {}.".format(
                    self.identifier, len(header), AR_HEADER_SIZE
                )
            )
        return header

    def to_bytes(self) -> bytes:
        padding = b"\n" if len(self.content) % 2 else b""
        return self.header() + self.content + padding


class ArWriter:
    """Accumulates members and renders the complete ar archive.

    WHY: The IPK builder appends members at different points in its
    lifecycle (debian-binary at construction, the tarballs at render
    time) and needs the final buffer only once everything is in.

    RULES:
    - All members share the writer's timestamp so rendering is repeatable
    - str content is UTF-8 encoded
    """

    def __init__(self, timestamp: Optional[int] = None) -> None:
        self.timestamp = load_build_timestamp() if timestamp is None else timestamp
        self._members: List[ArMember] = []

    def append(self, identifier: str, content: Union[bytes, str]) -> ArMember:
        if isinstance(content, str):
            content = content.encode("utf-8")
        member = ArMember(identifier, bytes(content), self.timestamp)
        self._members.append(member)
        return member

    @property
    def identifiers(self) -> List[str]:
        return [m.identifier for m in self._members]

    def buffer(self) -> bytes:
        return AR_MAGIC + b"".join(m.to_bytes() for m in self._members)


def iter_ar(data: bytes) -> Iterator[Tuple[str, bytes]]:
    """Yield ``(identifier, content)`` for each member of an ar archive.

    WHY: Tests and the ``inspect`` command need to look inside finished
    packages without shelling out to ``ar``.

    RULES:
    - Raises ArError on a missing magic, short header, bad terminator,
      or content running past the end of the buffer
    - Trailing "/" on GNU-style identifiers is stripped
    """
    if not data.startswith(AR_MAGIC):
        raise ArError("Not an ar archive: missing {!r} magic.".format(AR_MAGIC))

    offset = len(AR_MAGIC)
    while offset < len(data):
        header = data[offset:offset + AR_HEADER_SIZE]
        if len(header) < AR_HEADER_SIZE:
            raise ArError("Truncated member header at offset {}.".format(offset))
        if header[58:60] != AR_TERMINATOR:
            raise ArError("Bad header terminator at offset {}.".format(offset))

        identifier = header[0:16].decode("ascii").rstrip(" ").rstrip("/")
        try:
            size = int(header[48:58].decode("ascii").strip())
        except ValueError:
            raise ArError("Bad size field for member {}.".format(identifier)) from None

        start = offset + AR_HEADER_SIZE
        end = start + size
        if end > len(data):
            raise ArError("Member {} runs past end of archive.".format(identifier))

        yield identifier, data[start:end]
        offset = end + (size % 2)


def read_ar(data: bytes) -> List[Tuple[str, bytes]]:
    """Decode a whole ar archive into a list of ``(identifier, content)``."""
    return list(iter_ar(data))
