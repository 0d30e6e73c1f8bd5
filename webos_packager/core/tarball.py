"""Tar+gzip section builder for the control and data members.

WHY: Both the control and data members of an .ipk are gzip-compressed
tarballs built from in-memory content. The builder never has files on
disk to hand to ``tarfile.add()``, so entries are described as plain
records and encoded here in one place.

HOW: Callers pass an ordered sequence of DirectoryEntry / FileEntry
records. Each becomes a TarInfo written into an in-memory GNU-format
tar stream. The raw tar is then gzip-compressed at level 9 with the
gzip header mtime zeroed.

RULES:
- Entries are written in the order given; no sorting
- A path may appear at most once per tarball (TarballError otherwise)
- Owner is root:root (uid/gid 0); directories are 0755
- Every member gets the same mtime, supplied by the caller
- tarfile / zlib errors propagate unchanged
"""

from __future__ import annotations

import gzip
import io
import tarfile
from dataclasses import dataclass
from typing import Iterable, Union

from webos_packager.config import GZIP_LEVEL, MODE_DIRECTORY, MODE_FILE


class TarballError(ValueError):
    """Raised when the entry list would produce an invalid section."""


@dataclass(frozen=True)
class DirectoryEntry:
    path: str


@dataclass(frozen=True)
class FileEntry:
    path: str
    content: bytes
    mode: int = MODE_FILE


TarEntry = Union[DirectoryEntry, FileEntry]


def _tarinfo(name: str, mtime: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.mtime = mtime
    info.uid = info.gid = 0
    info.uname = info.gname = "root"
    return info


def build_tar(entries: Iterable[TarEntry], mtime: int = 0) -> bytes:
    """Encode entries into an uncompressed tar stream."""
    seen: set[str] = set()
    raw = io.BytesIO()

    with tarfile.open(fileobj=raw, mode="w", format=tarfile.GNU_FORMAT) as tar:
        for entry in entries:
            if entry.path in seen:
                raise TarballError("Duplicate tar entry: {}".format(entry.path))
            seen.add(entry.path)

            info = _tarinfo(entry.path, mtime)
            if isinstance(entry, DirectoryEntry):
                info.type = tarfile.DIRTYPE
                info.mode = MODE_DIRECTORY
                tar.addfile(info)
            else:
                info.size = len(entry.content)
                info.mode = entry.mode
                tar.addfile(info, io.BytesIO(entry.content))

    return raw.getvalue()


def build_tarball(entries: Iterable[TarEntry], mtime: int = 0) -> bytes:
    """Encode entries into a gzip-compressed tarball at maximum compression.

    Args:
        entries: Ordered directory and file records.
        mtime: Modification time for every tar member (epoch seconds).

    Returns:
        The ``.tar.gz`` bytes. The gzip header timestamp is always 0, so
        identical entries and mtime always give identical output.
    """
    return gzip.compress(build_tar(entries, mtime), compresslevel=GZIP_LEVEL, mtime=0)
