"""IPK builder: namespace bookkeeping, directory synthesis, and final assembly.

WHY: An .ipk is more than three concatenated blobs. The data tarball must
contain every parent directory of every installed file exactly once, the
package manager needs a control file in a fixed key order, and webOS
reads packageinfo.json to learn which app and services the package ships.
This module turns finished asset mappings into that structure.

HOW: IPKBuilder accumulates data-tarball entries as namespaces report in
via add_entries(). Each asset is placed under its namespace root,
missing ancestor directories are recorded once in an insertion-ordered
set, and the file mode is decided by sniffing the first bytes. buffer()
renders the control tarball, appends packageinfo.json plus its own
directory tree to the data entries, tars both, and returns the ar
archive. The debian-binary member is appended at construction.

RULES:
- Destination: usr/palm/{applications|services}/{namespace id}/{asset path}
- A directory path is emitted at most once, however many assets imply it
- A namespace id is a single path segment (no "/", "\\", "." or "..")
- A file path is installed at most once and never shares a path with a directory
- At most one distinct app id; services keep registration order
- ELF magic (0x7F454C46) or a "#!" shebang → 0755, otherwise 0644
- Content under 4 bytes is never executable
- buffer() without metadata raises MetadataNotSetError
- The first buffer() call seals the builder; later calls return the same bytes
"""

from __future__ import annotations

import logging
import posixpath
from typing import Dict, List, Mapping, Optional, Union

from webos_packager.config import (
    CONTROL_DEFAULTS,
    DEBIAN_BINARY_VERSION,
    INSTALL_ROOT,
    MEMBER_CONTROL,
    MEMBER_DATA,
    MEMBER_DEBIAN_BINARY,
    MODE_EXECUTABLE,
    MODE_FILE,
    PACKAGE_INFO_FILENAME,
    PACKAGES_DIRECTORY,
)
from webos_packager.core.ar import ArWriter
from webos_packager.core.models import Namespace, NamespaceKind, PackageInfo, PackageMetadata
from webos_packager.core.tarball import DirectoryEntry, FileEntry, TarEntry, build_tarball

logger = logging.getLogger(__name__)

ELF_MAGIC = 0x7F454C46
SHEBANG_MAGIC = 0x2321

# Keys of the control file, in the order they are written.
CONTROL_KEYS = (
    "Package",
    "Version",
    "Section",
    "Priority",
    "Architecture",
    "Description",
    "webOS-Package-Format-Version",
)


class IPKBuilderError(Exception):
    """Raised when the builder is used out of order or given bad input."""


class MetadataNotSetError(IPKBuilderError):
    """Raised by buffer() when package metadata was never supplied."""


def is_executable(content: bytes) -> bool:
    """Return True if content starts with an ELF header or a shebang.

    WHY: Assets arrive as bare bytes with no file-system metadata, so the
    executable bit has to be inferred from the content itself.

    RULES:
    - Fewer than 4 bytes → never executable
    - First 4 bytes big-endian == 0x7F454C46 → executable (ELF)
    - First 2 bytes big-endian == 0x2321 ("#!") → executable
    """
    if len(content) < 4:
        return False
    return (
        int.from_bytes(content[:4], "big") == ELF_MAGIC
        or int.from_bytes(content[:2], "big") == SHEBANG_MAGIC
    )


def directory_parents(path: str) -> List[str]:
    """Return every directory from the top down to and including ``path``.

    ``"usr/palm/applications"`` → ``["usr", "usr/palm", "usr/palm/applications"]``
    """
    parents: List[str] = []
    current = path
    while current not in ("", ".", "/"):
        parents.append(current)
        current = posixpath.dirname(current)
    parents.reverse()
    return parents


def _normalize_asset_path(path: str) -> str:
    normalized = posixpath.normpath(path.replace("\\", "/"))
    if (
        posixpath.isabs(normalized)
        or normalized in (".", "")
        or normalized == ".."
        or normalized.startswith("../")
    ):
        raise IPKBuilderError("Asset path must be relative and inside its namespace: {!r}".format(path))
    return normalized


def _check_namespace_id(namespace: Namespace) -> None:
    """Reject ids that would leave usr/palm/{applications|services}/."""
    if (
        not namespace.id
        or namespace.id in (".", "..")
        or "/" in namespace.id
        or "\\" in namespace.id
    ):
        raise IPKBuilderError(
            "Invalid {} namespace id: {!r}".format(namespace.kind.value, namespace.id)
        )


def serialize_control(control: Mapping[str, Union[str, int]]) -> str:
    """Render control fields as ``Key: Value`` lines in mapping order."""
    return "".join("{}: {}\n".format(key, value) for key, value in control.items())


class IPKBuilder:
    """Builds one .ipk from package metadata and per-namespace asset maps.

    WHY: The archive can only be finalized once every namespace has
    reported, but directory and namespace bookkeeping has to happen as
    each one arrives. The builder owns that state so the aggregator and
    packager only ever call add_entries() and buffer().

    HOW: State is four owned collections: pending tar entries (a list),
    created directories and installed file paths (dicts used as ordered
    sets), and registered namespaces per kind (dicts used as ordered sets).
    Directory inserts are idempotent; file paths must be unique.

    RULES:
    - add_entries() may be called any number of times before buffer()
    - add_entries() after buffer() raises IPKBuilderError
    - add_entries() either records the whole call or nothing
    - description, when given, adds a Description line to the control file
    - control_overrides replace values of known control keys
    """

    def __init__(
        self,
        metadata: Optional[PackageMetadata] = None,
        description: Optional[str] = None,
        control_overrides: Optional[Mapping[str, Union[str, int]]] = None,
        timestamp: Optional[int] = None,
    ) -> None:
        self._ar = ArWriter(timestamp)
        self._metadata = metadata
        self._description = description
        self._control_overrides = dict(control_overrides or {})
        self._entries: List[TarEntry] = []
        self._directories: Dict[str, None] = {}
        self._files: Dict[str, None] = {}
        self._namespaces: Dict[NamespaceKind, Dict[str, None]] = {
            NamespaceKind.APP: {},
            NamespaceKind.SERVICE: {},
        }
        self._buffer: Optional[bytes] = None

        unknown = set(self._control_overrides) - set(CONTROL_KEYS)
        if unknown:
            raise IPKBuilderError("Unknown control keys: {}".format(", ".join(sorted(unknown))))

        self._ar.append(MEMBER_DEBIAN_BINARY, DEBIAN_BINARY_VERSION)

    @property
    def metadata(self) -> Optional[PackageMetadata]:
        return self._metadata

    @property
    def timestamp(self) -> int:
        return self._ar.timestamp

    def set_metadata(self, metadata: PackageMetadata) -> IPKBuilder:
        self._ensure_open()
        self._metadata = metadata
        return self

    @property
    def app_id(self) -> Optional[str]:
        return next(iter(self._namespaces[NamespaceKind.APP]), None)

    @property
    def service_ids(self) -> List[str]:
        return list(self._namespaces[NamespaceKind.SERVICE])

    @property
    def entries(self) -> List[TarEntry]:
        """Snapshot of the data entries accumulated so far."""
        return list(self._entries)

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def add_entries(self, namespace: Namespace, assets: Mapping[str, bytes]) -> None:
        """Place one namespace's assets into the pending data section.

        Re-adding a namespace merges its assets, but every installed path
        must be unique: a file may not repeat an existing file, and a file
        and a directory may not share a path. The call is checked as a
        whole before anything is recorded.

        Args:
            namespace: The app or service these assets belong to.
            assets: Mapping of relative posix path → file content, processed
                    in iteration order.

        Raises:
            IPKBuilderError: After buffer(), for a second distinct app id,
                for an invalid namespace id, for an asset path that escapes
                the namespace root, or for a path clash.
        """
        self._ensure_open()
        _check_namespace_id(namespace)
        self._check_app(namespace)

        root = posixpath.join(INSTALL_ROOT, namespace.kind.directory, namespace.id)
        directories: Dict[str, None] = {}
        files: List[FileEntry] = []
        file_names: Dict[str, None] = {}

        for directory in directory_parents(root):
            directories.setdefault(directory, None)
        for asset, content in assets.items():
            name = posixpath.join(root, _normalize_asset_path(asset))
            for directory in directory_parents(posixpath.dirname(name)):
                directories.setdefault(directory, None)

            if name in self._files or name in file_names:
                raise IPKBuilderError(
                    "Duplicate asset {!r} in {} {}.".format(asset, namespace.kind.value, namespace.id)
                )
            file_names[name] = None

            content = bytes(content)
            mode = MODE_EXECUTABLE if is_executable(content) else MODE_FILE
            files.append(FileEntry(name, content, mode))

        for name in file_names:
            if name in directories or name in self._directories:
                raise IPKBuilderError(
                    "Asset {} in {} {} clashes with a directory.".format(
                        name, namespace.kind.value, namespace.id
                    )
                )
        for directory in directories:
            if directory in self._files:
                raise IPKBuilderError(
                    "Directory {} in {} {} clashes with a file.".format(
                        directory, namespace.kind.value, namespace.id
                    )
                )

        self._namespaces[namespace.kind].setdefault(namespace.id, None)
        for directory in directories:
            if directory not in self._directories:
                self._directories[directory] = None
                self._entries.append(DirectoryEntry(directory))
        for entry in files:
            self._files[entry.path] = None
            self._entries.append(entry)

        logger.debug("Added %d asset(s) for %s %s", len(assets), namespace.kind.value, namespace.id)

    def _check_app(self, namespace: Namespace) -> None:
        registered = self._namespaces[namespace.kind]
        if namespace.kind is NamespaceKind.APP and registered and namespace.id not in registered:
            raise IPKBuilderError(
                "Package already has app {}; cannot add second app {}.".format(
                    self.app_id, namespace.id
                )
            )

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def control_section(self) -> Dict[str, Union[str, int]]:
        """Return the control fields in write order."""
        metadata = self._require_metadata()
        values: Dict[str, Union[str, int]] = {
            "Package": metadata.id,
            "Version": metadata.version,
            **CONTROL_DEFAULTS,
        }
        if self._description is not None:
            values["Description"] = self._description
        values.update(self._control_overrides)
        return {key: values[key] for key in CONTROL_KEYS if key in values}

    def package_info(self) -> PackageInfo:
        metadata = self._require_metadata()
        return PackageInfo(
            id=metadata.id,
            version=metadata.version,
            app=self.app_id,
            services=self.service_ids,
        )

    def buffer(self) -> bytes:
        """Render the complete .ipk archive.

        Steps, in order: control.tar.gz, then data.tar.gz (with the package
        directory and packageinfo.json appended), then the ar buffer.

        Raises:
            MetadataNotSetError: If no PackageMetadata was supplied.
        """
        if self._buffer is not None:
            return self._buffer

        metadata = self._require_metadata()

        control = serialize_control(self.control_section())
        control_tarball = build_tarball(
            [FileEntry("control", control.encode("utf-8"))], self.timestamp
        )

        # Nothing is committed until both tarballs encode successfully.
        package_root = posixpath.join(INSTALL_ROOT, PACKAGES_DIRECTORY, metadata.id)
        data_entries = list(self._entries)
        data_entries.extend(
            DirectoryEntry(directory)
            for directory in directory_parents(package_root)
            if directory not in self._directories
        )
        data_entries.append(FileEntry(
            posixpath.join(package_root, PACKAGE_INFO_FILENAME),
            self.package_info().to_json().encode("utf-8"),
        ))
        data_tarball = build_tarball(data_entries, self.timestamp)

        self._ar.append(MEMBER_CONTROL, control_tarball)
        self._ar.append(MEMBER_DATA, data_tarball)
        self._entries = data_entries
        self._buffer = self._ar.buffer()
        logger.info(
            "Built %s %s: %d data entries, %d bytes",
            metadata.id, metadata.version, len(self._entries), len(self._buffer),
        )
        return self._buffer

    def _require_metadata(self) -> PackageMetadata:
        if self._metadata is None:
            raise MetadataNotSetError("Package metadata not set.")
        return self._metadata

    def _ensure_open(self) -> None:
        if self._buffer is not None:
            raise IPKBuilderError("Builder already rendered; no further changes allowed.")
