"""Shared test fixtures for the webos_packager test suite.

WHY: Most test modules build a package and then need to look inside it:
ar members, control text, data tarball entries and their modes. Decoding
in one place keeps every test reading the archive the same way.

HOW: Plain constants for package identity, fixtures for metadata and
namespaces, and an ``unpack_ipk`` fixture that decodes a finished buffer
into an UnpackedIPK record.

RULES:
- Decoding uses only read_ar() and the standard tarfile reader
"""

import io
import json
import tarfile
from dataclasses import dataclass, field
from typing import Any, Dict, List

import pytest

from webos_packager.core.ar import read_ar
from webos_packager.core.models import Namespace, PackageMetadata


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PACKAGE_ID = "com.example.app"
PACKAGE_VERSION = "1.0.0"
SERVICE_A = "com.example.app.service"
SERVICE_B = "com.example.app.worker"


# ---------------------------------------------------------------------------
# Archive decoding
# ---------------------------------------------------------------------------


@dataclass
class UnpackedIPK:
    """Decoded view of an .ipk buffer."""

    identifiers: List[str]
    members: Dict[str, bytes]
    control: str
    entries: Dict[str, tarfile.TarInfo] = field(default_factory=dict)
    names: List[str] = field(default_factory=list)
    files: Dict[str, bytes] = field(default_factory=dict)

    def package_info(self, package_id: str = PACKAGE_ID) -> Dict[str, Any]:
        return json.loads(self.files["usr/palm/packages/{}/packageinfo.json".format(package_id)])


def _read_tarball(content: bytes):
    with tarfile.open(fileobj=io.BytesIO(content), mode="r:gz") as tar:
        members = tar.getmembers()
        files = {
            m.name: tar.extractfile(m).read()
            for m in members
            if m.isfile()
        }
    return members, files


def unpack(buffer: bytes) -> UnpackedIPK:
    pairs = read_ar(buffer)
    members = dict(pairs)

    _, control_files = _read_tarball(members["control.tar.gz"])
    data_members, data_files = _read_tarball(members["data.tar.gz"])

    return UnpackedIPK(
        identifiers=[identifier for identifier, _ in pairs],
        members=members,
        control=control_files["control"].decode("utf-8"),
        entries={m.name: m for m in data_members},
        names=[m.name for m in data_members],
        files=data_files,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def unpack_ipk():
    """Decode a finished .ipk buffer into an UnpackedIPK."""
    return unpack


@pytest.fixture
def metadata():
    return PackageMetadata(PACKAGE_ID, PACKAGE_VERSION)


@pytest.fixture
def app_namespace():
    return Namespace.app(PACKAGE_ID)


@pytest.fixture
def service_namespaces():
    return [Namespace.service(SERVICE_A), Namespace.service(SERVICE_B)]
