"""Configuration constants, package layout defaults, and .env loading.

WHY: Centralizes every fixed value of the .ipk format (install roots,
control defaults, archive member names) and the few environment-driven
knobs, so humans and coding agents can find and change them without
digging through encoding logic.

HOW: python-dotenv loads the .env file on import. Constants are defined
as module-level dicts and strings. Environment-driven values are read
through small loader functions that raise a clear ValueError when a
value is malformed.

RULES:
- Install roots live under usr/palm/ (applications, services, packages)
- Control defaults never change per build; only Package/Version/Description do
- SOURCE_DATE_EPOCH pins every timestamp written into the archive
- WEBOS_PACKAGER_TIMEOUT unset or empty means "wait forever"
"""

from __future__ import annotations

import os
import time
from typing import Optional

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()

# ---------------------------------------------------------------------------
# Archive layout
# ---------------------------------------------------------------------------

DEBIAN_BINARY_VERSION = "2.0\n"
"""Content of the debian-binary member."""

MEMBER_DEBIAN_BINARY = "debian-binary"
MEMBER_CONTROL = "control.tar.gz"
MEMBER_DATA = "data.tar.gz"

INSTALL_ROOT = "usr/palm"

NAMESPACE_DIRECTORIES: dict[str, str] = {
    "app": "applications",
    "service": "services",
}
"""Namespace kind → directory under INSTALL_ROOT."""

PACKAGES_DIRECTORY = "packages"
PACKAGE_INFO_FILENAME = "packageinfo.json"

# ---------------------------------------------------------------------------
# Control section defaults
# ---------------------------------------------------------------------------

CONTROL_DEFAULTS: dict[str, str | int] = {
    "Section": "misc",
    "Priority": "optional",
    "Architecture": "all",
    "webOS-Package-Format-Version": 2,
}

# ---------------------------------------------------------------------------
# File modes
# ---------------------------------------------------------------------------

MODE_FILE = 0o644
MODE_EXECUTABLE = 0o755
MODE_DIRECTORY = 0o755
AR_MEMBER_MODE = 0o100644

GZIP_LEVEL = 9

# ---------------------------------------------------------------------------
# Output naming
# ---------------------------------------------------------------------------

IPK_FILENAME_TEMPLATE = "{id}_{version}_all.ipk"
MANIFEST_FILENAME_TEMPLATE = "{id}.manifest.json"


def default_ipk_filename(package_id: str, version: str) -> str:
    """Return the conventional ``{id}_{version}_all.ipk`` filename."""
    return IPK_FILENAME_TEMPLATE.format(id=package_id, version=version)


# ---------------------------------------------------------------------------
# Environment-driven settings
# ---------------------------------------------------------------------------


def load_build_timestamp() -> int:
    """Return the timestamp (epoch seconds) stamped into archive headers.

    WHY: ar headers and tar members carry modification times. Honouring
    SOURCE_DATE_EPOCH lets distributions produce bit-for-bit identical
    packages across machines.

    HOW: Reads SOURCE_DATE_EPOCH; falls back to the current time.

    RULES:
    - Raises ValueError if SOURCE_DATE_EPOCH is set but not a non-negative integer
    """
    raw = os.getenv("SOURCE_DATE_EPOCH", "").strip()
    if not raw:
        return int(time.time())
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            "SOURCE_DATE_EPOCH must be an integer number of seconds, got {!r}".format(raw)
        ) from None
    if value < 0:
        raise ValueError("SOURCE_DATE_EPOCH must not be negative, got {}".format(value))
    return value


def load_aggregation_timeout() -> Optional[float]:
    """Return the aggregation deadline in seconds, or None for no deadline.

    RULES:
    - Unset or empty WEBOS_PACKAGER_TIMEOUT → None
    - Raises ValueError for non-numeric or non-positive values
    """
    raw = os.getenv("WEBOS_PACKAGER_TIMEOUT", "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(
            "WEBOS_PACKAGER_TIMEOUT must be a number of seconds, got {!r}".format(raw)
        ) from None
    if value <= 0:
        raise ValueError("WEBOS_PACKAGER_TIMEOUT must be positive, got {}".format(value))
    return value
