"""Homebrew channel manifest generation.

WHY: Homebrew app stores for webOS list packages through a small JSON
manifest next to the .ipk: display metadata plus the .ipk location and
its sha256, so clients can verify the download.

HOW: build_manifest() hashes the finished archive buffer, combines it
with the package options and homebrew metadata, validates the result
against manifest.schema.json, and returns the dict. render_manifest()
serializes it the same way packageinfo.json is serialized.

RULES:
- ipkHash.sha256 is the lowercase hex digest of the exact .ipk bytes
- ipkUrl is the output filename (relative to the manifest)
- Optional fields (type, appDescription, rootRequired) are omitted when unset
- Schema validation is mandatory: raises on invalid output
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Mapping

from webos_packager.schemas import validate_document


def sha256_hex(buffer: bytes) -> str:
    return hashlib.sha256(buffer).hexdigest()


def build_manifest(
    options: Mapping[str, Any],
    filename: str,
    buffer: bytes,
) -> Dict[str, Any]:
    """Build and validate the homebrew manifest for a finished package.

    Args:
        options: Validated packager options; must contain ``metadata``.
        filename: The .ipk filename the manifest points at.
        buffer: The complete .ipk bytes.

    Returns:
        Manifest dict with keys id, version, type, title, appDescription,
        iconUrl, sourceUri, rootRequired, ipkUrl, ipkHash.

    Raises:
        KeyError: If options has no homebrew metadata.
        jsonschema.ValidationError: If the manifest does not conform.
    """
    metadata = options["metadata"]

    manifest: Dict[str, Any] = {
        "id": options["id"],
        "version": options["version"],
        "type": metadata.get("type"),
        "title": metadata["title"],
        "appDescription": options.get("description"),
        "iconUrl": metadata["iconUrl"],
        "sourceUri": metadata["sourceUrl"],
        "rootRequired": metadata.get("rootRequired"),
        "ipkUrl": filename,
        "ipkHash": {"sha256": sha256_hex(buffer)},
    }
    manifest = {key: value for key, value in manifest.items() if value is not None}

    validate_document("manifest", manifest)
    return manifest


def render_manifest(manifest: Mapping[str, Any]) -> str:
    return json.dumps(manifest, indent="\t")
