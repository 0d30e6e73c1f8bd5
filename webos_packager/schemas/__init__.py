"""JSON Schemas for packager options and generated JSON documents.

WHY: Options come from users (CLI flags, build scripts) and the manifest
is published to app stores. Both are validated against JSON Schema so a
bad value fails with a precise message before any archive is written.

HOW: Schema files live next to this module. validate_document() loads a
schema by name on first use, caches it, and runs jsonschema.validate().

RULES:
- Names: "options", "manifest", "packageinfo"
- Raises jsonschema.ValidationError on invalid documents
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema

_SCHEMA_DIR = Path(__file__).resolve().parent

_CACHED_SCHEMAS: dict[str, dict[str, Any]] = {}


def _load_schema(name: str) -> dict[str, Any]:
    with open(_SCHEMA_DIR / "{}.schema.json".format(name), encoding="utf-8") as f:
        return json.load(f)


def get_schema(name: str) -> dict[str, Any]:
    if name not in _CACHED_SCHEMAS:
        _CACHED_SCHEMAS[name] = _load_schema(name)
    return _CACHED_SCHEMAS[name]


def validate_document(name: str, document: Any) -> None:
    """Validate ``document`` against the named schema."""
    jsonschema.validate(instance=document, schema=get_schema(name))
