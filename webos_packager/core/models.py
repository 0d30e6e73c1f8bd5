"""Data model dataclasses shared by the builder, aggregator, and packager.

WHY: The IPK builder, the namespace aggregator, and the outer packager
all talk about the same few things: package identity, namespaces, and
the package info record. Typed dataclasses make that vocabulary explicit
and keep the encoding modules free of ad-hoc dicts.

HOW: Three small types:
  PackageMetadata  package id and version (frozen)
  Namespace        one logical output unit, the app or a service (frozen)
  PackageInfo      the record serialized as packageinfo.json

RULES:
- PackageMetadata and Namespace are immutable and hashable
- NamespaceKind values ("app", "service") are also the JSON/CLI spellings
- PackageInfo.to_json() uses tab indentation and no trailing newline
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from webos_packager.config import NAMESPACE_DIRECTORIES


class NamespaceKind(str, enum.Enum):
    """Kind of a namespace inside the package.

    RULES:
    - APP installs under usr/palm/applications/
    - SERVICE installs under usr/palm/services/
    """

    APP = "app"
    SERVICE = "service"

    @property
    def directory(self) -> str:
        """Directory name under usr/palm/ for this kind."""
        return NAMESPACE_DIRECTORIES[self.value]


@dataclass(frozen=True)
class PackageMetadata:
    """Package identity written into the control section and packageinfo.json."""

    id: str
    version: str


@dataclass(frozen=True)
class Namespace:
    """One logical unit of packaged output: the application or one service.

    WHY: The application and each of its services are installed into their
    own subtree and listed separately in packageinfo.json.

    RULES:
    - id: reverse-DNS identifier, e.g. "com.example.app.service"
    - kind: NamespaceKind.APP or NamespaceKind.SERVICE
    """

    id: str
    kind: NamespaceKind

    @classmethod
    def app(cls, namespace_id: str) -> Namespace:
        return cls(namespace_id, NamespaceKind.APP)

    @classmethod
    def service(cls, namespace_id: str) -> Namespace:
        return cls(namespace_id, NamespaceKind.SERVICE)


@dataclass
class PackageInfo:
    """The package manifest installed as usr/palm/packages/{id}/packageinfo.json.

    RULES:
    - app is None only when no application namespace was registered;
      the key is then omitted from the JSON
    - services keeps registration order
    """

    id: str
    version: str
    app: Optional[str] = None
    services: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "version": self.version}
        if self.app is not None:
            data["app"] = self.app
        data["services"] = list(self.services)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent="\t")
