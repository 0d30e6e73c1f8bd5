"""Build driver: participants, options, and the end-to-end .ipk build.

WHY: A package is built from one application and any number of services,
each produced independently. Someone has to validate the options, start
every producer, wait for all of them, hand the results to the IPK builder
in a stable order, and name and write the outputs. That is the Packager.

HOW: Each namespace is a Participant tagged with a Role. The single
PACKAGER participant (the app) both produces assets and finalizes the
archive; HOOK participants (services) only produce assets. Packager.build()
registers every participant with a NamespaceAggregator, runs all sources
concurrently, drains the aggregator into a fresh IPKBuilder, and renders
the archive and, when enabled, the homebrew manifest.

RULES:
- Options are validated against options.schema.json on construction
- Exactly one PACKAGER participant, which must be an app namespace
- HOOK participants must be service namespaces with distinct ids
- A failing source aborts the build; nothing is written
- Output filename defaults to {id}_{version}_all.ipk
- Manifest filename is {id}.manifest.json
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Union

from webos_packager.config import (
    MANIFEST_FILENAME_TEMPLATE,
    default_ipk_filename,
    load_aggregation_timeout,
)
from webos_packager.core.aggregator import NamespaceAggregator
from webos_packager.core.ipk import IPKBuilder
from webos_packager.core.models import Namespace, NamespaceKind, PackageMetadata
from webos_packager.manifest import build_manifest, render_manifest
from webos_packager.schemas import validate_document
from webos_packager.sources import AssetSource

logger = logging.getLogger(__name__)


class PackagerError(Exception):
    """Raised when the participant set cannot form a valid package."""


class Stage(str, enum.Enum):
    """Build stages a participant can take part in."""

    PRODUCE = "produce"
    FINALIZE = "finalize"


class Role(str, enum.Enum):
    """What a participant does during the build.

    RULES:
    - PACKAGER produces assets and finalizes the archive (the app)
    - HOOK only produces assets (a service)
    """

    PACKAGER = "packager"
    HOOK = "hook"

    @property
    def stages(self) -> FrozenSet[Stage]:
        return _ROLE_STAGES[self]


_ROLE_STAGES: Dict[Role, FrozenSet[Stage]] = {
    Role.PACKAGER: frozenset({Stage.PRODUCE, Stage.FINALIZE}),
    Role.HOOK: frozenset({Stage.PRODUCE}),
}


@dataclass(frozen=True)
class Participant:
    """One namespace taking part in the build, with its asset source."""

    role: Role
    namespace: Namespace
    source: AssetSource

    @classmethod
    def packager(cls, app_id: str, source: AssetSource) -> Participant:
        return cls(Role.PACKAGER, Namespace.app(app_id), source)

    @classmethod
    def hook(cls, service_id: str, source: AssetSource) -> Participant:
        return cls(Role.HOOK, Namespace.service(service_id), source)

    def participates(self, stage: Stage) -> bool:
        return stage in self.role.stages


@dataclass
class BuildResult:
    """The rendered package and, optionally, its manifest."""

    filename: str
    buffer: bytes
    manifest: Optional[Dict[str, Any]] = None
    manifest_filename: Optional[str] = None


class Packager:
    """Builds a webOS .ipk from an app participant and service participants.

    Args:
        options: Packager options (see options.schema.json).
        participants: The app (Role.PACKAGER) and services (Role.HOOK).
        timeout: Aggregation deadline in seconds; defaults to
                 WEBOS_PACKAGER_TIMEOUT, None waits forever.
        timestamp: Archive timestamp; defaults to SOURCE_DATE_EPOCH or now.

    Raises:
        jsonschema.ValidationError: If options are invalid.
        PackagerError: If the participants do not form a valid package.
    """

    def __init__(
        self,
        options: Mapping[str, Any],
        participants: Sequence[Participant],
        timeout: Optional[float] = None,
        timestamp: Optional[int] = None,
    ) -> None:
        self.options: Dict[str, Any] = dict(options)
        validate_document("options", self.options)

        self.participants = list(participants)
        self._check_participants()

        self.timeout = load_aggregation_timeout() if timeout is None else timeout
        self.timestamp = timestamp

    def _check_participants(self) -> None:
        finalizers = [p for p in self.participants if p.participates(Stage.FINALIZE)]
        if len(finalizers) != 1:
            raise PackagerError(
                "Expected exactly one packager participant, got {}.".format(len(finalizers))
            )
        for participant in self.participants:
            expected = NamespaceKind.APP if participant.role is Role.PACKAGER else NamespaceKind.SERVICE
            if participant.namespace.kind is not expected:
                raise PackagerError(
                    "{} participant {} must be a {} namespace.".format(
                        participant.role.value, participant.namespace.id, expected.value
                    )
                )
        ids = [p.namespace.id for p in self.participants]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise PackagerError("Duplicate namespace ids: {}".format(", ".join(duplicates)))

    @property
    def metadata(self) -> PackageMetadata:
        return PackageMetadata(self.options["id"], self.options["version"])

    @property
    def filename(self) -> str:
        return self.options.get("filename") or default_ipk_filename(
            self.options["id"], self.options["version"]
        )

    @property
    def manifest_filename(self) -> str:
        return MANIFEST_FILENAME_TEMPLATE.format(id=self.options["id"])

    async def _contribute(self, participant: Participant, aggregator: NamespaceAggregator) -> None:
        """Run one source and settle its aggregator slot."""
        namespace = participant.namespace
        try:
            assets = await participant.source()
        except Exception as exc:
            logger.error("Producer for %s failed: %s", namespace.id, exc)
            aggregator.reject(namespace, exc)
        else:
            aggregator.resolve(namespace, assets)

    async def build(self) -> BuildResult:
        """Run every producer, join them, and render the package.

        Returns:
            BuildResult with the .ipk bytes and, when emit_manifest is set,
            the validated manifest dict.

        Raises:
            AggregationTimeoutError: If producers miss the deadline.
            jsonschema.ValidationError: If packageinfo or the manifest is invalid.
            Exception: Any producer failure, unchanged.
        """
        builder = IPKBuilder(
            self.metadata,
            description=self.options.get("description"),
            timestamp=self.timestamp,
        )
        aggregator = NamespaceAggregator()
        for participant in self.participants:
            aggregator.register(participant.namespace)

        producers = [p for p in self.participants if p.participates(Stage.PRODUCE)]
        logger.info("Building %s from %d namespace(s)", self.metadata.id, len(producers))

        tasks = [asyncio.ensure_future(self._contribute(p, aggregator)) for p in producers]
        try:
            await aggregator.drain(builder, self.timeout)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        validate_document("packageinfo", builder.package_info().to_dict())
        buffer = builder.buffer()

        result = BuildResult(filename=self.filename, buffer=buffer)
        if self.options.get("emit_manifest"):
            result.manifest = build_manifest(self.options, self.filename, buffer)
            result.manifest_filename = self.manifest_filename
        return result

    async def write(self, output_dir: Union[str, Path]) -> List[Path]:
        """Build the package and write the .ipk (and manifest) to ``output_dir``.

        Returns:
            Paths of the written files, .ipk first.
        """
        output_dir = Path(output_dir)
        result = await self.build()

        output_dir.mkdir(parents=True, exist_ok=True)
        written = [output_dir / result.filename]
        written[0].write_bytes(result.buffer)

        if result.manifest is not None and result.manifest_filename:
            manifest_path = output_dir / result.manifest_filename
            manifest_path.write_text(render_manifest(result.manifest), encoding="utf-8")
            written.append(manifest_path)

        for path in written:
            logger.info("Wrote %s", path)
        return written
