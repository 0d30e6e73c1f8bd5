"""Core archive encoding and namespace aggregation.

WHY: The core package is the stable heart of the packager: the byte
formats and the join that feeds them. It is consumed by the packager,
the CLI, and tests, and has no file-system side effects.

HOW: ar.py writes/reads the outer container, tarball.py encodes the
control and data members, ipk.py lays out the package tree, and
aggregator.py waits for every namespace before the tree is finalized.

RULES:
- No module here opens files or reads the environment beyond config.py
- models.py dataclasses are the contract between layers
"""

from webos_packager.core.aggregator import (
    AggregationTimeoutError,
    AggregatorError,
    Deferred,
    NamespaceAggregator,
)
from webos_packager.core.ar import ArError, ArWriter, read_ar
from webos_packager.core.ipk import IPKBuilder, IPKBuilderError, MetadataNotSetError, is_executable
from webos_packager.core.models import Namespace, NamespaceKind, PackageInfo, PackageMetadata
from webos_packager.core.tarball import DirectoryEntry, FileEntry, TarballError, build_tarball

__all__ = [
    "AggregationTimeoutError",
    "AggregatorError",
    "ArError",
    "ArWriter",
    "Deferred",
    "DirectoryEntry",
    "FileEntry",
    "IPKBuilder",
    "IPKBuilderError",
    "MetadataNotSetError",
    "Namespace",
    "NamespaceAggregator",
    "NamespaceKind",
    "PackageInfo",
    "PackageMetadata",
    "TarballError",
    "build_tarball",
    "is_executable",
    "read_ar",
]
