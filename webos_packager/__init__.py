"""webOS Packager: deterministic .ipk archive builder.

WHY: webOS installs applications from ``.ipk`` files: Debian ``ar``
containers holding a version stamp, a control tarball, and a data
tarball. Build pipelines produce the application and its services as
separate file trees, often finishing at different times. This package
joins those trees and encodes them into a byte-exact ``.ipk``.

HOW: Three-stage pipeline: produce (asset sources per namespace),
aggregate (async barrier join), encode (IPK builder → tar+gzip → ar).
Each stage is independently testable.

RULES:
- The core (``webos_packager.core``) never touches the file system
- Every namespace contributes exactly one asset mapping per build
- The archive member order is fixed: debian-binary, control.tar.gz, data.tar.gz
"""

__version__ = "0.1.0"
