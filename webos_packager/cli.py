"""Command-line interface for the webOS packager.

WHY: Most builds just need "take this app directory and these service
directories and give me an .ipk". The CLI wires directory sources, the
packager options, and output writing behind a single command, and offers
an ``inspect`` command to look inside finished packages.

HOW: argparse with two subcommands. ``build`` turns flags into packager
options and participants (one directory_source per namespace), then runs
Packager.write() via asyncio.run(). ``inspect`` decodes the ar container
and lists the entries of each tarball member.

RULES:
- build: --id, --version, --app are required; --service ID=DIR repeatable
- --timeout must be a positive number of seconds, like WEBOS_PACKAGER_TIMEOUT
- The app namespace id defaults to the package id (--app-id overrides)
- --emit-manifest requires --title, --icon-url, and --source-url
- Status output goes to stderr; inspect output goes to stdout
- Errors print "Error: ..." to stderr and exit with code 1
"""

from __future__ import annotations

import argparse
import asyncio
import io
import logging
import sys
import tarfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jsonschema

from webos_packager.core.aggregator import AggregationTimeoutError, AggregatorError
from webos_packager.core.ar import ArError, read_ar
from webos_packager.core.ipk import IPKBuilderError
from webos_packager.packager import Packager, PackagerError, Participant
from webos_packager.sources import directory_source


def _status(msg: str) -> None:
    """Print a status message to stderr."""
    print(msg, file=sys.stderr, flush=True)


def _parse_service(value: str) -> Tuple[str, str]:
    service_id, sep, directory = value.partition("=")
    if not sep or not service_id or not directory:
        raise argparse.ArgumentTypeError(
            "expected ID=DIR, got {!r}".format(value)
        )
    return service_id, directory


def _positive_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError("expected a number of seconds, got {!r}".format(value)) from None
    if seconds <= 0:
        raise argparse.ArgumentTypeError("timeout must be positive, got {!r}".format(value))
    return seconds


def _build_options(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate parsed flags into packager options.

    RULES:
    - Only flags that were given end up in the dict
    - Homebrew metadata is included only with --emit-manifest
    """
    options: Dict[str, Any] = {"id": args.id, "version": args.version}
    if args.filename:
        options["filename"] = args.filename
    if args.description is not None:
        options["description"] = args.description
    if args.emit_manifest:
        options["emit_manifest"] = True
        metadata: Dict[str, Any] = {}
        for key, value in (
            ("title", args.title),
            ("iconUrl", args.icon_url),
            ("sourceUrl", args.source_url),
            ("type", args.type),
        ):
            if value is not None:
                metadata[key] = value
        if args.root_required:
            metadata["rootRequired"] = True
        options["metadata"] = metadata
    return options


def _build_participants(args: argparse.Namespace) -> List[Participant]:
    participants = [Participant.packager(args.app_id or args.id, directory_source(args.app))]
    for service_id, directory in args.service or []:
        participants.append(Participant.hook(service_id, directory_source(directory)))
    return participants


def run_build(args: argparse.Namespace) -> int:
    output_dir = Path(args.output_dir).resolve()

    try:
        packager = Packager(
            _build_options(args),
            _build_participants(args),
            timeout=args.timeout,
        )
    except jsonschema.ValidationError as e:
        print("Error: Invalid options: {}".format(e.message), file=sys.stderr)
        return 1
    except (PackagerError, ValueError) as e:
        print("Error: {}".format(e), file=sys.stderr)
        return 1

    _status("Packaging {} {}...".format(args.id, args.version))
    for participant in packager.participants:
        _status("  {} {}".format(participant.namespace.kind.value, participant.namespace.id))

    try:
        written = asyncio.run(packager.write(output_dir))
    except jsonschema.ValidationError as e:
        print("Error: Generated document is invalid: {}".format(e.message), file=sys.stderr)
        return 1
    except (
        AggregationTimeoutError,
        AggregatorError,
        IPKBuilderError,
        ArError,
        OSError,
        ValueError,
    ) as e:
        print("Error: {}".format(e), file=sys.stderr)
        return 1

    _status("")
    _status("Done! Saved {} file(s) to {}".format(len(written), output_dir))
    for path in written:
        _status("  {}".format(path.name))
    return 0


def _describe_tarball(content: bytes) -> List[str]:
    lines = []
    with tarfile.open(fileobj=io.BytesIO(content), mode="r:gz") as tar:
        for member in tar.getmembers():
            kind = "d" if member.isdir() else "-"
            lines.append("    {}{:04o} {:>8} {}".format(kind, member.mode, member.size, member.name))
    return lines


def run_inspect(args: argparse.Namespace) -> int:
    path = Path(args.package)
    try:
        members = read_ar(path.read_bytes())
    except (ArError, OSError) as e:
        print("Error: {}".format(e), file=sys.stderr)
        return 1

    for identifier, content in members:
        print("{} ({} bytes)".format(identifier, len(content)))
        if identifier.endswith(".tar.gz"):
            try:
                print("\n".join(_describe_tarball(content)))
            except (tarfile.TarError, OSError) as e:
                print("Error: {} is not a valid tarball: {}".format(identifier, e), file=sys.stderr)
                return 1
        elif args.verbose:
            print("    {!r}".format(content))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    WHY: Separating parser construction from main() makes the CLI
    testable: tests can inspect the parser without running a build.
    """
    parser = argparse.ArgumentParser(
        prog="webos-packager",
        description="Build webOS .ipk packages from application and service directories.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    build = commands.add_parser("build", help="Build an .ipk package.")
    build.add_argument("--id", required=True, help="Package id, e.g. com.example.app.")
    build.add_argument("--version", required=True, help="Package version, e.g. 1.0.0.")
    build.add_argument("--app", required=True, help="Directory with the application's files.")
    build.add_argument(
        "--app-id",
        default=None,
        help="Application namespace id (default: the package id).",
    )
    build.add_argument(
        "--service",
        action="append",
        type=_parse_service,
        default=None,
        metavar="ID=DIR",
        help="Service id and directory. Can be specified multiple times.",
    )
    build.add_argument(
        "--output-dir",
        default=".",
        help="Directory to write the package to (default: current directory).",
    )
    build.add_argument(
        "--filename",
        default=None,
        help="Output filename (default: {id}_{version}_all.ipk).",
    )
    build.add_argument("--description", default=None, help="Package description.")
    build.add_argument(
        "--timeout",
        type=_positive_seconds,
        default=None,
        help="Seconds to wait for all namespaces (default: WEBOS_PACKAGER_TIMEOUT or no limit).",
    )
    build.add_argument(
        "--emit-manifest",
        action="store_true",
        help="Also write {id}.manifest.json for homebrew channels.",
    )
    build.add_argument("--title", default=None, help="Manifest title.")
    build.add_argument("--icon-url", default=None, help="Manifest icon URL.")
    build.add_argument("--source-url", default=None, help="Manifest source URL.")
    build.add_argument("--type", choices=["web", "native"], default=None, help="Application type.")
    build.add_argument(
        "--root-required",
        action="store_true",
        help="Mark the application as requiring root.",
    )
    build.set_defaults(handler=run_build)

    inspect = commands.add_parser("inspect", help="List the contents of an .ipk package.")
    inspect.add_argument("package", help="Path to the .ipk file.")
    inspect.set_defaults(handler=run_inspect)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    - Exits with the handler's return code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    sys.exit(args.handler(args))


if __name__ == "__main__":
    main()
