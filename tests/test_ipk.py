"""Unit tests for the IPK builder.

WHY: The builder decides where every file lands, which directories exist,
which files are executable, and what the package manager reads from the
control file and packageinfo.json. Mistakes here produce packages that
install but do not run.

HOW: Tests are organized by concern:
  - TestExecutableSniff: ELF / shebang detection
  - TestDirectoryTree: ancestor synthesis, de-duplication, path checks
  - TestPathClashes: file/file and file/directory collisions
  - TestNamespaces: app/service registration and packageinfo.json
  - TestControlSection: control file text
  - TestBuffer: preconditions, member order, determinism, sealing
  - TestEndToEnd: the single-app reference scenario

RULES:
- Every builder uses FIXED_TIMESTAMP
- Archives are inspected through the unpack_ipk fixture
"""

import json

import pytest

from webos_packager.core.ipk import (
    IPKBuilder,
    IPKBuilderError,
    MetadataNotSetError,
    directory_parents,
    is_executable,
    serialize_control,
)
from webos_packager.core.models import Namespace, PackageMetadata

FIXED_TIMESTAMP = 1700000000
APP_ROOT = "usr/palm/applications/com.example.app"
ELF_BYTES = b"\x7fELF\x02\x01\x01\x00" + b"\x00" * 8
SHEBANG_BYTES = b"#!/bin/sh\necho hello\n"
MAIN_JS = b"alert('hi');"


def _builder(metadata=None, **kwargs) -> IPKBuilder:
    return IPKBuilder(metadata, timestamp=FIXED_TIMESTAMP, **kwargs)


# ---------------------------------------------------------------------------
# TestExecutableSniff
# ---------------------------------------------------------------------------


class TestExecutableSniff:
    """is_executable() inspects only the first four bytes."""

    @pytest.mark.parametrize("content", [
        b"\x7fELF",
        ELF_BYTES,
        b"#!/usr/bin/env node\n",
        b"#!xx",
    ])
    def test_executable(self, content):
        assert is_executable(content) is True

    @pytest.mark.parametrize("content", [
        b"",
        b"#!",
        b"#!x",
        b"\x7fEL",
        b"\x7fELG",
        b"console.log(1)",
        b" #!/bin/sh",
        b"ELF\x7f",
    ])
    def test_not_executable(self, content):
        assert is_executable(content) is False

    def test_modes_in_data_tarball(self, metadata, app_namespace, unpack_ipk):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {
            "bin/tool": ELF_BYTES,
            "bin/run.sh": SHEBANG_BYTES,
            "index.html": b"<html></html>",
            "tiny": b"#!",
        })
        entries = unpack_ipk(builder.buffer()).entries
        assert entries[APP_ROOT + "/bin/tool"].mode == 0o755
        assert entries[APP_ROOT + "/bin/run.sh"].mode == 0o755
        assert entries[APP_ROOT + "/index.html"].mode == 0o644
        assert entries[APP_ROOT + "/tiny"].mode == 0o644


# ---------------------------------------------------------------------------
# TestDirectoryTree
# ---------------------------------------------------------------------------


class TestDirectoryTree:
    """Every ancestor directory is emitted exactly once."""

    def test_directory_parents(self):
        assert directory_parents("usr/palm/applications") == [
            "usr", "usr/palm", "usr/palm/applications",
        ]

    def test_directory_parents_of_empty_path(self):
        assert directory_parents("") == []
        assert directory_parents(".") == []

    def test_namespace_root_directories(self, metadata, app_namespace, unpack_ipk):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {"main.js": MAIN_JS})
        names = unpack_ipk(builder.buffer()).names
        assert names[:5] == [
            "usr",
            "usr/palm",
            "usr/palm/applications",
            APP_ROOT,
            APP_ROOT + "/main.js",
        ]

    def test_nested_asset_directories(self, metadata, app_namespace, unpack_ipk):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {"assets/img/icon.png": b"png"})
        unpacked = unpack_ipk(builder.buffer())
        assert unpacked.entries[APP_ROOT + "/assets"].isdir()
        assert unpacked.entries[APP_ROOT + "/assets/img"].isdir()
        assert unpacked.names.index(APP_ROOT + "/assets/img") < unpacked.names.index(
            APP_ROOT + "/assets/img/icon.png"
        )

    def test_repeated_add_entries_emits_directory_once(self, metadata, app_namespace, unpack_ipk):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {"lib/a.js": b"a"})
        builder.add_entries(app_namespace, {"lib/b.js": b"b"})
        names = unpack_ipk(builder.buffer()).names
        assert names.count(APP_ROOT + "/lib") == 1
        assert names.count(APP_ROOT) == 1
        assert len(names) == len(set(names))

    def test_shared_ancestors_across_namespaces(
        self, metadata, app_namespace, service_namespaces, unpack_ipk
    ):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {"main.js": MAIN_JS})
        for namespace in service_namespaces:
            builder.add_entries(namespace, {"service.js": b"s"})
        names = unpack_ipk(builder.buffer()).names
        assert names.count("usr") == 1
        assert names.count("usr/palm") == 1
        assert names.count("usr/palm/services") == 1
        assert "usr/palm/packages/com.example.app" in names
        assert len(names) == len(set(names))

    def test_backslash_paths_normalized(self, metadata, app_namespace, unpack_ipk):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {"css\\style.css": b"body{}"})
        assert APP_ROOT + "/css/style.css" in unpack_ipk(builder.buffer()).files

    @pytest.mark.parametrize("path", ["../escape.js", "/etc/passwd", "a/../../b", "."])
    def test_escaping_paths_rejected(self, app_namespace, path):
        builder = _builder()
        with pytest.raises(IPKBuilderError, match="relative"):
            builder.add_entries(app_namespace, {path: b"x"})

    @pytest.mark.parametrize(
        "namespace_id", ["", ".", "..", "../../../etc", "com.example/app", "com.example\\app"]
    )
    def test_invalid_namespace_ids_rejected(self, namespace_id):
        builder = _builder()
        with pytest.raises(IPKBuilderError, match="Invalid service namespace id"):
            builder.add_entries(Namespace.service(namespace_id), {"passwd": b"x"})
        assert builder.entries == []
        assert builder.service_ids == []

    def test_invalid_app_id_rejected(self):
        with pytest.raises(IPKBuilderError, match="Invalid app namespace id"):
            _builder().add_entries(Namespace.app(".."), {"main.js": MAIN_JS})


# ---------------------------------------------------------------------------
# TestPathClashes
# ---------------------------------------------------------------------------


class TestPathClashes:
    """Every installed path is either one file or one directory."""

    def test_same_file_across_calls_rejected(self, app_namespace):
        builder = _builder()
        builder.add_entries(app_namespace, {"main.js": b"a"})
        with pytest.raises(IPKBuilderError, match="Duplicate asset 'main.js' in app com.example.app"):
            builder.add_entries(app_namespace, {"main.js": b"b"})

    def test_same_file_after_normalization_rejected(self, app_namespace):
        builder = _builder()
        with pytest.raises(IPKBuilderError, match="Duplicate asset"):
            builder.add_entries(app_namespace, {"css/a.css": b"a", "css\\a.css": b"b"})

    def test_file_where_directory_is_needed_rejected(self, app_namespace):
        builder = _builder()
        with pytest.raises(IPKBuilderError, match="clashes with a directory"):
            builder.add_entries(app_namespace, {"lib": b"x", "lib/a.js": b"a"})

    def test_file_over_existing_directory_rejected(self, app_namespace):
        builder = _builder()
        builder.add_entries(app_namespace, {"lib/a.js": b"a"})
        with pytest.raises(IPKBuilderError, match="clashes with a directory"):
            builder.add_entries(app_namespace, {"lib": b"x"})

    def test_directory_over_existing_file_rejected(self, app_namespace):
        builder = _builder()
        builder.add_entries(app_namespace, {"lib": b"x"})
        with pytest.raises(IPKBuilderError, match="clashes with a file"):
            builder.add_entries(app_namespace, {"lib/a.js": b"a"})

    def test_rejected_call_records_nothing(self, metadata, app_namespace, unpack_ipk):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {"main.js": MAIN_JS})
        before = builder.entries
        with pytest.raises(IPKBuilderError):
            builder.add_entries(app_namespace, {"extra/new.js": b"n", "main.js": b"again"})
        assert builder.entries == before

        names = unpack_ipk(builder.buffer()).names
        assert APP_ROOT + "/extra" not in names
        assert names.count(APP_ROOT + "/main.js") == 1

    def test_distinct_files_merge(self, metadata, app_namespace, unpack_ipk):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {"a.js": b"a"})
        builder.add_entries(app_namespace, {"b.js": b"b"})
        files = unpack_ipk(builder.buffer()).files
        assert files[APP_ROOT + "/a.js"] == b"a"
        assert files[APP_ROOT + "/b.js"] == b"b"


# ---------------------------------------------------------------------------
# TestNamespaces
# ---------------------------------------------------------------------------


class TestNamespaces:
    """Namespace registration feeds packageinfo.json."""

    def test_app_and_services_in_registration_order(
        self, metadata, app_namespace, service_namespaces, unpack_ipk
    ):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {"main.js": MAIN_JS})
        builder.add_entries(service_namespaces[0], {"a.js": b"a"})
        builder.add_entries(service_namespaces[1], {"b.js": b"b"})

        info = unpack_ipk(builder.buffer()).package_info()
        assert info["app"] == "com.example.app"
        assert info["services"] == ["com.example.app.service", "com.example.app.worker"]

    def test_service_tree_location(self, metadata, service_namespaces, unpack_ipk):
        builder = _builder(metadata)
        builder.add_entries(service_namespaces[0], {"service.js": b"s"})
        files = unpack_ipk(builder.buffer()).files
        assert files["usr/palm/services/com.example.app.service/service.js"] == b"s"

    def test_service_registered_once(self, service_namespaces):
        builder = _builder()
        builder.add_entries(service_namespaces[0], {"a.js": b"a"})
        builder.add_entries(service_namespaces[1], {"b.js": b"b"})
        builder.add_entries(service_namespaces[0], {"c.js": b"c"})
        assert builder.service_ids == ["com.example.app.service", "com.example.app.worker"]

    def test_same_app_twice_allowed(self, app_namespace):
        builder = _builder()
        builder.add_entries(app_namespace, {"a.js": b"a"})
        builder.add_entries(app_namespace, {"b.js": b"b"})
        assert builder.app_id == "com.example.app"

    def test_second_app_rejected(self, app_namespace):
        builder = _builder()
        builder.add_entries(app_namespace, {"a.js": b"a"})
        with pytest.raises(IPKBuilderError, match="second app"):
            builder.add_entries(Namespace.app("com.other.app"), {"b.js": b"b"})

    def test_packageinfo_json_is_tab_indented(self, metadata, app_namespace, unpack_ipk):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {"main.js": MAIN_JS})
        raw = unpack_ipk(builder.buffer()).files[
            "usr/palm/packages/com.example.app/packageinfo.json"
        ]
        assert raw.decode("utf-8") == (
            '{\n\t"id": "com.example.app",\n\t"version": "1.0.0",\n'
            '\t"app": "com.example.app",\n\t"services": []\n}'
        )

    def test_packageinfo_without_app_omits_key(self, metadata, unpack_ipk):
        info = unpack_ipk(_builder(metadata).buffer()).package_info()
        assert info == {"id": "com.example.app", "version": "1.0.0", "services": []}


# ---------------------------------------------------------------------------
# TestControlSection
# ---------------------------------------------------------------------------


class TestControlSection:
    """The control file lists fixed keys in a fixed order."""

    def test_default_control_text(self, metadata, unpack_ipk):
        control = unpack_ipk(_builder(metadata).buffer()).control
        assert control == (
            "Package: com.example.app\n"
            "Version: 1.0.0\n"
            "Section: misc\n"
            "Priority: optional\n"
            "Architecture: all\n"
            "webOS-Package-Format-Version: 2\n"
        )

    def test_description_precedes_format_version(self, metadata):
        builder = _builder(metadata, description="Example application.")
        assert list(builder.control_section())[-2:] == [
            "Description",
            "webOS-Package-Format-Version",
        ]
        assert builder.control_section()["Description"] == "Example application."

    def test_overrides_replace_values(self, metadata):
        builder = _builder(metadata, control_overrides={"Architecture": "arm"})
        assert builder.control_section()["Architecture"] == "arm"
        assert list(builder.control_section())[:2] == ["Package", "Version"]

    def test_unknown_override_rejected(self, metadata):
        with pytest.raises(IPKBuilderError, match="Unknown control keys"):
            _builder(metadata, control_overrides={"Maintainer": "me"})

    def test_serialize_control(self):
        assert serialize_control({"A": "b", "C": 2}) == "A: b\nC: 2\n"


# ---------------------------------------------------------------------------
# TestBuffer
# ---------------------------------------------------------------------------


class TestBuffer:
    """buffer() preconditions, member order, and determinism."""

    def test_missing_metadata(self, app_namespace):
        builder = _builder()
        builder.add_entries(app_namespace, {"main.js": MAIN_JS})
        with pytest.raises(MetadataNotSetError, match="metadata not set"):
            builder.buffer()

    def test_missing_metadata_is_builder_error(self):
        assert issubclass(MetadataNotSetError, IPKBuilderError)

    def test_set_metadata_later(self, app_namespace, metadata, unpack_ipk):
        builder = _builder()
        assert builder.metadata is None
        builder.add_entries(app_namespace, {"main.js": MAIN_JS})
        assert builder.set_metadata(metadata) is builder
        assert builder.metadata == metadata
        assert unpack_ipk(builder.buffer()).package_info()["id"] == "com.example.app"

    def test_member_order(self, metadata, app_namespace, unpack_ipk):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {"main.js": MAIN_JS})
        buffer = builder.buffer()
        assert buffer.startswith(b"!<arch>\n")
        assert unpack_ipk(buffer).identifiers == [
            "debian-binary",
            "control.tar.gz",
            "data.tar.gz",
        ]

    def test_debian_binary_content(self, metadata, unpack_ipk):
        assert unpack_ipk(_builder(metadata).buffer()).members["debian-binary"] == b"2.0\n"

    def test_buffer_twice_identical(self, metadata, app_namespace):
        builder = _builder(metadata)
        builder.add_entries(app_namespace, {"main.js": MAIN_JS})
        assert builder.buffer() == builder.buffer()

    def test_independent_builds_identical(self, metadata, app_namespace):
        def build():
            builder = _builder(metadata)
            builder.add_entries(app_namespace, {"main.js": MAIN_JS, "bin/tool": ELF_BYTES})
            return builder.buffer()

        assert build() == build()

    def test_add_entries_after_buffer_rejected(self, metadata, app_namespace):
        builder = _builder(metadata)
        builder.buffer()
        with pytest.raises(IPKBuilderError, match="already rendered"):
            builder.add_entries(app_namespace, {"late.js": b"late"})

    def test_failed_render_leaves_builder_unchanged(self, app_namespace, metadata):
        builder = _builder()
        builder.add_entries(app_namespace, {"main.js": MAIN_JS})
        before = builder.entries
        with pytest.raises(MetadataNotSetError):
            builder.buffer()
        assert builder.entries == before
        builder.set_metadata(metadata)
        assert builder.buffer()


# ---------------------------------------------------------------------------
# TestEndToEnd
# ---------------------------------------------------------------------------


class TestEndToEnd:
    """com.example.app 1.0.0 with a single 12-byte main.js."""

    def test_reference_package(self, unpack_ipk):
        builder = IPKBuilder(PackageMetadata("com.example.app", "1.0.0"), timestamp=FIXED_TIMESTAMP)
        assert len(MAIN_JS) == 12
        builder.add_entries(Namespace.app("com.example.app"), {"main.js": MAIN_JS})

        unpacked = unpack_ipk(builder.buffer())
        assert len(unpacked.identifiers) == 3

        main = unpacked.entries["usr/palm/applications/com.example.app/main.js"]
        assert main.mode == 0o644
        assert unpacked.files["usr/palm/applications/com.example.app/main.js"] == MAIN_JS

        info = json.loads(unpacked.files["usr/palm/packages/com.example.app/packageinfo.json"])
        assert info["app"] == "com.example.app"
        assert info["services"] == []
