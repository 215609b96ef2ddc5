"""Tests for publishing builds."""

import logging

import pytest

from build_registry.errors import (
    UnsupportedEnvironment,
    UploadFailure,
    ValidationError,
    VerificationFailure,
)
from build_registry.keys import BuildSpec
from build_registry.models import Build, BuildFile, BuildHead
from build_registry.options import PublishFile

from conftest import make_file

SPEC = BuildSpec(name="app", env="test", version="1.0.0")


def nothing_stored(storage):
    return all(storage.count(model) == 0 for model in (Build, BuildHead, BuildFile))


class TestValidation:
    """Every invalid request fails before any I/O."""

    @pytest.mark.parametrize("missing, message", [
        ("compressed", "compressed content"),
        ("content", "Missing builds content"),
        ("fingerprint", "fingerprint"),
        ("extension", "extension"),
    ])
    def test_missing_file_field(self, registry, storage, cdns, missing, message):
        bad = make_file()
        setattr(bad, missing, None)

        with pytest.raises(ValidationError, match=message):
            registry.publish(SPEC, {"files": [make_file("ok.js", "ok1"), bad]})

        assert nothing_stored(storage)
        assert cdns["test"].objects == {}

    def test_first_missing_field_wins(self, registry):
        bad = PublishFile(filename="x.js")
        with pytest.raises(ValidationError, match="compressed"):
            registry.publish(SPEC, {"files": [bad]})

    @pytest.mark.parametrize("spec, message", [
        (BuildSpec(name="app", env="", version="1.0.0"), "spec.env"),
        (BuildSpec(name="app", env="test", version=None), "version"),
        (BuildSpec(name="", env="test", version="1.0.0"), "name"),
    ])
    def test_missing_spec_field(self, registry, storage, spec, message):
        with pytest.raises(ValidationError, match=message):
            registry.publish(spec, {"files": [make_file()]})
        assert nothing_stored(storage)

    def test_unsupported_env(self, registry, storage):
        with pytest.raises(UnsupportedEnvironment):
            registry.publish(SPEC.with_env("prod"), {"files": [make_file()]})
        assert nothing_stored(storage)

    def test_no_files(self, registry):
        with pytest.raises(ValidationError, match="options.files"):
            registry.publish(SPEC, {"files": []})


class TestPublish:
    """Test upload, verify and commit."""

    def test_stores_build_head_and_files(self, registry, storage, cdns):
        build = registry.publish(SPEC, {"files": [make_file()]})

        assert build.build_id == "app!test!1.0.0!en-US"
        assert build.fingerprints == ["abc123", "abc123.gz"]
        assert build.cdn_url == cdns["test"].base_url()
        assert build.previous_build_id is None
        assert build.artifacts == ["abc123/app.js"]

        assert registry.search(SPEC).build_id == build.build_id
        assert registry.head(SPEC).build_id == build.build_id
        assert storage.count(BuildFile) == 2

        # One atomic batch for all metadata
        assert len(storage.batches) == 1

    def test_uploads_raw_and_compressed(self, registry, cdns):
        registry.publish(SPEC, {"files": [make_file()]})
        objects = cdns["test"].objects
        assert objects["abc123/app.js"] == b"/* app.js abc123 */"
        assert objects["abc123.gz/app.js"] == b"gz:/* app.js abc123 */"

    def test_build_returns_file_content(self, registry):
        registry.publish(SPEC, {"files": [make_file()]})

        file = registry.build("abc123", False)
        assert file.source == b"/* app.js abc123 */"
        assert file.url == "https://cdn-test.example.com/wrhs/abc123/app.js"
        assert registry.build("abc123", True).source == b"gz:/* app.js abc123 */"
        assert registry.build("unknown", False) is None

    def test_does_not_store_content_in_build(self, registry):
        build = registry.publish(SPEC, {"files": [make_file()]})
        assert "source" not in build.to_row()

    def test_previous_build_id_links_history(self, registry):
        first = registry.publish(SPEC, {"files": [make_file()]})
        second = registry.publish(SPEC.with_version("2.0.0"), {"files": [make_file("app.js", "def456")]})

        assert second.previous_build_id == first.build_id
        assert registry.head(SPEC).version == "2.0.0"

    def test_republish_of_head_does_not_link_to_itself(self, registry):
        registry.publish(SPEC, {"files": [make_file()]})
        second = registry.publish(SPEC.with_version("2.0.0"), {"files": [make_file("app.js", "def456")]})
        again = registry.publish(SPEC.with_version("2.0.0"), {"files": [make_file("app.js", "def456")]})

        assert again.previous_build_id == second.previous_build_id

    def test_locales_have_separate_history(self, registry):
        registry.publish(SPEC, {"files": [make_file()]})
        other = registry.publish(SPEC.with_locale("de-DE").with_version("2.0.0"), {"files": [make_file("app.js", "d1")]})
        assert other.previous_build_id is None

    def test_no_head_when_not_promoted(self, registry, storage):
        registry.publish(SPEC, {"files": [make_file()], "promote": False})

        assert registry.search(SPEC) is not None
        assert registry.head(SPEC) is None
        assert storage.count(BuildHead) == 0

    def test_sourcemap_uploaded_and_referenced(self, registry, cdns):
        files = [
            make_file("email.js", "e1"),
            PublishFile(filename="email.js.map", extension=".map", fingerprint="m1",
                        content=b"{map}", compressed=b"gz"),
        ]
        build = registry.publish(SPEC, {"files": files})

        assert cdns["test"].objects["e1/email.js.map"] == b"{map}"
        assert build.fingerprints == ["e1", "e1.gz"]
        assert registry.build("e1").sourcemap == "e1/email.js.map"

    def test_reads_content_from_paths(self, registry, tmp_path):
        raw = tmp_path / "app.js"
        gz = tmp_path / "app.js.gz"
        raw.write_bytes(b"from disk")
        gz.write_bytes(b"gz from disk")

        registry.publish(SPEC, {"files": [PublishFile(
            filename="app.js", extension=".js", fingerprint="p1", content=str(raw), compressed=gz,
        )]})
        assert registry.build("p1").source == b"from disk"

    def test_recommended_from_build_config(self, registry):
        files = [make_file("email.js", "e1"), make_file("email.css", "c1")]
        build = registry.publish(SPEC, {"files": files, "config": {"files": {"test": ["email.js"]}}})

        assert build.recommended == ["e1/email.js"]
        assert build.artifacts == ["e1/email.js"]

    def test_logs_each_file(self, registry, caplog):
        with caplog.at_level(logging.INFO, logger="build_registry.publish"):
            registry.publish(SPEC, {"files": [make_file()]})
        assert any("fingerprint: abc123" in record.getMessage() for record in caplog.records)


class TestFailures:
    """Upload and verification failures commit nothing."""

    def test_upload_failure(self, registry, storage, cdns):
        cdns["test"].fail_uploads.add("abc123.gz/app.js")

        with pytest.raises(UploadFailure):
            registry.publish(SPEC, {"files": [make_file()]})
        assert nothing_stored(storage)

    def test_verification_failure(self, registry, storage, cdns):
        cdns["test"].missing.add("abc123/app.js")

        with pytest.raises(VerificationFailure, match="statusCode 404"):
            registry.publish(SPEC, {"files": [make_file()]})

        assert nothing_stored(storage)
        # Orphaned objects stay in the content store
        assert "abc123/app.js" in cdns["test"].objects

    def test_every_url_is_checked(self, registry, cdns):
        registry.publish(SPEC, {"files": [make_file(), make_file("b.js", "b1")]})
        assert sorted(cdns["test"].probed) == sorted([
            "https://cdn-test.example.com/wrhs/abc123/app.js",
            "https://cdn-test.example.com/wrhs/abc123.gz/app.js",
            "https://cdn-test.example.com/wrhs/b1/b.js",
            "https://cdn-test.example.com/wrhs/b1.gz/b.js",
        ])

    def test_missing_content_path(self, registry, storage, tmp_path):
        file = PublishFile(filename="a.js", extension=".js", fingerprint="x",
                           content=str(tmp_path / "nope.js"), compressed=b"gz")
        with pytest.raises(UploadFailure):
            registry.publish(SPEC, {"files": [file]})
        assert nothing_stored(storage)
