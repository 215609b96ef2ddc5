"""Tests for spec key encoding and decoding."""

import pytest

from build_registry.keys import BuildSpec, KeyKind, decode_key, encode_key, file_key, normalize_spec

SPEC = BuildSpec(name="example-module", env="test", version="0.0.1", locale="en-US")


class TestEncode:
    """Test each key layout."""

    def test_default_key(self):
        assert encode_key(SPEC) == "example-module!test!0.0.1!en-US"

    def test_default_key_fills_locale(self):
        spec = BuildSpec(name="example-module", env="test", version="0.0.1")
        assert encode_key(spec) == "example-module!test!0.0.1!en-US"

    def test_active_key_has_no_locale(self):
        assert encode_key(SPEC, KeyKind.ACTIVE) == "~~active!example-module!test!0.0.1"

    def test_partial_key(self):
        assert encode_key(SPEC, KeyKind.PARTIAL) == "~~active!example-module!test!0.0.1!en-US"

    def test_partial_key_fills_locale(self):
        spec = BuildSpec(name="a", env="dev", version="1.0.0")
        assert encode_key(spec, "partial") == "~~active!a!dev!1.0.0!en-US"

    def test_file_key(self):
        assert file_key("a083jada091tr0l0l01zdjD", "example-module.js") == "a083jada091tr0l0l01zdjD/example-module.js"

    def test_file_kind(self):
        key = encode_key(SPEC, KeyKind.FILE, fingerprint="a083jada091tr0l0l01zdjD", filename="example-module.js")
        assert key == "a083jada091tr0l0l01zdjD/example-module.js"

    def test_file_kind_needs_fingerprint_and_filename(self):
        with pytest.raises(ValueError):
            encode_key(SPEC, KeyKind.FILE, filename="example-module.js")


class TestDecode:
    """Test turning keys back into specs."""

    def test_decode_build_id(self):
        assert decode_key("example-module!test!0.0.1!en-US") == SPEC

    def test_decode_lock_key(self):
        assert decode_key("~~active!example-module!test!0.0.1!en-US") == SPEC

    def test_decode_lock_prefix_omits_locale(self):
        spec = decode_key("~~active!example-module!test!0.0.1")
        assert spec.locale is None
        assert spec.version == "0.0.1"

    def test_scoped_package_name(self):
        spec = BuildSpec(name="@ux/uxcore2", env="prod", version="1.0.0", locale="en-GB")
        assert decode_key(encode_key(spec)) == spec

    @pytest.mark.parametrize("locale", [None, "en-US", "de-DE"])
    def test_decode_of_encode_is_normalize(self, locale):
        spec = BuildSpec(name="app", env="test", version="2.0.0", locale=locale)
        assert decode_key(encode_key(spec)) == normalize_spec(spec)

    def test_malformed_key(self):
        with pytest.raises(ValueError):
            decode_key("just-a-name")


class TestNormalize:
    """Test default locale handling."""

    def test_fills_default(self):
        assert normalize_spec(BuildSpec("a", "dev", "1")).locale == "en-US"

    def test_keeps_locale(self):
        assert normalize_spec(BuildSpec("a", "dev", "1", "fr-FR")).locale == "fr-FR"

    def test_idempotent(self):
        once = normalize_spec(BuildSpec("a", "dev", "1"))
        assert normalize_spec(once) == once

    def test_custom_default(self):
        assert normalize_spec(BuildSpec("a", "dev", "1"), "nl-NL").locale == "nl-NL"
