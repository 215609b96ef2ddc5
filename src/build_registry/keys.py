"""Key encoding for build specs.

Builds are addressed by composite keys so that a `build_id` can be parsed
back into the spec it was created from:

    default   name!env!version!locale
    active    ~~active!name!env!version          (lock prefix, no locale)
    partial   ~~active!name!env!version!locale   (exact lock key)
    file      fingerprint/filename
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from build_registry.constants import ACTIVE_SENTINEL, DEFAULT_LOCALE, KEY_DELIMITER


class KeyKind(str, Enum):
    """Kinds of key the codec produces."""
    DEFAULT = "default"
    FILE = "file"
    ACTIVE = "active"
    PARTIAL = "partial"


@dataclass(frozen=True)
class BuildSpec:
    """Identifying tuple of a build."""
    name: str
    env: str
    version: Optional[str] = None
    locale: Optional[str] = None

    def with_locale(self, locale: str) -> "BuildSpec":
        return replace(self, locale=locale)

    def with_version(self, version: str) -> "BuildSpec":
        return replace(self, version=version)

    def with_env(self, env: str) -> "BuildSpec":
        return replace(self, env=env)


def normalize_spec(spec: BuildSpec, default_locale: str = DEFAULT_LOCALE) -> BuildSpec:
    """Fill in the default locale when the spec has none. Idempotent."""
    if spec.locale:
        return spec
    return spec.with_locale(default_locale)


def file_key(fingerprint: str, filename: str) -> str:
    """Content store key for a single file."""
    return f"{fingerprint}/{filename}"


def encode_key(
    spec: Optional[BuildSpec],
    kind: KeyKind = KeyKind.DEFAULT,
    default_locale: str = DEFAULT_LOCALE,
    fingerprint: Optional[str] = None,
    filename: Optional[str] = None,
) -> str:
    """
    Generate the key used to store a build, one of its files, or its lock.

    Args:
        spec: Build specification (unused for file keys)
        kind: Which key layout to produce
        default_locale: Locale used when the spec has none
        fingerprint: File fingerprint, required for file keys
        filename: File name, required for file keys

    Returns:
        The encoded key
    """
    kind = KeyKind(kind)

    if kind is KeyKind.FILE:
        if not fingerprint or not filename:
            raise ValueError("File keys need a fingerprint and a filename")
        return file_key(fingerprint, filename)

    if kind is KeyKind.ACTIVE:
        return KEY_DELIMITER.join([ACTIVE_SENTINEL, spec.name, spec.env, spec.version or ""])

    spec = normalize_spec(spec, default_locale)

    if kind is KeyKind.PARTIAL:
        return KEY_DELIMITER.join(
            [ACTIVE_SENTINEL, spec.name, spec.env, spec.version or "", spec.locale]
        )

    return KEY_DELIMITER.join([spec.name, spec.env, spec.version or "", spec.locale])


def decode_key(key: str) -> BuildSpec:
    """Turn a default or lock key back into a spec."""
    parts = key.split(KEY_DELIMITER)

    if parts[0] == ACTIVE_SENTINEL:
        parts = parts[1:]

    if len(parts) < 3:
        raise ValueError(f"Malformed build key: {key!r}")

    locale = parts[3] if len(parts) > 3 and parts[3] else None
    return BuildSpec(name=parts[0], env=parts[1], version=parts[2] or None, locale=locale)
