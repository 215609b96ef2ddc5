"""Build files registry: publish, promote and roll back front-end builds."""

from build_registry.errors import (
    AlreadyRunning,
    BuildNotFound,
    RegistryError,
    StorageError,
    UnsupportedEnvironment,
    UploadFailure,
    ValidationError,
    VerificationFailure,
)
from build_registry.keys import BuildSpec, KeyKind, decode_key, encode_key, normalize_spec
from build_registry.registry import BuildRegistry

__all__ = [
    "AlreadyRunning",
    "BuildNotFound",
    "BuildRegistry",
    "BuildSpec",
    "KeyKind",
    "RegistryError",
    "StorageError",
    "UnsupportedEnvironment",
    "UploadFailure",
    "ValidationError",
    "VerificationFailure",
    "decode_key",
    "encode_key",
    "normalize_spec",
]
