"""Error taxonomy for registry operations."""


class RegistryError(Exception):
    """Base error for registry operations."""
    pass


class ValidationError(RegistryError):
    """Raised when a spec or file set is missing required fields.

    Always raised before any I/O happens.
    """
    pass


class UnsupportedEnvironment(ValidationError):
    """Raised when a spec names an environment outside the allow-list."""
    pass


class UploadFailure(RegistryError):
    """Raised when content could not be uploaded to the content store."""
    pass


class VerificationFailure(RegistryError):
    """Raised when uploaded content is not retrievable from the content store."""
    pass


class AlreadyRunning(RegistryError):
    """Raised when a build is already in progress for the exact spec."""
    pass


class StorageError(RegistryError):
    """Raised when the storage engine fails to read or commit entities."""
    pass


class BuildNotFound(RegistryError):
    """Raised when promote or rollback found no locale to act on."""
    pass
