"""Error taxonomy for the locale storage engine."""


class LocaleStorageError(Exception):
    """Base class for expected storage failures."""


class ValidationError(LocaleStorageError):
    """Malformed preference, history record or export package."""


class StorageUnavailableError(LocaleStorageError):
    """A backend is disabled or refused the operation."""


class QuotaExceededError(StorageUnavailableError):
    """A backend has no room left for the value."""


class ConsistencyError(LocaleStorageError):
    """The two backends disagree."""


class VersionMismatchError(LocaleStorageError):
    """An export package was produced by an unsupported schema version."""


class NotFoundError(LocaleStorageError):
    """A requested record or backup does not exist."""
