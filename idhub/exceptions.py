"""Exceptions raised by idhub services."""

from typing import Any, Mapping, Optional


class IdhubError(RuntimeError):
    """Base class for errors raised by idhub services."""


class ValidationError(IdhubError):
    """Missing or malformed input."""


class ConflictError(IdhubError):
    """An account with the requested e-mail address already exists."""


class AuthenticationError(IdhubError):
    """Failed to authenticate with the provided credentials."""


class NotFoundError(IdhubError):
    """The requested account does not exist."""


class CryptoError(IdhubError):
    """A token or credential hash could not be processed."""


class ConfigurationError(IdhubError):
    """The service is missing required configuration."""


class StorageError(IdhubError):
    """The datastore failed to complete an operation."""


class Unavailable(StorageError):
    """The datastore is unreachable, or no pooled connection was free."""


class QueryError(StorageError):
    """
    A statement failed at the database driver.

    Parameters
    ----------
    sql : str
        The statement text, with bind placeholders.
    params : dict
        Bind parameters, with credential values redacted.
    cause : Exception
        The driver error.

    """

    def __init__(self, sql: str, params: Optional[Mapping[str, Any]],
                 cause: Exception) -> None:
        super().__init__(f'Query failed: {cause}')
        self.sql = sql
        self.params = dict(params or {})
        self.cause = cause


class IntegrityConflict(QueryError):
    """A statement violated a uniqueness or integrity constraint."""
