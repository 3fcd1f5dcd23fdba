"""Defines account and session concepts for idhub services."""

from typing import Any, Dict, List, NamedTuple, Optional, Union
from datetime import datetime

from . import util


class Provider:
    """Tags identifying how an account's identity was established."""

    LOCAL = 0
    MAGIC_LINK = 1
    GOOGLE = 2
    MAXTHON = 3

    NAMES = {
        LOCAL: 'Local',
        MAGIC_LINK: 'Magic Link',
        GOOGLE: 'Google',
        MAXTHON: 'Maxthon',
    }


def provider_name(provider: int) -> str:
    """Display name for a provider tag; unknown tags are still valid."""
    return Provider.NAMES.get(provider, f'Unknown({provider})')


class AccountStatus:
    """Account lifecycle states. Deletion is logical only."""

    DELETED = 0
    ACTIVE = 1


class Account(NamedTuple):
    """An account, as seen outside of the datastore (no credential)."""

    id: int
    """Surrogate key assigned by the datastore."""

    email: str
    """Unique, case-sensitive as stored."""

    provider: int = Provider.LOCAL
    """See :class:`Provider`."""

    attributes: Optional[Dict[str, Any]] = None
    """Open document of provider-specific or profile data. Loaded accounts
    always carry a dict."""

    created_at: Optional[Union[datetime, str]] = None
    updated_at: Optional[Union[datetime, str]] = None

    status: int = AccountStatus.ACTIVE
    """See :class:`AccountStatus`."""

    @property
    def is_active(self) -> bool:
        """Whether the account may authenticate."""
        return self.status == AccountStatus.ACTIVE

    @property
    def provider_name(self) -> str:
        """The display name of the provider that created the account."""
        return provider_name(self.provider)


class Pagination(NamedTuple):
    """Position of a page within a filtered account listing."""

    page: int
    limit: int
    total: int
    total_pages: int


class AccountPage(NamedTuple):
    """One page of accounts plus pagination details."""

    accounts: List[Account]
    pagination: Pagination


class SessionPayload(NamedTuple):
    """
    The contents of a session token.

    ``subject`` is an account id for session tokens, and an e-mail address
    for one-time magic-link tokens. Times are UNIX epoch seconds.
    """

    subject: Union[int, str]
    issued_at: int
    expires_at: Optional[int] = None
    nonce: Optional[str] = None

    def expired(self, at: Optional[int] = None) -> bool:
        """Whether the payload has passed its expiry, if it has one."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (util.now() if at is None else at)


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, tuple) and hasattr(value, '_asdict'):
        return to_dict(value)
    if isinstance(value, list):
        return [_serialize(item) for item in value]
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    return value


def to_dict(obj: Any) -> Dict[str, Any]:
    """Generate a JSON-friendly dict from a domain object."""
    return {key: _serialize(value) for key, value in obj._asdict().items()}
