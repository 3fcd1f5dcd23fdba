"""
Identity reconciliation: find the account for an identity, or create it.

Concurrent callers may try to create the same e-mail address at once.
No lock guards this; the unique constraint on ``email`` lets exactly one
insert win, and every loser re-reads the winner's row.
"""

import logging
from typing import Any, Dict, Optional

from .accounts import AccountStore
from ..domain import Account, Provider
from ..exceptions import ConflictError, ValidationError

logger = logging.getLogger(__name__)

CREATE_ATTEMPTS = 3


def resolve(store: AccountStore, account_id: Optional[int] = None,
            email: Optional[str] = None) -> Optional[Account]:
    """Look up by ``account_id`` when given, otherwise by ``email``."""
    if account_id is not None:
        return store.get_by_id(account_id)
    if email:
        return store.get_by_email(email)
    return None


def ensure_user(store: AccountStore, account_id: Optional[int] = None,
                email: Optional[str] = None,
                provider: int = Provider.LOCAL,
                attributes: Optional[Dict[str, Any]] = None,
                password: Optional[str] = None) -> Account:
    """
    Get the account for an identity, creating it if it does not exist.

    Calling this any number of times, concurrently or not, with the same
    ``email`` yields the same account. An existing account is returned
    unchanged; ``provider``, ``attributes`` and ``password`` only apply
    when creating.

    Parameters
    ----------
    store : :class:`.AccountStore`
    account_id : int
        Takes precedence over ``email`` for lookup.
    email : str
        Required to create an account.
    provider : int
        Provider accounts without a ``password`` get a random one.
    attributes : dict
    password : str

    Returns
    -------
    :class:`.Account`

    Raises
    ------
    :class:`ValidationError`
        If neither identifier is given, or creation needs an ``email``.
    :class:`ConflictError`
        If creation keeps losing to a conflicting account that then
        cannot be found.

    """
    if account_id is None and not email:
        raise ValidationError('An email or account id is required')

    account = resolve(store, account_id, email)
    if account is not None:
        return account
    if not email:
        raise ValidationError('Email is required to create an account')

    for attempt in range(1, CREATE_ATTEMPTS + 1):
        try:
            return store.create(email, password=password, provider=provider,
                                attributes=attributes)
        except ConflictError:
            logger.info('Lost account creation race (attempt %i of %i)',
                        attempt, CREATE_ATTEMPTS)
        account = store.get_by_email(email)
        if account is not None:
            return account
    raise ConflictError('Could not create or find the account')
