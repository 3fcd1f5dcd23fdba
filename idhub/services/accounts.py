"""
Account directory: create, authenticate, look up, update, and list accounts.

Only this module and :mod:`.credentials` ever see the ``credential``
column. Everything returned from here is an :class:`.domain.Account`.
"""

import json
import logging
import math
from typing import Any, Dict, List, Mapping, Optional

from . import credentials
from .datastore import Datastore, Transaction, models
from .. import domain
from ..domain import Account, AccountPage, AccountStatus, Pagination, \
    Provider
from ..exceptions import AuthenticationError, ConflictError, \
    IntegrityConflict, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = frozenset({'email', 'provider', 'attributes', 'status'})
"""Fields that :meth:`AccountStore.update` will write."""

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20
INVALID_CREDENTIALS = 'Invalid credentials'

_SELECT = ', '.join(models.COLUMNS)


def _attributes(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, (str, bytes)):
        value = json.loads(value)
    return dict(value)


def account_from_row(row: Mapping[str, Any]) -> Account:
    """Build an :class:`.Account` from a datastore row."""
    return Account(
        id=row['id'],
        email=row['email'],
        provider=row['provider'],
        attributes=_attributes(row['attributes']),
        created_at=row['created_at'],
        updated_at=row['updated_at'],
        status=row['status']
    )


def _escape_like(value: str) -> str:
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


class AccountStore(object):
    """
    Persists accounts in the ``accounts`` table.

    Parameters
    ----------
    datastore : :class:`.Datastore`

    """

    def __init__(self, datastore: Datastore) -> None:
        self.datastore = datastore

    def ensure_schema(self) -> bool:
        """
        Create the accounts table, its indexes and update trigger if missing.

        Returns
        -------
        bool
            ``True`` if the schema was created.

        """
        if self.datastore.table_exists(models.TABLE):
            return False
        self.datastore.create_tables(models.Base.metadata)
        for statement in models.TRIGGER_DDL.get(self.datastore.dialect, []):
            self.datastore.migrate(statement)
        logger.info('Created table %s', models.TABLE)
        return True

    def create(self, email: Optional[str], password: Optional[str] = None,
               provider: int = Provider.LOCAL,
               attributes: Optional[Dict[str, Any]] = None,
               status: int = AccountStatus.ACTIVE) -> Account:
        """
        Create a new account.

        Accounts from a third-party provider (``provider > 0``) that come
        without a password get a random one, so the credential column is
        always a real hash.

        Raises
        ------
        :class:`ValidationError`
            If ``email`` is missing, or a local account has no password.
        :class:`ConflictError`
            If an account with ``email`` already exists.

        """
        if not email:
            raise ValidationError('Email is required')
        if not password:
            if provider > Provider.LOCAL:
                password = credentials.random_password()
            else:
                raise ValidationError('Password is required')

        with self.datastore.transaction() as tx:
            if tx.find_one(models.TABLE, {'email': email}, columns=['id']):
                raise ConflictError('Email is already registered')
            try:
                row = tx.insert(models.TABLE, {
                    'email': email,
                    'credential': credentials.hash_password(password).hash,
                    'provider': provider,
                    'attributes': json.dumps(attributes or {}),
                    'status': status
                })
            except IntegrityConflict as e:
                raise ConflictError('Email is already registered') from e
        logger.info('Created account %s (%s)', row['id'],
                    domain.provider_name(provider))
        return account_from_row(row)

    def authenticate(self, email: Optional[str],
                     password: Optional[str]) -> Account:
        """
        Check an e-mail address and password.

        Unknown addresses, deleted accounts, and wrong passwords all raise
        the same :class:`AuthenticationError`.
        """
        if not email or not password:
            raise ValidationError('Email and password are required')
        row = self.datastore.find_one(models.TABLE, {
            'email': email, 'status': AccountStatus.ACTIVE
        })
        if row is None or \
                not credentials.check_password(password, row['credential']):
            logger.debug('Authentication failed')
            raise AuthenticationError(INVALID_CREDENTIALS)
        return account_from_row(row)

    def get_by_id(self, account_id: int) -> Optional[Account]:
        """Get an account (whatever its status) by id."""
        row = self.datastore.find_one(models.TABLE, {'id': account_id},
                                      columns=list(models.COLUMNS))
        return account_from_row(row) if row else None

    def get_by_email(self, email: str) -> Optional[Account]:
        """Get an account (whatever its status) by e-mail address."""
        row = self.datastore.find_one(models.TABLE, {'email': email},
                                      columns=list(models.COLUMNS))
        return account_from_row(row) if row else None

    def update(self, account_id: int, fields: Mapping[str, Any]) -> Account:
        """
        Update the mutable fields of an account.

        Keys outside :data:`MUTABLE_FIELDS` are ignored.

        Raises
        ------
        :class:`ValidationError`
            If no mutable field is given.
        :class:`ConflictError`
            If the new e-mail address belongs to another account.
        :class:`NotFoundError`
            If there is no such account.

        """
        changes = {k: v for k, v in fields.items() if k in MUTABLE_FIELDS}
        if not changes:
            raise ValidationError('No valid fields to update')
        if 'email' in changes and not changes['email']:
            raise ValidationError('Email is required')
        if 'attributes' in changes:
            changes['attributes'] = json.dumps(changes['attributes'] or {})

        with self.datastore.transaction() as tx:
            if 'email' in changes:
                self._check_email_free(tx, changes['email'], account_id)
            try:
                row = self._write(tx, account_id, changes)
            except IntegrityConflict as e:
                raise ConflictError('Email is used by another account') from e
        if row is None:
            raise NotFoundError('No such account')
        logger.info('Updated account %s: %s', account_id,
                    ', '.join(sorted(changes)))
        return account_from_row(row)

    def _write(self, tx: Transaction, account_id: int,
               changes: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Apply ``changes`` and get the row as the trigger left it.

        ``RETURNING`` on SQLite reports the row before an ``AFTER UPDATE``
        trigger runs, so the row is read back in the same transaction.
        """
        if tx.update(models.TABLE, changes, {'id': account_id}) is None:
            return None
        return tx.find_one(models.TABLE, {'id': account_id},
                           columns=list(models.COLUMNS))

    def _check_email_free(self, tx: Transaction, email: str,
                          account_id: int) -> None:
        holder = tx.find_one(models.TABLE, {'email': email}, columns=['id'])
        if holder is not None and holder['id'] != account_id:
            raise ConflictError('Email is used by another account')

    def change_password(self, account_id: int, old_password: Optional[str],
                        new_password: Optional[str]) -> Account:
        """Replace an account's password, given the current one."""
        if not old_password or not new_password:
            raise ValidationError('Old and new passwords are required')
        with self.datastore.transaction() as tx:
            row = tx.find_one(models.TABLE, {'id': account_id})
            if row is None:
                raise NotFoundError('No such account')
            if not credentials.check_password(old_password,
                                              row['credential']):
                raise AuthenticationError('Old password is incorrect')
            row = self._write(tx, account_id, {
                'credential': credentials.hash_password(new_password).hash
            })
        logger.info('Changed password for account %s', account_id)
        return account_from_row(row)

    def delete(self, account_id: int) -> Account:
        """Mark an account as deleted. The row is kept."""
        with self.datastore.transaction() as tx:
            row = self._write(tx, account_id,
                              {'status': AccountStatus.DELETED})
        if row is None:
            raise NotFoundError('No such account')
        logger.info('Deleted account %s', account_id)
        return account_from_row(row)

    def list(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE,
             status: Optional[int] = None, provider: Optional[int] = None,
             search: Optional[str] = None) -> AccountPage:
        """
        Get one page of accounts, newest first.

        Parameters
        ----------
        page : int
            1-based page number.
        limit : int
            Page size, at most :data:`MAX_PAGE_SIZE`.
        status : int
            Only accounts with this status.
        provider : int
            Only accounts from this provider.
        search : str
            Case-insensitive substring of the e-mail address.

        Returns
        -------
        :class:`.AccountPage`

        """
        if page < 1:
            raise ValidationError('Page must be at least 1')
        if limit < 1:
            raise ValidationError('Limit must be at least 1')
        limit = min(limit, MAX_PAGE_SIZE)

        clauses: List[str] = []
        params: Dict[str, Any] = {}
        if status is not None:
            clauses.append('status = :status')
            params['status'] = status
        if provider is not None:
            clauses.append('provider = :provider')
            params['provider'] = provider
        if search:
            clauses.append("lower(email) LIKE lower(:search) ESCAPE '\\'")
            params['search'] = f'%{_escape_like(search)}%'
        where = f' WHERE {" AND ".join(clauses)}' if clauses else ''

        with self.datastore.transaction() as tx:
            total = tx.query(
                f'SELECT COUNT(*) AS total FROM {models.TABLE}{where}', params
            )[0]['total']
            rows = tx.query(
                f'SELECT {_SELECT} FROM {models.TABLE}{where}'
                ' ORDER BY created_at DESC, id DESC'
                ' LIMIT :limit OFFSET :offset',
                dict(params, limit=limit, offset=(page - 1) * limit)
            )
        return AccountPage(
            accounts=[account_from_row(row) for row in rows],
            pagination=Pagination(page=page, limit=limit, total=total,
                                  total_pages=math.ceil(total / limit))
        )
