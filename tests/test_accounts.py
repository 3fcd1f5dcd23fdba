"""Tests for :mod:`idhub.services.accounts`."""

import logging
import shutil
import tempfile
from unittest import TestCase

from mimesis import Person

from idhub.domain import Account, AccountStatus, Provider
from idhub.exceptions import AuthenticationError, ConflictError, \
    NotFoundError, ValidationError
from idhub.services.accounts import AccountStore, MAX_PAGE_SIZE
from idhub.services.datastore import Datastore


class AccountStoreTestCase(TestCase):
    """Gives each test an empty accounts table in a throwaway SQLite file."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.datastore = Datastore(f'sqlite:///{self.tmpdir}/idhub.db',
                                   pool_size=5, pool_timeout=5)
        self.store = AccountStore(self.datastore)
        self.store.ensure_schema()

    def tearDown(self):
        self.datastore.close()
        shutil.rmtree(self.tmpdir)


class TestRegisterAndLogin(AccountStoreTestCase):
    """Register, conflict on re-register, then log in."""

    def test_register_conflict_login(self):
        account = self.store.create('u@x.io', 'p1')
        self.assertEqual(account.email, 'u@x.io')
        self.assertEqual(account.provider, Provider.LOCAL)
        self.assertEqual(account.attributes, {})
        self.assertTrue(account.is_active)
        self.assertFalse(hasattr(account, 'credential'))

        with self.assertRaises(ConflictError):
            self.store.create('u@x.io', 'p2')

        with self.assertRaisesRegex(AuthenticationError,
                                    'Invalid credentials'):
            self.store.authenticate('u@x.io', 'p2')
        self.assertEqual(self.store.authenticate('u@x.io', 'p1').id,
                         account.id)

    def test_unknown_email_looks_like_wrong_password(self):
        with self.assertRaisesRegex(AuthenticationError,
                                    'Invalid credentials'):
            self.store.authenticate('nobody@x.io', 'p1')

    def test_missing_fields(self):
        with self.assertRaises(ValidationError):
            self.store.create('', 'p1')
        with self.assertRaises(ValidationError):
            self.store.create('u@x.io')
        with self.assertRaises(ValidationError):
            self.store.authenticate('u@x.io', '')

    def test_provider_account_gets_a_random_password(self):
        account = self.store.create('g@x.io', provider=Provider.GOOGLE,
                                    attributes={'external_id': '123'})
        self.assertEqual(account.provider_name, 'Google')
        self.assertEqual(account.attributes, {'external_id': '123'})
        row = self.datastore.find_one('accounts', {'id': account.id})
        self.assertRegex(row['credential'], r'^[0-9a-f]{32}:[0-9a-f]{128}$')

    def test_unknown_provider_tag(self):
        account = self.store.create('q@x.io', provider=9)
        self.assertEqual(account.provider_name, 'Unknown(9)')


class TestLookup(AccountStoreTestCase):

    def test_get(self):
        account = self.store.create('u@x.io', 'p1')
        self.assertEqual(self.store.get_by_id(account.id), account)
        self.assertEqual(self.store.get_by_email('u@x.io'), account)
        self.assertIsNone(self.store.get_by_id(account.id + 1))
        self.assertIsNone(self.store.get_by_email('U@x.io'))


class TestUpdate(AccountStoreTestCase):
    """Only email, provider, attributes, and status may change."""

    def setUp(self):
        super().setUp()
        self.account = self.store.create('u@x.io', 'p1')

    def test_allowed_fields(self):
        updated = self.store.update(self.account.id, {
            'email': 'v@x.io',
            'provider': Provider.MAXTHON,
            'attributes': {'nick': 'v'},
        })
        self.assertEqual(updated.email, 'v@x.io')
        self.assertEqual(updated.provider, Provider.MAXTHON)
        self.assertEqual(updated.attributes, {'nick': 'v'})

    def test_other_fields_are_ignored(self):
        updated = self.store.update(self.account.id, {
            'status': AccountStatus.ACTIVE,
            'credential': 'abc:def',
            'id': 99,
        })
        self.assertEqual(updated.id, self.account.id)
        self.store.authenticate('u@x.io', 'p1')

    def test_nothing_to_update(self):
        with self.assertRaises(ValidationError):
            self.store.update(self.account.id, {'credential': 'abc:def'})

    def test_email_taken(self):
        self.store.create('w@x.io', 'p1')
        with self.assertRaises(ConflictError):
            self.store.update(self.account.id, {'email': 'w@x.io'})

    def test_same_email_is_fine(self):
        updated = self.store.update(self.account.id, {'email': 'u@x.io'})
        self.assertEqual(updated.email, 'u@x.io')

    def test_unknown_account(self):
        with self.assertRaises(NotFoundError):
            self.store.update(self.account.id + 1, {'status': 1})


class TestChangePassword(AccountStoreTestCase):

    def setUp(self):
        super().setUp()
        self.account = self.store.create('u@x.io', 'p1')

    def test_change(self):
        self.store.change_password(self.account.id, 'p1', 'p2')
        self.store.authenticate('u@x.io', 'p2')
        with self.assertRaises(AuthenticationError):
            self.store.authenticate('u@x.io', 'p1')

    def test_wrong_old_password(self):
        with self.assertRaises(AuthenticationError):
            self.store.change_password(self.account.id, 'nope', 'p2')
        self.store.authenticate('u@x.io', 'p1')

    def test_missing(self):
        with self.assertRaises(ValidationError):
            self.store.change_password(self.account.id, 'p1', '')
        with self.assertRaises(NotFoundError):
            self.store.change_password(self.account.id + 1, 'p1', 'p2')


class TestSoftDelete(AccountStoreTestCase):
    """Deleted accounts stay in the table but cannot log in."""

    def test_delete(self):
        account = self.store.create('u@x.io', 'p1')
        deleted = self.store.delete(account.id)
        self.assertEqual(deleted.status, AccountStatus.DELETED)
        self.assertFalse(self.store.get_by_id(account.id).is_active)
        with self.assertRaises(AuthenticationError):
            self.store.authenticate('u@x.io', 'p1')
        with self.assertRaises(ConflictError):
            self.store.create('u@x.io', 'p1')

    def test_unknown(self):
        with self.assertRaises(NotFoundError):
            self.store.delete(1)


class TestUpdatedAt(AccountStoreTestCase):
    """Mutations return the row with its refreshed ``updated_at``."""

    STALE = '2000-01-01 00:00:00'

    def setUp(self):
        super().setUp()
        self.account = self.store.create('u@x.io', 'p1')
        self.datastore.execute('UPDATE accounts SET updated_at = :stale',
                               {'stale': self.STALE})

    def assertRefreshed(self, account):
        self.assertNotEqual(str(account.updated_at), self.STALE)
        self.assertEqual(account.updated_at,
                         self.store.get_by_id(account.id).updated_at)

    def test_update(self):
        self.assertRefreshed(self.store.update(self.account.id,
                                               {'attributes': {'a': 1}}))

    def test_change_password(self):
        self.assertRefreshed(
            self.store.change_password(self.account.id, 'p1', 'p2')
        )

    def test_delete(self):
        self.assertRefreshed(self.store.delete(self.account.id))


class TestLogging(AccountStoreTestCase):
    """Expected outcomes roll back quietly; only storage faults are errors."""

    def assertNoErrors(self, logs):
        errors = [r.getMessage() for r in logs.records
                  if r.levelno >= logging.ERROR]
        self.assertEqual(errors, [])

    def test_duplicate_registration(self):
        self.store.create('c@x.io', 'pw')
        with self.assertLogs('idhub', level='DEBUG') as logs:
            with self.assertRaises(ConflictError):
                self.store.create('c@x.io', 'pw')
        self.assertNoErrors(logs)

    def test_wrong_old_password(self):
        account = self.store.create('c@x.io', 'pw')
        with self.assertLogs('idhub', level='DEBUG') as logs:
            with self.assertRaises(AuthenticationError):
                self.store.change_password(account.id, 'nope', 'p2')
        self.assertNoErrors(logs)


class TestAccount(TestCase):

    def test_attributes_default_to_none(self):
        self.assertIsNone(Account(1, 'a@x.io').attributes)


class TestList(AccountStoreTestCase):
    """Listings are newest first, filtered, and paginated."""

    def setUp(self):
        super().setUp()
        person = Person()
        self.accounts = []
        for i in range(25):
            provider = Provider.GOOGLE if i % 5 == 0 else Provider.LOCAL
            self.accounts.append(self.store.create(
                f'{i:02d}.{person.email()}', 'pw', provider=provider
            ))

    def test_second_page(self):
        page = self.store.list(page=2, limit=10)
        self.assertEqual([a.id for a in page.accounts],
                         [a.id for a in self.accounts[14:4:-1]])
        self.assertEqual(page.pagination.page, 2)
        self.assertEqual(page.pagination.limit, 10)
        self.assertEqual(page.pagination.total, 25)
        self.assertEqual(page.pagination.total_pages, 3)

    def test_last_page_and_beyond(self):
        self.assertEqual(len(self.store.list(page=3, limit=10).accounts), 5)
        self.assertEqual(self.store.list(page=4, limit=10).accounts, [])

    def test_filters(self):
        self.store.delete(self.accounts[0].id)
        page = self.store.list(provider=Provider.GOOGLE)
        self.assertEqual(page.pagination.total, 5)
        page = self.store.list(provider=Provider.GOOGLE,
                               status=AccountStatus.ACTIVE)
        self.assertEqual(page.pagination.total, 4)
        page = self.store.list(status=AccountStatus.DELETED)
        self.assertEqual([a.id for a in page.accounts],
                         [self.accounts[0].id])

    def test_search(self):
        target = self.accounts[7]
        page = self.store.list(search=target.email.upper())
        self.assertEqual([a.id for a in page.accounts], [target.id])

    def test_search_wildcards_are_literal(self):
        self.store.create('zqXqz@x.io', 'pw')
        self.store.create('zq_qz@x.io', 'pw')
        self.store.create('zq%qz@x.io', 'pw')
        self.assertEqual(self.store.list(search='zq_qz').pagination.total, 1)
        self.assertEqual(self.store.list(search='zq%qz').pagination.total, 1)
        self.assertEqual(self.store.list(search='zq').pagination.total, 3)

    def test_limit_is_capped(self):
        page = self.store.list(limit=MAX_PAGE_SIZE + 50)
        self.assertEqual(page.pagination.limit, MAX_PAGE_SIZE)
        self.assertEqual(len(page.accounts), 25)

    def test_bad_page(self):
        with self.assertRaises(ValidationError):
            self.store.list(page=0)
        with self.assertRaises(ValidationError):
            self.store.list(limit=0)
