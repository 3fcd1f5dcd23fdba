"""Shared fixtures: a throwaway SQLite datastore and account store."""

import pytest

from idhub.services.accounts import AccountStore
from idhub.services.datastore import Datastore


@pytest.fixture()
def datastore(tmp_path):
    """A file-backed SQLite datastore, closed after the test."""
    ds = Datastore(f'sqlite:///{tmp_path / "idhub.db"}', pool_size=5,
                   pool_timeout=5)
    yield ds
    ds.close()


@pytest.fixture()
def store(datastore):
    """An account store with its schema in place."""
    accounts = AccountStore(datastore)
    accounts.ensure_schema()
    return accounts
