"""Tests for :mod:`idhub.services.datastore`."""

import logging
import threading
import time
from unittest import mock

import pytest

from idhub.exceptions import IntegrityConflict, QueryError, Unavailable
from idhub.services.datastore import Datastore, REDACTED, models

DDL = 'CREATE TABLE things (id INTEGER PRIMARY KEY, name TEXT UNIQUE, ' \
      'credential TEXT)'


@pytest.fixture()
def things(datastore):
    datastore.migrate(DDL)
    return datastore


def test_insert_returns_row(things):
    row = things.insert('things', {'name': 'foo', 'credential': 'x'})
    assert row['id'] is not None
    assert row['name'] == 'foo'
    assert things.find_one('things', {'id': row['id']}) == row


def test_update_and_delete(things):
    row = things.insert('things', {'name': 'foo'})
    updated = things.update('things', {'name': 'bar'}, {'id': row['id']})
    assert updated['name'] == 'bar'
    assert things.update('things', {'name': 'baz'}, {'id': 999}) is None
    assert things.delete('things', {'id': row['id']}) == 1
    assert things.find_one('things', {'id': row['id']}) is None


def test_update_can_set_a_column_it_filters_on(things):
    """SET and WHERE binds do not collide."""
    things.insert('things', {'name': 'foo'})
    updated = things.update('things', {'name': 'bar'}, {'name': 'foo'})
    assert updated['name'] == 'bar'


def test_find_many(things):
    for name in ['b', 'a', 'c']:
        things.insert('things', {'name': name})
    rows = things.find_many('things', order_by=['-name'], limit=2)
    assert [row['name'] for row in rows] == ['c', 'b']
    rows = things.find_many('things', columns=['name'], order_by=['name'],
                            limit=2, offset=1)
    assert rows == [{'name': 'b'}, {'name': 'c'}]


def test_transaction_commits(things):
    with things.transaction() as tx:
        tx.insert('things', {'name': 'foo'})
        tx.insert('things', {'name': 'bar'})
    assert len(things.find_many('things')) == 2


def test_transaction_rolls_back(things):
    with pytest.raises(RuntimeError):
        with things.transaction() as tx:
            tx.insert('things', {'name': 'foo'})
            raise RuntimeError('nope')
    assert things.find_many('things') == []


def test_values_are_never_interpolated(things):
    name = "x'); DROP TABLE things; --"
    row = things.insert('things', {'name': name})
    assert things.find_one('things', {'id': row['id']})['name'] == name
    assert things.table_exists('things')


def test_identifiers_are_validated(things):
    for bad in ['things; DROP TABLE things', 'thi"ngs', '1things', '']:
        with pytest.raises(ValueError):
            things.insert(bad, {'name': 'foo'})
        with pytest.raises(ValueError):
            things.insert('things', {bad: 'foo'})
    with pytest.raises(ValueError):
        things.find_many('things', order_by=['name desc'])


def test_builders_refuse_empty_conditions(things):
    with pytest.raises(ValueError):
        things.update('things', {'name': 'foo'}, {})
    with pytest.raises(ValueError):
        things.delete('things', {})
    with pytest.raises(ValueError):
        things.insert('things', {})


def test_query_error_redacts_credentials(things):
    with pytest.raises(QueryError) as excinfo:
        things.query('INSERT INTO nowhere (credential, password, name) '
                     'VALUES (:credential, :password, :name)',
                     {'credential': 'hash', 'password': 'pw', 'name': 'n'})
    error = excinfo.value
    assert 'nowhere' in error.sql
    assert error.params == {'credential': REDACTED, 'password': REDACTED,
                            'name': 'n'}
    assert error.cause is not None


def test_uniqueness_violation(things):
    things.insert('things', {'name': 'foo'})
    with pytest.raises(IntegrityConflict):
        things.insert('things', {'name': 'foo'})


def test_execute_counts_rows(things):
    things.insert('things', {'name': 'a'})
    things.insert('things', {'name': 'b'})
    assert things.execute("UPDATE things SET credential = 'x'") == 2


def test_table_exists(datastore):
    assert not datastore.table_exists('things')
    datastore.migrate(DDL)
    assert datastore.table_exists('things')


def test_pool_status(things):
    status = things.pool_status()
    assert status['waiting'] == 0
    assert status['connected'] is True
    with things.transaction():
        assert things.pool_status()['active'] == 1
    assert things.pool_status()['active'] == 0


def test_exhausted_pool(tmp_path):
    """Waiting longer than the connect timeout fails fast."""
    datastore = Datastore(f'sqlite:///{tmp_path / "pool.db"}', pool_size=1,
                          pool_timeout=0.1)
    try:
        with datastore.transaction():
            with pytest.raises(Unavailable):
                datastore.query('SELECT 1')
            assert datastore.pool_status()['waiting'] == 0
    finally:
        datastore.close()


def test_immediate_lease_is_not_waiting(datastore):
    seen = []
    connect = datastore.engine.connect

    def spy():
        seen.append(datastore._waiting)
        return connect()

    with mock.patch.object(datastore.engine, 'connect', spy):
        datastore.query('SELECT 1')
    assert seen == [0]


def test_queued_lease_is_waiting(tmp_path):
    """A lease against a full pool counts as waiting until it is served."""
    datastore = Datastore(f'sqlite:///{tmp_path / "pool.db"}', pool_size=1,
                          pool_timeout=5)
    waiter = threading.Thread(target=datastore.query, args=('SELECT 1',))
    try:
        with datastore.transaction():
            waiter.start()
            deadline = time.monotonic() + 2
            while datastore._waiting == 0 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert datastore._waiting == 1
        waiter.join(5)
        assert datastore._waiting == 0
    finally:
        datastore.close()


def test_rollback_log_levels(things, caplog):
    """Only storage failures are logged as errors when rolling back."""
    caplog.set_level(logging.DEBUG, logger='idhub')
    with pytest.raises(KeyError):
        with things.transaction():
            raise KeyError('not a storage problem')
    things.insert('things', {'name': 'foo'})
    with pytest.raises(IntegrityConflict):
        things.insert('things', {'name': 'foo'})
    assert [r for r in caplog.records if r.levelno >= logging.ERROR] == []

    with pytest.raises(QueryError):
        things.query('SELECT nope FROM things')
    errors = [r.getMessage() for r in caplog.records
              if r.levelno >= logging.ERROR]
    assert 'Rolling back: ' in ' '.join(errors)


def test_ping_unreachable(tmp_path):
    datastore = Datastore(f'sqlite:///{tmp_path / "missing" / "x.db"}')
    try:
        assert datastore.ping() is False
    finally:
        datastore.close()


def test_account_schema(store, datastore):
    """The accounts table, with its update trigger."""
    assert datastore.table_exists(models.TABLE)
    assert store.ensure_schema() is False
    row = datastore.insert(models.TABLE, {'email': 'a@b.c',
                                          'credential': 'x'})
    assert row['provider'] == 0
    assert row['status'] == 1
    datastore.execute("UPDATE accounts SET updated_at = '2000-01-01 00:00:00'")
    datastore.update(models.TABLE, {'status': 0}, {'id': row['id']})
    touched = datastore.find_one(models.TABLE, {'id': row['id']})
    assert str(touched['updated_at']) != '2000-01-01 00:00:00'
