"""
Pooled, transactional access to the relational store.

A :class:`Datastore` owns one SQLAlchemy engine and its connection pool.
Statements are plain SQL with named ``:param`` binds; the builders
(:meth:`Transaction.insert` and friends) only ever interpolate validated
identifiers, never values.

.. code-block:: python

   with datastore.transaction() as tx:
       row = tx.insert('accounts', {'email': 'a@b.c', 'credential': '...'})
       tx.update('accounts', {'status': 0}, {'id': row['id']})

"""

import logging
import re
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Mapping, Optional

from sqlalchemy import create_engine, exc, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import QueuePool

from ...exceptions import IntegrityConflict, QueryError, StorageError, \
    Unavailable

logger = logging.getLogger(__name__)

IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
SENSITIVE = ('credential', 'password')
REDACTED = '[redacted]'

Row = Dict[str, Any]


def redact(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Copy bind params, hiding anything that looks like a credential."""
    return {
        key: REDACTED if any(s in key.lower() for s in SENSITIVE) else value
        for key, value in (params or {}).items()
    }


def _rollback_level(error: Exception) -> int:
    if isinstance(error, IntegrityConflict):
        return logging.DEBUG    # Callers decide what a conflict means.
    if isinstance(error, (StorageError, exc.SQLAlchemyError)):
        return logging.ERROR
    return logging.DEBUG


class Transaction:
    """
    Statement helpers bound to one leased connection.

    Obtained from :meth:`Datastore.transaction`; not usable after the
    ``with`` block exits.
    """

    def __init__(self, connection: Connection, engine: Engine) -> None:
        self.connection = connection
        self._quote = engine.dialect.identifier_preparer.quote

    def _identifier(self, name: str) -> str:
        if not isinstance(name, str) or not IDENTIFIER.match(name):
            raise ValueError(f'Not a valid identifier: {name!r}')
        return self._quote(name)

    def _run(self, sql: str, params: Optional[Mapping[str, Any]]) -> Any:
        start = time.monotonic()
        try:
            result = self.connection.execute(text(sql), dict(params or {}))
        except exc.IntegrityError as e:
            self._log_failure(sql, params, start, e, logging.WARNING)
            raise IntegrityConflict(sql, redact(params), e.orig) from e
        except exc.DBAPIError as e:
            self._log_failure(sql, params, start, e)
            if e.connection_invalidated:
                raise Unavailable('Lost connection to the datastore') from e
            raise QueryError(sql, redact(params), e.orig) from e
        return result, start

    def _log_failure(self, sql: str, params: Optional[Mapping[str, Any]],
                     start: float, error: Exception,
                     level: int = logging.ERROR) -> None:
        logger.log(level, 'Query failed: %s', error, extra={
            'sql': sql,
            'params': redact(params),
            'duration_ms': round((time.monotonic() - start) * 1000, 2)
        })

    def _log_success(self, sql: str, start: float, rows: int) -> None:
        logger.debug('Executed query', extra={
            'sql': sql,
            'duration_ms': round((time.monotonic() - start) * 1000, 2),
            'rows': rows
        })

    def query(self, sql: str,
              params: Optional[Mapping[str, Any]] = None) -> List[Row]:
        """
        Execute a parameterized statement and return its rows.

        Parameters
        ----------
        sql : str
            Statement text with named ``:param`` placeholders.
        params : dict
            Values for the placeholders.

        Returns
        -------
        list
            One dict per row, keyed by column name. Empty for statements
            that return no rows.

        Raises
        ------
        :class:`QueryError`
            If the database rejects the statement.
        :class:`IntegrityConflict`
            If the statement violates a uniqueness constraint.

        """
        result, start = self._run(sql, params)
        rows = [dict(row._mapping) for row in result] \
            if result.returns_rows else []
        self._log_success(sql, start, len(rows))
        return rows

    def execute(self, sql: str,
                params: Optional[Mapping[str, Any]] = None) -> int:
        """Execute a statement that returns no rows; get the affected count."""
        result, start = self._run(sql, params)
        count = result.rowcount
        self._log_success(sql, start, count)
        return count

    def find_one(self, table: str, where: Mapping[str, Any],
                 columns: Optional[List[str]] = None) -> Optional[Row]:
        """Get the first row matching all of ``where``, or ``None``."""
        rows = self.find_many(table, where, columns=columns, limit=1)
        return rows[0] if rows else None

    def find_many(self, table: str,
                  where: Optional[Mapping[str, Any]] = None,
                  columns: Optional[List[str]] = None,
                  order_by: Optional[List[str]] = None,
                  limit: Optional[int] = None,
                  offset: Optional[int] = None) -> List[Row]:
        """
        Get rows matching all of ``where``.

        ``order_by`` items are column names, optionally prefixed with ``-``
        for descending order.
        """
        selected = ', '.join(self._identifier(c) for c in columns) \
            if columns else '*'
        sql = f'SELECT {selected} FROM {self._identifier(table)}'
        params: Dict[str, Any] = {}
        if where:
            sql += ' WHERE ' + self._conditions(where, params, 'where_')
        if order_by:
            terms = []
            for term in order_by:
                direction = 'DESC' if term.startswith('-') else 'ASC'
                terms.append(f'{self._identifier(term.lstrip("-"))} '
                             f'{direction}')
            sql += ' ORDER BY ' + ', '.join(terms)
        if limit is not None:
            sql += ' LIMIT :limit'
            params['limit'] = int(limit)
        if offset is not None:
            sql += ' OFFSET :offset'
            params['offset'] = int(offset)
        return self.query(sql, params)

    def _conditions(self, where: Mapping[str, Any], params: Dict[str, Any],
                    prefix: str) -> str:
        clauses = []
        for key, value in where.items():
            clauses.append(f'{self._identifier(key)} = :{prefix}{key}')
            params[f'{prefix}{key}'] = value
        return ' AND '.join(clauses)

    def insert(self, table: str, fields: Mapping[str, Any]) -> Row:
        """
        Insert one row and return it as stored.

        Columns are emitted in the iteration order of ``fields``.
        """
        if not fields:
            raise ValueError('Nothing to insert')
        columns = ', '.join(self._identifier(key) for key in fields)
        values = ', '.join(f':{key}' for key in fields)
        sql = f'INSERT INTO {self._identifier(table)} ({columns}) ' \
              f'VALUES ({values}) RETURNING *'
        return self.query(sql, fields)[0]

    def update(self, table: str, fields: Mapping[str, Any],
               where: Mapping[str, Any]) -> Optional[Row]:
        """Update matching rows; get the first updated row, if any."""
        if not fields:
            raise ValueError('Nothing to update')
        if not where:
            raise ValueError('Refusing to update without a condition')
        params: Dict[str, Any] = {}
        assignments = []
        for key, value in fields.items():
            assignments.append(f'{self._identifier(key)} = :set_{key}')
            params[f'set_{key}'] = value
        conditions = self._conditions(where, params, 'where_')
        sql = f'UPDATE {self._identifier(table)} ' \
              f'SET {", ".join(assignments)} ' \
              f'WHERE {conditions} RETURNING *'
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def delete(self, table: str, where: Mapping[str, Any]) -> int:
        """Delete matching rows; get the number deleted."""
        if not where:
            raise ValueError('Refusing to delete without a condition')
        params: Dict[str, Any] = {}
        conditions = self._conditions(where, params, 'where_')
        return self.execute(
            f'DELETE FROM {self._identifier(table)} WHERE {conditions}',
            params
        )


class Datastore:
    """
    A connection pool plus the statement helpers of :class:`Transaction`.

    The helpers on the datastore itself each run in their own
    transaction. Use :meth:`transaction` to group statements.

    Parameters
    ----------
    uri : str
        SQLAlchemy database URI.
    pool_size : int
        Maximum number of connections leased at once.
    pool_recycle : int
        Seconds after which a pooled connection is replaced.
    pool_timeout : float
        Seconds to wait for a free connection before raising
        :class:`Unavailable`.

    """

    def __init__(self, uri: str, pool_size: int = 20,
                 pool_recycle: int = 30, pool_timeout: float = 2.0) -> None:
        connect_args: Dict[str, Any] = {}
        if uri.startswith('sqlite'):
            connect_args['check_same_thread'] = False
        elif uri.startswith('postgresql'):
            connect_args['connect_timeout'] = max(1, int(pool_timeout))
        self.engine = create_engine(
            uri,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            connect_args=connect_args
        )
        self._lock = threading.Lock()
        self._waiting = 0

    @property
    def dialect(self) -> str:
        """Name of the database dialect, e.g. ``postgresql``."""
        return str(self.engine.dialect.name)

    @contextmanager
    def _lease(self) -> Generator[Connection, None, None]:
        pool = self.engine.pool
        with self._lock:
            # Only a checkout against a full pool has to wait.
            queued = pool.checkedout() >= pool.size()  # type: ignore
            if queued:
                self._waiting += 1
        try:
            connection = self.engine.connect()
        except exc.TimeoutError as e:
            logger.error('Timed out waiting for a pooled connection')
            raise Unavailable('No database connection available') from e
        except exc.DBAPIError as e:
            logger.error('Could not connect to the datastore: %s', e)
            raise Unavailable('Could not connect to the datastore') from e
        finally:
            if queued:
                with self._lock:
                    self._waiting -= 1
        try:
            yield connection
        finally:
            connection.close()

    @contextmanager
    def transaction(self) -> Generator[Transaction, None, None]:
        """
        Lease a connection and run the enclosed statements atomically.

        Commits when the block exits normally; rolls back and re-raises on
        any exception. The connection goes back to the pool either way.
        """
        with self._lease() as connection:
            outer = connection.begin()
            try:
                yield Transaction(connection, self.engine)
                outer.commit()
            except Exception as e:
                logger.log(_rollback_level(e), 'Rolling back: %s', e)
                outer.rollback()
                raise

    def query(self, sql: str,
              params: Optional[Mapping[str, Any]] = None) -> List[Row]:
        """See :meth:`Transaction.query`."""
        with self.transaction() as tx:
            return tx.query(sql, params)

    def execute(self, sql: str,
                params: Optional[Mapping[str, Any]] = None) -> int:
        """See :meth:`Transaction.execute`."""
        with self.transaction() as tx:
            return tx.execute(sql, params)

    def find_one(self, table: str, where: Mapping[str, Any],
                 columns: Optional[List[str]] = None) -> Optional[Row]:
        """See :meth:`Transaction.find_one`."""
        with self.transaction() as tx:
            return tx.find_one(table, where, columns=columns)

    def find_many(self, table: str,
                  where: Optional[Mapping[str, Any]] = None,
                  **kwargs: Any) -> List[Row]:
        """See :meth:`Transaction.find_many`."""
        with self.transaction() as tx:
            return tx.find_many(table, where, **kwargs)

    def insert(self, table: str, fields: Mapping[str, Any]) -> Row:
        """See :meth:`Transaction.insert`."""
        with self.transaction() as tx:
            return tx.insert(table, fields)

    def update(self, table: str, fields: Mapping[str, Any],
               where: Mapping[str, Any]) -> Optional[Row]:
        """See :meth:`Transaction.update`."""
        with self.transaction() as tx:
            return tx.update(table, fields, where)

    def delete(self, table: str, where: Mapping[str, Any]) -> int:
        """See :meth:`Transaction.delete`."""
        with self.transaction() as tx:
            return tx.delete(table, where)

    def table_exists(self, name: str) -> bool:
        """Check whether a table is present in the default schema."""
        with self._lease() as connection:
            return bool(inspect(connection).has_table(name))

    def create_tables(self, metadata: Any) -> None:
        """Create any tables in ``metadata`` that do not yet exist."""
        with self._lease() as connection:
            metadata.create_all(connection)
            connection.commit()

    def migrate(self, script: str) -> None:
        """Run a DDL statement inside a transaction."""
        with self.transaction() as tx:
            start = time.monotonic()
            tx.connection.exec_driver_sql(script)
            tx._log_success(script, start, 0)
        logger.info('Applied migration')

    def ping(self) -> bool:
        """Round-trip ``SELECT 1``; ``False`` if the store is unreachable."""
        try:
            self.query('SELECT 1')
        except (Unavailable, QueryError) as e:
            logger.warning('Datastore ping failed: %s', e)
            return False
        return True

    def pool_status(self) -> Dict[str, Any]:
        """Snapshot of pool usage, plus whether the store is reachable."""
        pool = self.engine.pool
        with self._lock:
            waiting = self._waiting
        status = {
            'active': pool.checkedout(),  # type: ignore
            'idle': pool.checkedin(),     # type: ignore
            'waiting': waiting,
        }
        status['connected'] = self.ping()
        return status

    def close(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()
