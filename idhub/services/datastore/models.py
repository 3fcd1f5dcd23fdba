"""Account schema."""

from typing import Dict, List

from sqlalchemy import Column, DateTime, Integer, JSON, SmallInteger, String, \
    Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class DBAccount(Base):  # type: ignore
    """
    Accounts, one row per e-mail address.

    +-------------+--------------+------+-----+---------+----------------+
    | Field       | Type         | Null | Key | Default | Extra          |
    +-------------+--------------+------+-----+---------+----------------+
    | id          | integer      | NO   | PRI | NULL    | auto_increment |
    | email       | varchar(255) | NO   | UNI | NULL    |                |
    | credential  | text         | NO   |     | NULL    |                |
    | provider    | smallint     | NO   | MUL | 0       |                |
    | attributes  | jsonb        | NO   |     | '{}'    |                |
    | created_at  | timestamptz  | NO   | MUL | now()   |                |
    | updated_at  | timestamptz  | NO   |     | now()   | on update      |
    | status      | smallint     | NO   | MUL | 1       |                |
    +-------------+--------------+------+-----+---------+----------------+

    ``credential`` is ``<saltHex>:<derivedHex>`` and is never selected into
    an :class:`idhub.domain.Account`.
    """

    __tablename__ = 'accounts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    credential = Column(Text, nullable=False)
    provider = Column(SmallInteger, nullable=False, index=True,
                      server_default=text('0'))
    attributes = Column(JSON().with_variant(JSONB(), 'postgresql'),
                        nullable=False, server_default=text("'{}'"))
    created_at = Column(DateTime(timezone=True), nullable=False, index=True,
                        server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False,
                        server_default=func.now())
    status = Column(SmallInteger, nullable=False, index=True,
                    server_default=text('1'))


TABLE = DBAccount.__tablename__

COLUMNS = ('id', 'email', 'provider', 'attributes', 'created_at',
           'updated_at', 'status')
"""Columns that make up the public view of an account."""

TRIGGER_DDL: Dict[str, List[str]] = {
    'postgresql': [
        """
        CREATE OR REPLACE FUNCTION accounts_touch_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
        """,
        "DROP TRIGGER IF EXISTS accounts_updated_at ON accounts",
        """
        CREATE TRIGGER accounts_updated_at
        BEFORE UPDATE ON accounts
        FOR EACH ROW EXECUTE FUNCTION accounts_touch_updated_at()
        """,
    ],
    'sqlite': [
        """
        CREATE TRIGGER IF NOT EXISTS accounts_updated_at
        AFTER UPDATE ON accounts
        FOR EACH ROW WHEN NEW.updated_at = OLD.updated_at
        BEGIN
            UPDATE accounts SET updated_at = CURRENT_TIMESTAMP
            WHERE id = NEW.id;
        END
        """,
    ],
}
"""Per-dialect DDL for the trigger that refreshes ``updated_at``."""
