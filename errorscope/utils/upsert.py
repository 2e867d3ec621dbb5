"""
Dialect-aware INSERT ... ON CONFLICT helpers.

PostgreSQL (production) and SQLite (tests, single-node) both support
on_conflict_do_update / on_conflict_do_nothing with RETURNING.
"""
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from errorscope.errors import ConfigurationError

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}


def insert_for(db: AsyncSession):
    """Return the dialect's insert() construct for this session."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise ConfigurationError(f"Unsupported database dialect for upserts: {dialect}")


def is_transient(exc: BaseException) -> bool:
    """True for lock contention, deadlocks and unique-key races worth retrying."""
    if isinstance(exc, (OperationalError, IntegrityError)):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        return sqlstate in TRANSIENT_SQLSTATES
    return False
