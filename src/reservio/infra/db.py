"""PostgreSQL access for reservio (psycopg2, raw SQL).

Every unit of work runs inside txn(): one connection, one transaction,
commit or rollback on the way out. Row locks (FOR UPDATE) and the advisory
locks of the booking gate are transaction-scoped, so txn() is also where
they are released.

Environment:
    DATABASE_URL         libpq DSN or postgres:// URL (required)
    DB_PASSWORD          injected when the DSN carries no password
    DB_CONNECT_TIMEOUT   seconds, default 10
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence
from urllib.parse import urlparse

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

APPLICATION_NAME = "reservio"
DEFAULT_CONNECT_TIMEOUT = 10


def _dsn_has_password(dsn: str) -> bool:
    if "://" in dsn:
        return bool(urlparse(dsn).password)
    return any(part.startswith("password=") for part in dsn.split())


def _connect_options(dsn: str) -> dict[str, Any]:
    raw_timeout = os.environ.get("DB_CONNECT_TIMEOUT", "")
    options: dict[str, Any] = {
        "application_name": APPLICATION_NAME,
        "connect_timeout": int(raw_timeout) if raw_timeout.isdigit() else DEFAULT_CONNECT_TIMEOUT,
    }
    db_password = os.environ.get("DB_PASSWORD")
    if db_password and not _dsn_has_password(dsn):
        options["password"] = db_password
    return options


def get_conn() -> PgConnection:
    """Open a new connection from DATABASE_URL.

    Also used by the Alembic environment, so migrations connect exactly the
    way the service does.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    return psycopg2.connect(dsn, **_connect_options(dsn))


@contextmanager
def txn(conn: PgConnection | None = None, *, read_only: bool = False) -> Iterator[PgCursor]:
    """Run one transaction and yield its cursor.

    Args:
        conn: Existing connection to use. When None a connection is opened
            here and closed on exit.
        read_only: Start the transaction READ ONLY (dashboard listings).

    Example:
        with txn() as cur:
            reservation = get_reservation(cur, reservation_id, lock=True)
            update_status(cur, reservation_id, status=CONFIRMED)
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            if read_only:
                cur.execute("SET TRANSACTION READ ONLY")
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()


def set_local(cur: PgCursor, setting: str, value: str) -> None:
    """Change a server setting for the rest of the current transaction only."""
    cur.execute("SELECT set_config(%s, %s, true)", (setting, value))


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    cur.execute(query, params)
    return cur.fetchone()


def fetchall(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> list[tuple[Any, ...]]:
    cur.execute(query, params)
    return cur.fetchall()


def _row_lock_clause(*, nowait: bool, skip_locked: bool) -> str:
    if nowait and skip_locked:
        raise ValueError("Cannot use both nowait and skip_locked")
    if nowait:
        return "FOR UPDATE NOWAIT"
    if skip_locked:
        return "FOR UPDATE SKIP LOCKED"
    return "FOR UPDATE"


def for_update(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
    *,
    nowait: bool = False,
    skip_locked: bool = False,
) -> tuple[Any, ...] | None:
    """Fetch one row and hold its lock until the transaction ends.

    Args:
        cur: Cursor inside txn().
        query: Single-row SELECT without a locking clause.
        params: Query parameters.
        nowait: Fail with LockNotAvailable instead of waiting.
        skip_locked: Return None when another transaction holds the row.

    Raises:
        ValueError: If both nowait and skip_locked are set.
    """
    clause = _row_lock_clause(nowait=nowait, skip_locked=skip_locked)
    cur.execute(f"{query.rstrip().rstrip(';')} {clause}", params)
    return cur.fetchone()
