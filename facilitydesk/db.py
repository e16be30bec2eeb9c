import contextlib
import sqlite3
from typing import Iterable

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._tx_depth = 0

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    @contextlib.contextmanager
    def transaction(self):
        """Run the block in one database transaction.

        SQLite takes the write lock up front (``BEGIN IMMEDIATE``) so two
        writers serialize on the busy timeout instead of failing on lock
        upgrade. Nested blocks join the outermost transaction.
        """
        if self._tx_depth > 0:
            self._tx_depth += 1
            try:
                yield self
            finally:
                self._tx_depth -= 1
            return

        self.execute("BEGIN IMMEDIATE" if self.backend == "sqlite" else "BEGIN")
        self._tx_depth = 1
        try:
            yield self
        except BaseException:
            self._tx_depth = 0
            if self.backend == "postgres" or self._conn.in_transaction:
                self.execute("ROLLBACK")
            raise
        self._tx_depth = 0
        self.execute("COMMIT")

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str, *, timeout_seconds: int = 30) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is not installed.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # Autocommit mode: explicit transactions only, mirroring the postgres connection.
    conn = sqlite3.connect(db_path, timeout=float(timeout_seconds), isolation_level=None)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


def _app_connect(db_path: str) -> Database:
    timeout = int(current_app.config.get("SQLITE_BUSY_TIMEOUT_SECONDS", 30) or 30)
    return connect_database(db_path, timeout_seconds=timeout)


def get_db():
    if "db" not in g:
        g.db = _app_connect(current_app.config["DB_PATH"])
    return g.db


def get_read_db():
    if "db_read" not in g:
        db_path = current_app.config.get("DATABASE_READ_URL") or current_app.config["DB_PATH"]
        g.db_read = _app_connect(db_path)
    return g.db_read


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()
    db_read = g.pop("db_read", None)
    if db_read is not None:
        db_read.close()


def init_db():
    db = get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
        return

    _init_db_sqlite(db)


_SQLITE_TYPES = {
    "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "money": "REAL",
}

_POSTGRES_TYPES = {
    "pk": "SERIAL PRIMARY KEY",
    "money": "DOUBLE PRECISION",
}


_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS tenants (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        parent_tenant_id TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS principals (
        id {pk},
        email TEXT NOT NULL UNIQUE,
        display_name TEXT,
        role TEXT NOT NULL CHECK (
            role IN ('superadmin','client_admin','business_manager','technician','external_maintainer','subcontractor')
        ),
        tenant_id TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sites (
        id {pk},
        tenant_id TEXT NOT NULL,
        name TEXT NOT NULL,
        address TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS equipment (
        id {pk},
        tenant_id TEXT NOT NULL,
        site_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        category TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sequence_counters (
        tenant_id TEXT NOT NULL,
        scope TEXT NOT NULL,
        year INTEGER NOT NULL,
        last_value INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (tenant_id, scope, year)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quotes (
        id {pk},
        number TEXT NOT NULL,
        tenant_id TEXT NOT NULL,
        requester_id INTEGER NOT NULL,
        site_id INTEGER NOT NULL,
        equipment_id INTEGER,
        work_type TEXT NOT NULL CHECK (
            work_type IN ('maintenance','repair','installation','replacement','other')
        ),
        urgency TEXT NOT NULL DEFAULT 'normal' CHECK (urgency IN ('normal','high','urgent')),
        title TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL DEFAULT 'pending_response' CHECK (
            status IN ('pending_response','viewed','in_progress','submitted','accepted','rejected','expired')
        ),
        recipient_ids TEXT NOT NULL DEFAULT '[]',
        version INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quote_responses (
        id {pk},
        quote_id INTEGER NOT NULL,
        tenant_id TEXT NOT NULL,
        recipient_id INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (
            status IN ('pending','viewed','responded','info_requested','rejected','accepted')
        ),
        amount_before_tax {money},
        currency TEXT NOT NULL DEFAULT 'EUR',
        delay TEXT,
        conditions TEXT,
        message TEXT,
        document_ref TEXT,
        validity_date TEXT,
        info_request_message TEXT,
        rejection_reason TEXT,
        viewed_at TEXT,
        responded_at TEXT,
        resolved_at TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (quote_id, recipient_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS access_grants (
        id {pk},
        principal_id INTEGER NOT NULL,
        site_id INTEGER NOT NULL,
        tenant_id TEXT NOT NULL,
        level TEXT NOT NULL CHECK (level IN ('read','write','full')),
        origin_quote_id INTEGER,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS status_events (
        id {pk},
        tenant_id TEXT NOT NULL,
        entity TEXT NOT NULL,
        entity_id INTEGER NOT NULL,
        quote_id INTEGER NOT NULL,
        from_status TEXT,
        to_status TEXT NOT NULL,
        reason TEXT,
        actor_id INTEGER,
        occurred_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id {pk},
        number TEXT NOT NULL,
        tenant_id TEXT NOT NULL,
        quote_id INTEGER NOT NULL UNIQUE,
        supplier_id INTEGER NOT NULL,
        requester_id INTEGER NOT NULL,
        site_id INTEGER NOT NULL,
        amount_before_tax {money} NOT NULL,
        tax_amount {money} NOT NULL,
        amount_total {money} NOT NULL,
        currency TEXT NOT NULL DEFAULT 'EUR',
        status TEXT NOT NULL DEFAULT 'created',
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id {pk},
        recipient_id INTEGER NOT NULL,
        tenant_id TEXT,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        related_quote_id INTEGER,
        read_at TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notification_outbox (
        id {pk},
        tenant_id TEXT,
        kind TEXT NOT NULL,
        recipient_id INTEGER NOT NULL,
        quote_id INTEGER,
        payload TEXT NOT NULL DEFAULT '{{}}',
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','sent','failed')),
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        sent_at TEXT
    )
    """,
)

_INDEXES = (
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_quotes_tenant_number ON quotes (tenant_id, number)",
    "CREATE INDEX IF NOT EXISTS idx_quotes_tenant_status ON quotes (tenant_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_quote_responses_recipient ON quote_responses (recipient_id, status)",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_access_grants_unique
    ON access_grants (principal_id, site_id, COALESCE(origin_quote_id, 0))
    """,
    "CREATE INDEX IF NOT EXISTS idx_access_grants_site ON access_grants (site_id)",
    "CREATE INDEX IF NOT EXISTS idx_status_events_quote ON status_events (quote_id, id)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_orders_tenant_number ON orders (tenant_id, number)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_recipient ON notifications (recipient_id, id)",
    "CREATE INDEX IF NOT EXISTS idx_notification_outbox_status ON notification_outbox (status, id)",
    "CREATE INDEX IF NOT EXISTS idx_equipment_site ON equipment (site_id)",
    "CREATE INDEX IF NOT EXISTS idx_tenants_parent ON tenants (parent_tenant_id)",
)


SCHEMA_TABLES = (
    "notification_outbox",
    "notifications",
    "orders",
    "status_events",
    "access_grants",
    "quote_responses",
    "quotes",
    "sequence_counters",
    "equipment",
    "sites",
    "principals",
    "tenants",
)


def _create_schema(db, types: dict) -> None:
    for statement in _TABLES:
        db.execute(statement.format(**types))
    for statement in _INDEXES:
        db.execute(statement)


def _init_db_sqlite(db) -> None:
    _create_schema(db, _SQLITE_TYPES)


def _init_db_postgres(db) -> None:
    _create_schema(db, _POSTGRES_TYPES)


def _table_exists(db: Database, table: str) -> bool:
    if db.backend == "postgres":
        row = db.execute(
            """
            SELECT 1
            FROM information_schema.tables
            WHERE table_schema = 'public' AND table_name = ?
            """,
            (table,),
        ).fetchone()
        return row is not None

    row = db.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def missing_tables(db: Database) -> list[str]:
    """Schema tables absent from ``db``, in creation order."""
    return [table for table in reversed(SCHEMA_TABLES) if not _table_exists(db, table)]
