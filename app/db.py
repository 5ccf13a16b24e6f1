import contextlib
import logging
import sqlite3
from typing import Iterable

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


logger = logging.getLogger(__name__)


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

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    @contextlib.contextmanager
    def transaction(self):
        # Nested blocks join the outermost transaction.
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield self
            finally:
                self._tx_depth -= 1
            return

        self.execute("BEGIN")
        self._tx_depth = 1
        try:
            yield self
        except BaseException:
            self._tx_depth = 0
            try:
                self.execute("ROLLBACK")
            except Exception:  # noqa: BLE001
                # The error that aborted the block is the one the caller sees.
                logger.exception("database_rollback_failed", extra={"db_backend": self.backend})
            raise
        self._tx_depth = 0
        self.execute("COMMIT")

    def close(self):
        self._conn.close()


def integrity_errors() -> tuple:
    errors: tuple = (sqlite3.IntegrityError,)
    if psycopg2 is not None:
        errors = errors + (psycopg2.IntegrityError,)
    return errors


def is_unique_violation(exc: Exception) -> bool:
    pgcode = getattr(exc, "pgcode", None)
    if pgcode is not None:
        return pgcode == "23505"
    errorname = getattr(exc, "sqlite_errorname", None)
    if errorname:
        return errorname in {"SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY"}
    return "UNIQUE constraint failed" in str(exc)


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 nao instalado.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # Autocommit mode; multi-statement work goes through Database.transaction().
    conn = sqlite3.connect(db_path, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = connect_database(db_path)
    return g.db


def get_read_db():
    if "db_read" not in g:
        db_path = current_app.config.get("DATABASE_READ_URL") or current_app.config["DB_PATH"]
        g.db_read = connect_database(db_path)
    return g.db_read


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()
    db_read = g.pop("db_read", None)
    if db_read is not None:
        db_read.close()


def init_db():
    init_schema(get_db())


_COLUMN_TYPES = {
    "sqlite": {
        "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "bool_true": "INTEGER NOT NULL DEFAULT 1",
        "timestamp": "TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP",
    },
    "postgres": {
        "pk": "SERIAL PRIMARY KEY",
        "bool_true": "BOOLEAN NOT NULL DEFAULT TRUE",
        "timestamp": "TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP",
    },
}

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS cad_categories (
        id {pk},
        name TEXT NOT NULL,
        description TEXT,
        code TEXT,
        parent_id INTEGER REFERENCES cad_categories(id) DEFERRABLE INITIALLY DEFERRED,
        level INTEGER NOT NULL DEFAULT 1,
        path TEXT NOT NULL,
        active {bool_true},
        created_at {timestamp},
        updated_at {timestamp}
    )
    """,
    # Indice por expressao: cobre irmaos na raiz, onde parent_id e NULL.
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_cad_categories_parent_name
    ON cad_categories (COALESCE(parent_id, 0), name)
    """,
    "CREATE INDEX IF NOT EXISTS ix_cad_categories_parent ON cad_categories (parent_id)",
    "CREATE INDEX IF NOT EXISTS ix_cad_categories_active ON cad_categories (active)",
    """
    CREATE TABLE IF NOT EXISTS cad_products (
        id {pk},
        name TEXT NOT NULL,
        sku TEXT,
        category_id INTEGER REFERENCES cad_categories(id),
        created_at {timestamp},
        updated_at {timestamp}
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_cad_products_category ON cad_products (category_id)",
)


def init_schema(db: Database) -> None:
    column_types = _COLUMN_TYPES[db.backend]
    with db.transaction():
        for statement in _SCHEMA_STATEMENTS:
            db.execute(statement.format(**column_types))
    logger.info("database_schema_ready", extra={"db_backend": db.backend})
