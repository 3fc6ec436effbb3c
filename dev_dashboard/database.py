"""
Database Module

This module handles database connections, schema setup and provides session management.
"""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import sessionmaker

from dev_dashboard.models import Base

logger = logging.getLogger(__name__)

# Cache for database engines
_engines = {}

# (table, column, DDL type) added to databases created by older releases
ADDITIVE_COLUMNS = [
    ("tasks", "jira_title", "TEXT"),
    ("deployments", "namespace", "TEXT NOT NULL DEFAULT ''"),
    ("repositories", "service_name", "TEXT DEFAULT ''"),
    ("repositories", "service_location", "TEXT DEFAULT ''"),
    ("repositories", "last_sync_at", "DATETIME"),
]

# Natural key of each table whose unique constraint changed between releases
REBUILT_UNIQUE_KEYS = {
    "deployments": ("service_id", "environment", "region", "namespace"),
}


def _has_unique_key(inspector, table, key):
    wanted = set(key)
    for constraint in inspector.get_unique_constraints(table):
        if set(constraint["column_names"]) == wanted:
            return True
    for index in inspector.get_indexes(table):
        if index.get("unique") and set(index["column_names"]) == wanted:
            return True
    return False


def _rebuild_table(conn, table):
    """Recreate `table` from the current model, copying the rows it can keep."""
    legacy = f"{table}_legacy"
    inspector = inspect(conn)
    old_columns = [c["name"] for c in inspector.get_columns(table)]
    old_indexes = [i["name"] for i in inspector.get_indexes(table) if i.get("name")]

    conn.execute(text(f"ALTER TABLE {table} RENAME TO {legacy}"))
    for name in old_indexes:
        conn.execute(text(f"DROP INDEX IF EXISTS {name}"))
    model = Base.metadata.tables[table]
    model.create(bind=conn)

    shared = ", ".join(c.name for c in model.columns if c.name in old_columns)
    conn.execute(text(f"INSERT OR IGNORE INTO {table} ({shared}) SELECT {shared} FROM {legacy}"))
    conn.execute(text(f"DROP TABLE {legacy}"))


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(database_url):
    """
    Get or create a database engine for the given URL.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Engine instance
    """
    if database_url not in _engines:
        is_sqlite = "sqlite" in database_url
        engine = create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False} if is_sqlite else {},
        )
        if is_sqlite:
            # Cascades from repositories and projects rely on this pragma.
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        _engines[database_url] = engine
    return _engines[database_url]


def dispose_engine(database_url):
    """Close and forget the cached engine for `database_url`."""
    engine = _engines.pop(database_url, None)
    if engine is not None:
        engine.dispose()


@contextmanager
def get_sync_session(engine):
    """
    Get a database session for the given engine.

    Args:
        engine: SQLAlchemy Engine instance

    Yields:
        Session instance
    """
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def run_migrations(engine):
    """
    Bring a database created by an older release up to date.

    Missing columns are added in place. Tables whose natural key gained a
    column are rebuilt so upserts on the new key have a matching unique
    constraint. Returns the applied steps.
    """
    inspector = inspect(engine)
    existing_tables = set(inspector.get_table_names())
    applied = []
    with engine.begin() as conn:
        for table, column, ddl in ADDITIVE_COLUMNS:
            if table not in existing_tables:
                continue
            columns = {c["name"] for c in inspector.get_columns(table)}
            if column in columns:
                continue
            conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
            applied.append(f"{table}.{column}")
            logger.info(f"Added missing column {table}.{column}")

    with engine.begin() as conn:
        for table, key in REBUILT_UNIQUE_KEYS.items():
            if table not in existing_tables or _has_unique_key(inspect(conn), table, key):
                continue
            _rebuild_table(conn, table)
            applied.append(f"{table}({', '.join(key)})")
            logger.info(f"Rebuilt table {table} with unique key ({', '.join(key)})")
    return applied


def init_db(database_url):
    """Create missing tables and apply additive migrations. Returns the engine."""
    engine = get_engine(database_url)
    run_migrations(engine)
    with engine.begin() as conn:
        Base.metadata.create_all(bind=conn)
    logger.info(f"Database initialized at {database_url}")
    return engine
