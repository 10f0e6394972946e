"""Database initialization and connection management.

Runs the schema migration on first boot, provides connection factory.
"""

import pathlib
import sqlite3


_MIGRATION_DIR = pathlib.Path(__file__).resolve().parent / "migrations"


def init_db(db_path: str) -> None:
    """Initialize the database by running the schema migration.

    Creates the parent directory of *db_path* if needed.  Safe to call on
    an existing database.

    Args:
        db_path: Path to the SQLite database file.
    """
    if db_path != ":memory:":
        pathlib.Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='backtest_runs'"
        )
        if cur.fetchone() is None:
            migration_file = _MIGRATION_DIR / "001_initial_schema.sql"
            conn.executescript(migration_file.read_text(encoding="utf-8"))
    finally:
        conn.close()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new SQLite connection with row-factory enabled.

    Callers are responsible for closing the connection.
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn
