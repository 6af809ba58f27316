"""Bootstrap helpers that prepare the catalog database on startup."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from app import config
from app.db_core import get_core_engine


logger = logging.getLogger(__name__)

# table -> [(column, DDL type)]
_REQUIRED_COLUMNS = {
    "users": [
        ("expiry_date", "TIMESTAMP"),
        ("is_admin", "BOOLEAN DEFAULT FALSE"),
        ("allowed_reports", "TEXT[]"),
        ("selected_branch", "INTEGER DEFAULT 0"),
    ],
    "branches": [
        ("closing_hour", "INTEGER DEFAULT 6"),
    ],
}


def _has_table(conn: Connection, table: str) -> bool:
    row = conn.execute(
        text("SELECT 1 FROM information_schema.tables WHERE table_name = :table"),
        {"table": table},
    ).first()
    return row is not None


def _has_column(conn: Connection, table: str, column: str) -> bool:
    """Return True when the requested column exists on the given table."""

    row = conn.execute(
        text(
            "SELECT 1 FROM information_schema.columns "
            "WHERE table_name = :table AND column_name = :column"
        ),
        {"table": table, "column": column},
    ).first()
    return row is not None


def ensure_catalog_schema(engine: Optional[Engine] = None) -> None:
    """Add the catalog columns and tables the router reads if they are missing."""

    engine = engine or get_core_engine()
    with engine.begin() as conn:
        for table, columns in _REQUIRED_COLUMNS.items():
            if not _has_table(conn, table):
                logger.info("%s table not present; skipping column checks", table)
                continue
            for column, ddl in columns:
                if _has_column(conn, table, column):
                    continue
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
                logger.info("Added %s.%s", table, column)
                if table == "branches" and column == "closing_hour":
                    conn.execute(text("UPDATE branches SET closing_hour = 6 WHERE closing_hour IS NULL"))

        if _has_table(conn, "branches") and not _has_table(conn, "branch_kasas"):
            conn.execute(
                text(
                    """
                    CREATE TABLE branch_kasas (
                        id SERIAL PRIMARY KEY,
                        branch_id INTEGER REFERENCES branches(id) ON DELETE CASCADE,
                        kasa_no INTEGER NOT NULL
                    )
                    """
                )
            )
            logger.info("Created branch_kasas table")


def promote_admins(emails: Iterable[str], engine: Optional[Engine] = None) -> int:
    """Mark the configured admin accounts as admins. Returns rows touched."""

    emails = [e.lower() for e in emails]
    if not emails:
        return 0
    engine = engine or get_core_engine()
    touched = 0
    with engine.begin() as conn:
        for email in emails:
            result = conn.execute(
                text("UPDATE users SET is_admin = TRUE WHERE LOWER(email) = :email AND is_admin IS NOT TRUE"),
                {"email": email},
            )
            touched += result.rowcount or 0
    if touched:
        logger.info("Promoted %d admin account(s)", touched)
    return touched


def bootstrap_catalog(engine: Optional[Engine] = None) -> None:
    """Startup hook. Failures are logged; the API still serves cached and
    reachable data when the catalog is briefly unavailable."""

    try:
        ensure_catalog_schema(engine)
        promote_admins(config.ADMIN_EMAILS, engine)
    except SQLAlchemyError as exc:  # pragma: no cover - startup guard
        logger.error("Failed to bootstrap catalog database: %s", exc)
