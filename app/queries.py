import logging
import time
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app import config
from app.errors import QueryFailed

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


def _execute_with_timing(conn, query: str, params: Optional[dict] = None, query_name: str = "query"):
    """
    Execute a query with timing and log slow queries for performance monitoring.
    """
    start_time = time.time()
    try:
        result = conn.execute(text(query), params or {})
    except Exception as e:
        execution_time = time.time() - start_time
        logger.error(
            "QUERY ERROR after %.2fs: %s\nQuery: %s...\nError: %s",
            execution_time,
            query_name,
            " ".join(query.split())[:200],
            e,
        )
        raise

    execution_time = time.time() - start_time
    if execution_time > config.SLOW_QUERY_THRESHOLD:
        logger.warning(
            "SLOW QUERY detected: %s took %.2fs\nQuery: %s...",
            query_name,
            execution_time,
            " ".join(query.split())[:200],
        )
    return result


def fetch_all(engine: Engine, query: str, params: Optional[dict] = None, query_name: str = "query") -> List[Row]:
    """Run one autocommit read and return its rows as plain dicts."""
    try:
        with engine.connect() as conn:
            result = _execute_with_timing(conn, query, params, query_name)
            return [dict(row) for row in result.mappings().all()]
    except SQLAlchemyError as exc:
        raise QueryFailed(query_name, exc) from exc


def fetch_one(engine: Engine, query: str, params: Optional[dict] = None, query_name: str = "query") -> Optional[Row]:
    rows = fetch_all(engine, query, params, query_name)
    return rows[0] if rows else None


def first_non_empty(variants: Iterable[Callable[[], Sequence[Row]]]) -> List[Row]:
    """Try progressively more permissive query variants.

    Each variant runs only when every earlier one returned no rows. Errors
    are not caught: a failing variant fails the whole cascade. Exhausting all
    variants yields an empty list.
    """
    for level, variant in enumerate(variants):
        rows = variant()
        if rows:
            if level:
                logger.debug("Fallback level %d produced %d rows", level, len(rows))
            return list(rows)
    return []


def get_columns(engine: Engine, table: str) -> List[str]:
    rows = fetch_all(
        engine,
        """
        SELECT column_name FROM information_schema.columns
        WHERE table_name = :table
        """,
        {"table": table},
        query_name=f"columns:{table}",
    )
    return [str(r["column_name"]).lower() for r in rows]


def pick_column(columns: Iterable[str], candidates: Iterable[str]) -> Optional[str]:
    lower = set(columns)
    for c in candidates:
        if c in lower:
            return c
    return None


def to_float(value: Any) -> float:
    """POS numeric columns come back as Decimal, str or NULL."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    try:
        return float(str(value).strip() or 0)
    except ValueError:
        return 0.0


def to_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(float(str(value).strip() or 0))
    except ValueError:
        return 0
