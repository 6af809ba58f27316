import logging
import threading
from typing import List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine

from app import config
from app.models import Branch, User

logger = logging.getLogger(__name__)

_core_engine: Optional[Engine] = None
_core_lock = threading.Lock()


def get_core_engine() -> Engine:
    """Engine for the catalog database that holds users and their branches."""
    global _core_engine
    with _core_lock:
        if _core_engine is None:
            url = URL.create(
                "postgresql+psycopg2",
                username=config.CORE_DB_USER,
                password=config.CORE_DB_PASSWORD,
                host=config.CORE_DB_HOST,
                port=config.CORE_DB_PORT,
                database=config.CORE_DB_NAME,
            )
            _core_engine = create_engine(
                url,
                pool_size=10,
                max_overflow=10,
                pool_pre_ping=True,
                pool_recycle=1800,
                connect_args={"connect_timeout": 5},
            )
        return _core_engine


def dispose_core_engine() -> None:
    global _core_engine
    with _core_lock:
        if _core_engine is not None:
            _core_engine.dispose()
            _core_engine = None


_BRANCHES_SQL = """
    SELECT
        b.*,
        COALESCE(array_agg(k.kasa_no) FILTER (WHERE k.kasa_no IS NOT NULL), '{}') AS kasalar
    FROM branches b
    LEFT JOIN branch_kasas k ON k.branch_id = b.id
    WHERE b.user_id = :user_id
    GROUP BY b.id
    ORDER BY b.id
"""


def load_user(email: str, engine: Optional[Engine] = None) -> Optional[User]:
    """Fetch a user by email together with its ordered branch list."""
    engine = engine or get_core_engine()
    clean_email = email.strip().lower()
    with engine.connect() as conn:
        row = conn.execute(
            text("SELECT * FROM users WHERE LOWER(email) = :email LIMIT 1"),
            {"email": clean_email},
        ).mappings().first()
        if row is None:
            return None
        branch_rows = conn.execute(text(_BRANCHES_SQL), {"user_id": row["id"]}).mappings().all()
    return User.from_row(row, [Branch.from_row(b) for b in branch_rows])


def load_register_extensions(branch_id: int, engine: Optional[Engine] = None) -> List[int]:
    """Extra register numbers filed for a branch in ``branch_kasas``."""
    engine = engine or get_core_engine()
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT kasa_no FROM branch_kasas WHERE branch_id = :branch_id"),
            {"branch_id": branch_id},
        ).mappings().all()
    registers = []
    for row in rows:
        try:
            registers.append(int(row["kasa_no"]))
        except (TypeError, ValueError):
            continue
    return registers


def update_selected_branch(user_id: str, branch_index: int, engine: Optional[Engine] = None) -> None:
    engine = engine or get_core_engine()
    with engine.begin() as conn:
        conn.execute(
            text("UPDATE users SET selected_branch = :idx WHERE id = :user_id"),
            {"idx": branch_index, "user_id": user_id},
        )
    logger.info("User %s selected branch index %d", user_id, branch_index)
