from datetime import date, datetime
from typing import Callable, List, Optional

import pytest
from sqlalchemy.exc import OperationalError

from app.date_range import resolve_date_range
from app.db_router import BranchRoute
from app.models import AllowedReports, Branch, User


class FakeResult:
    def __init__(self, rows: List[dict]) -> None:
        self._rows = rows
        self.rowcount = len(rows)

    def mappings(self) -> "FakeResult":
        return self

    def all(self) -> List[dict]:
        return list(self._rows)

    def first(self) -> Optional[dict]:
        return self._rows[0] if self._rows else None


class FakeConnection:
    def __init__(self, engine: "FakeEngine") -> None:
        self._engine = engine

    def __enter__(self) -> "FakeConnection":
        return self

    def __exit__(self, *exc) -> None:
        return None

    def execute(self, clause, params=None) -> FakeResult:
        sql = " ".join(str(clause).split())
        params = dict(params or {})
        self._engine.calls.append((sql, params))
        rows = self._engine.handler(sql, params)
        if isinstance(rows, Exception):
            raise rows
        return FakeResult([dict(r) for r in rows])


class FakeEngine:
    """Records every statement and answers from ``handler(sql, params)``.

    The handler returns a list of row dicts, or an exception instance to
    raise from ``execute``.
    """

    def __init__(self, handler: Optional[Callable] = None, name: str = "fake") -> None:
        self.handler = handler or (lambda sql, params: [])
        self.calls = []
        self.name = name
        self.disposed = False

    def connect(self) -> FakeConnection:
        return FakeConnection(self)

    def begin(self) -> FakeConnection:
        return FakeConnection(self)

    def dispose(self) -> None:
        self.disposed = True

    def statements(self, fragment: str) -> List[str]:
        return [sql for sql, _ in self.calls if fragment in sql]


def db_down(message: str = "connection refused") -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception(message))


def make_branch(**overrides) -> Branch:
    values = dict(
        id=1,
        name="Merkez",
        db_host="10.0.0.5",
        db_port=5432,
        db_name="pos_merkez",
        db_user="rapor",
        db_password="secret",
        kasa_no=1,
        kasalar=None,
    )
    values.update(overrides)
    return Branch(**values)


def make_user(**overrides) -> User:
    values = dict(
        id="user-1",
        email="owner@example.com",
        is_admin=False,
        expiry_date=None,
        allowed_reports=AllowedReports.all(),
        branches=[make_branch()],
        selected_branch=0,
    )
    values.update(overrides)
    return User(**values)


def make_route(engine: FakeEngine, registers=(1,), branch: Optional[Branch] = None, index: int = 0) -> BranchRoute:
    branch = branch or make_branch(kasa_no=registers[0])
    return BranchRoute(
        engine=engine,
        primary_register=registers[0],
        registers=tuple(registers),
        branch=branch,
        branch_index=index,
    )


@pytest.fixture
def today() -> date:
    return date(2024, 5, 15)


@pytest.fixture
def today_range(today):
    return resolve_date_range("today", today=today)


@pytest.fixture
def user() -> User:
    return make_user()


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 5, 15, 12, 0, 0)
