import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine

from app import config
from app.db_core import load_register_extensions
from app.errors import InvalidBranchSelection, RegisterExtensionLookupFailed
from app.models import Branch, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionTarget:
    """Where a branch's POS database lives.

    Equality and hashing use host, port, database and user only, so two
    branch rows pointing at the same physical database share one pool.
    """

    host: str
    port: int
    database: str
    user: str
    password: str = field(default="", compare=False, repr=False)

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}:{self.database}:{self.user}"

    def url(self) -> URL:
        return URL.create(
            "postgresql+psycopg2",
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )


def _default_engine_factory(target: ConnectionTarget) -> Engine:
    statement_timeout_ms = config.BRANCH_STATEMENT_TIMEOUT * 1000
    return create_engine(
        target.url(),
        pool_size=config.BRANCH_POOL_SIZE,
        max_overflow=config.BRANCH_POOL_MAX_OVERFLOW,
        pool_recycle=config.BRANCH_POOL_RECYCLE,
        pool_pre_ping=True,
        pool_timeout=config.BRANCH_POOL_TIMEOUT,
        connect_args={
            "connect_timeout": config.BRANCH_CONNECT_TIMEOUT,
            "options": f"-c statement_timeout={statement_timeout_ms}",
            "application_name": "branch-reports",
        },
        echo=False,
    )


class EngineRegistry:
    """One pooled engine per connection target for the life of the process.

    Bounded by ``max_engines``; the least recently used engine is disposed
    when the bound is hit.
    """

    def __init__(
        self,
        engine_factory: Callable[[ConnectionTarget], Engine] = _default_engine_factory,
        max_engines: int = config.BRANCH_MAX_CACHED_ENGINES,
    ) -> None:
        self._engine_factory = engine_factory
        self._max_engines = max_engines
        self._engines: "OrderedDict[str, Engine]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, target: ConnectionTarget) -> Engine:
        key = target.key
        with self._lock:
            engine = self._engines.get(key)
            if engine is not None:
                self._engines.move_to_end(key)
                return engine

            if self._max_engines > 0 and len(self._engines) >= self._max_engines:
                oldest_key, oldest_engine = self._engines.popitem(last=False)
                logger.info("Disposing least recently used branch engine %s", oldest_key)
                oldest_engine.dispose()

            engine = self._engine_factory(target)
            self._engines[key] = engine
            logger.info("Created branch engine for %s", key)
            return engine

    def __len__(self) -> int:
        with self._lock:
            return len(self._engines)

    def __contains__(self, target: ConnectionTarget) -> bool:
        with self._lock:
            return target.key in self._engines

    def dispose(self) -> None:
        with self._lock:
            for key, engine in self._engines.items():
                try:
                    engine.dispose()
                except Exception:
                    logger.exception("Failed to dispose engine %s", key)
            self._engines.clear()


def decrypt_password(stored: str) -> str:
    """Turn the stored branch password into the one the database expects.

    Stored passwords are currently plain text, so this is the identity.
    """
    return stored


@dataclass(frozen=True)
class BranchRoute:
    engine: Engine
    primary_register: int
    registers: Tuple[int, ...]
    branch: Branch
    branch_index: int


RegisterLookup = Callable[[int], Iterable[int]]


class BranchRouter:
    """Resolves a user's branch selection to an engine and a register set."""

    def __init__(
        self,
        registry: EngineRegistry,
        register_lookup: RegisterLookup = load_register_extensions,
    ) -> None:
        self._registry = registry
        self._register_lookup = register_lookup

    def resolve(self, user: User, branch_index: Optional[int] = None) -> BranchRoute:
        index = user.selected_branch if branch_index is None else branch_index
        branch = select_branch(user, index)
        registers = self.resolve_registers(branch)
        target = ConnectionTarget(
            host=branch.db_host,
            port=branch.db_port,
            database=branch.db_name,
            user=branch.db_user,
            password=decrypt_password(branch.db_password),
        )
        return BranchRoute(
            engine=self._registry.get(target),
            primary_register=branch.kasa_no,
            registers=registers,
            branch=branch,
            branch_index=index,
        )

    def resolve_registers(self, branch: Branch) -> Tuple[int, ...]:
        primary = branch.kasa_no
        if branch.kasalar:
            return _dedupe(primary, branch.kasalar)
        if branch.id is None:
            return (primary,)
        try:
            extras = [int(k) for k in self._register_lookup(branch.id)]
        except Exception as exc:
            failure = RegisterExtensionLookupFailed(branch.id, exc)
            logger.debug("%s; using primary register only", failure)
            return (primary,)
        return _dedupe(primary, extras)


def select_branch(user: User, index: Optional[int]) -> Branch:
    if index is None or index < 0 or index >= len(user.branches):
        raise InvalidBranchSelection(index, len(user.branches))
    return user.branches[index]


def _dedupe(primary: int, extras: Iterable[int]) -> Tuple[int, ...]:
    seen = [primary]
    for k in extras:
        if k not in seen:
            seen.append(k)
    return tuple(seen)
