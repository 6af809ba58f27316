from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional


REPORT_IDS = (
    "open_orders",
    "closed_orders",
    "stock_entry",
    "live_stock",
    "product_sales",
    "personnel",
    "payment_types",
    "hourly_sales",
    "cancels",
    "discounts",
    "debts",
    "courier",
    "unpayable",
    "unsold_cancels",
)


class AllowedKind(str, Enum):
    all = "all"
    none = "none"
    subset = "subset"


class AllowedReports:
    """Which report ids a user may open.

    The catalog stores this as a nullable text array where NULL means every
    report and an empty array means no report. That distinction is kept here
    as three explicit kinds instead of a nullable list.
    """

    __slots__ = ("kind", "ids")

    def __init__(self, kind: AllowedKind, ids: Iterable[str] = ()) -> None:
        ids = frozenset(ids)
        if kind is AllowedKind.subset and not ids:
            kind = AllowedKind.none
        if kind is not AllowedKind.subset:
            ids = frozenset()
        self.kind = kind
        self.ids: FrozenSet[str] = ids

    @classmethod
    def all(cls) -> "AllowedReports":
        return cls(AllowedKind.all)

    @classmethod
    def nothing(cls) -> "AllowedReports":
        return cls(AllowedKind.none)

    @classmethod
    def subset(cls, ids: Iterable[str]) -> "AllowedReports":
        return cls(AllowedKind.subset, ids)

    @classmethod
    def from_db(cls, value: Optional[Iterable[str]]) -> "AllowedReports":
        if value is None:
            return cls.all()
        ids = [str(v) for v in value]
        if len(ids) == 0:
            return cls.nothing()
        return cls.subset(ids)

    def to_db(self) -> Optional[List[str]]:
        if self.kind is AllowedKind.all:
            return None
        return sorted(self.ids)

    def permits(self, report_id: str) -> bool:
        if self.kind is AllowedKind.all:
            return True
        if self.kind is AllowedKind.none:
            return False
        return report_id in self.ids

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AllowedReports):
            return NotImplemented
        return self.kind is other.kind and self.ids == other.ids

    def __hash__(self) -> int:
        return hash((self.kind, self.ids))

    def __repr__(self) -> str:
        if self.kind is AllowedKind.subset:
            return f"AllowedReports.subset({sorted(self.ids)!r})"
        return f"AllowedReports.{self.kind.value}"


def _to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


@dataclass
class Branch:
    name: str
    db_host: str
    db_name: str
    db_user: str
    db_password: str = field(repr=False)
    db_port: int = 5432
    kasa_no: int = 1
    kasalar: Optional[List[int]] = None
    closing_hour: int = 6
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Branch":
        raw_kasalar = row.get("kasalar")
        kasalar = None
        if isinstance(raw_kasalar, (list, tuple)):
            # only genuine integers count as inline registers
            kasalar = [k for k in raw_kasalar if isinstance(k, int) and not isinstance(k, bool)]

        closing = _to_int(row.get("closing_hour"), 6)
        return cls(
            id=_to_int(row.get("id")),
            name=row.get("name") or "",
            db_host=row.get("db_host") or "",
            db_port=_to_int(row.get("db_port"), 5432) or 5432,
            db_name=row.get("db_name") or "",
            db_user=row.get("db_user") or "",
            db_password=row.get("db_password") or "",
            kasa_no=_to_int(row.get("kasa_no"), 1) or 1,
            kasalar=kasalar,
            closing_hour=min(23, max(0, closing)),
        )

    def public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kasa_no": self.kasa_no,
            "kasalar": list(self.kasalar or []),
            "closing_hour": self.closing_hour,
        }


@dataclass
class User:
    id: str
    email: str
    is_admin: bool = False
    expiry_date: Optional[datetime] = None
    allowed_reports: AllowedReports = field(default_factory=AllowedReports.all)
    branches: List[Branch] = field(default_factory=list)
    selected_branch: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any], branches: Iterable[Branch] = ()) -> "User":
        expiry = row.get("expiry_date")
        if isinstance(expiry, date) and not isinstance(expiry, datetime):
            expiry = datetime.combine(expiry, datetime.max.time())
        return cls(
            id=str(row.get("id")),
            email=row.get("email") or "",
            is_admin=bool(row.get("is_admin")),
            expiry_date=expiry,
            allowed_reports=AllowedReports.from_db(row.get("allowed_reports")),
            branches=list(branches),
            selected_branch=_to_int(row.get("selected_branch"), 0) or 0,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiry_date is None:
            return False
        now = now or datetime.now(self.expiry_date.tzinfo)
        return self.expiry_date < now

    def public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "is_admin": self.is_admin,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "allowed_reports": self.allowed_reports.to_db(),
            "selected_branch": self.selected_branch,
            "branches": [b.public_dict() for b in self.branches],
        }
