import copy
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from app import config, reports
from app.cache import CacheStore, generate_key
from app.date_range import current_date, is_single_day_period, resolve_date_range
from app.db_router import BranchRouter
from app.models import User
from app.queries import to_float, to_int

logger = logging.getLogger(__name__)

CACHE_PREFIX = "dashboard_v2"
SHORT_TTL = 120
LONG_TTL = 600
BUCKETS = ("adisyon", "paket", "hizli")

SubReport = Callable[..., Any]


def _bucket() -> Dict[str, float]:
    return {
        "acik_adet": 0,
        "acik_toplam": 0.0,
        "kapali_adet": 0,
        "kapali_toplam": 0.0,
        "kapali_iskonto": 0.0,
        "toplam_adet": 0,
        "toplam_tutar": 0.0,
        "acik_yuzde": 0,
        "kapali_yuzde": 0,
    }


def zero_summary() -> Dict[str, Any]:
    """The neutral dashboard: what an offline or empty branch looks like."""
    return {
        "acik_adisyon_toplam": 0.0,
        "acik_adisyon_adet": 0,
        "kapali_adisyon_toplam": 0.0,
        "kapali_adisyon_adet": 0,
        "kapali_iskonto_toplam": 0.0,
        "iptal_toplam": 0.0,
        "iptal_adet": 0,
        "borca_atilan_toplam": 0.0,
        "borca_atilan_adet": 0,
        "kasa_raporu": reports.empty_cash_totals(),
        "dagilim": {name: _bucket() for name in BUCKETS},
    }


def cache_key(user: User, period: str, start: Optional[str] = None, end: Optional[str] = None) -> str:
    if period != "custom":
        start = end = None
    return generate_key(
        CACHE_PREFIX,
        user.id,
        period,
        start or "none",
        end or "none",
        user.selected_branch or 0,
    )


def cache_ttl(period: str) -> int:
    return SHORT_TTL if is_single_day_period(period) else LONG_TTL


def order_bucket(row: Mapping[str, Any]) -> str:
    subtype = to_int(row.get("adtur"))
    if subtype == 1:
        return "paket"
    if subtype == 3:
        return "hizli"
    return "adisyon"


def _percent(part: float, whole: float) -> int:
    if whole <= 0 or part <= 0:
        return 0
    return int(math.floor(part / whole * 100 + 0.5))


def _round2(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def merge_summary(
    open_orders,
    closed_orders,
    performance: Optional[Mapping[str, Any]],
    debts,
    cancelled_items,
    cash_report: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """Fold the sub-report results into one dashboard summary.

    Pure and order independent. When the payment ledger (performance report)
    saw any orders, its totals replace the ones summed from closed order rows.
    """
    result = zero_summary()
    dagilim = result["dagilim"]

    for row in open_orders or []:
        amount = to_float(row.get("tutar"))
        bucket = dagilim[order_bucket(row)]
        bucket["acik_adet"] += 1
        bucket["acik_toplam"] += amount
        result["acik_adisyon_adet"] += 1
        result["acik_adisyon_toplam"] += amount

    for row in closed_orders or []:
        amount = to_float(row.get("tutar"))
        bucket = dagilim[order_bucket(row)]
        bucket["kapali_adet"] += 1
        bucket["kapali_toplam"] += amount
        result["kapali_adisyon_adet"] += 1
        result["kapali_adisyon_toplam"] += amount
        result["kapali_iskonto_toplam"] += to_float(row.get("iskonto"))

    totals = (performance or {}).get("totals") or {}
    if to_int(totals.get("orders_count")) > 0:
        result["kapali_adisyon_toplam"] = to_float(totals.get("total_sales"))
        result["kapali_adisyon_adet"] = to_int(totals.get("orders_count"))
        result["kapali_iskonto_toplam"] = to_float(totals.get("total_discount"))

    total_open = result["acik_adisyon_toplam"]
    total_closed = result["kapali_adisyon_toplam"]
    total_discount = result["kapali_iskonto_toplam"]

    for bucket in dagilim.values():
        bucket["toplam_adet"] = bucket["acik_adet"] + bucket["kapali_adet"]
        bucket["toplam_tutar"] = bucket["acik_toplam"] + bucket["kapali_toplam"]
        if total_closed > 0 and total_discount > 0 and bucket["kapali_toplam"] > 0:
            bucket["kapali_iskonto"] = _round2(total_discount * bucket["kapali_toplam"] / total_closed)
        bucket["acik_yuzde"] = _percent(bucket["acik_toplam"], total_open)
        bucket["kapali_yuzde"] = _percent(bucket["kapali_toplam"], total_closed)

    for row in debts or []:
        amount = to_float(row.get("borc"))
        if amount > 0:
            result["borca_atilan_toplam"] += amount
            result["borca_atilan_adet"] += 1

    for row in cancelled_items or []:
        if row.get("type") == "iptal":
            result["iptal_toplam"] += to_float(row.get("tutar"))
            result["iptal_adet"] += 1

    cash_totals = (cash_report or {}).get("totals") or {}
    for key in result["kasa_raporu"]:
        result["kasa_raporu"][key] = to_float(cash_totals.get(key))

    return result


def default_sources() -> Dict[str, SubReport]:
    return {
        "open_orders": lambda route, dr, period: reports.get_orders(route, dr, "open", period),
        "closed_orders": lambda route, dr, period: reports.get_orders(route, dr, "closed", period),
        "performance": reports.get_performance,
        "debts": reports.get_debts,
        "cancelled_items": reports.get_cancelled_items,
        "cash_report": reports.get_cash_report,
    }


NEUTRAL_VALUES: Dict[str, Any] = {
    "open_orders": [],
    "closed_orders": [],
    "performance": None,
    "debts": [],
    "cancelled_items": [],
    "cash_report": None,
}


class Dashboard:
    """Cached, fanned-out dashboard summary for a user's selected branch."""

    def __init__(
        self,
        router: BranchRouter,
        cache: CacheStore,
        executor: Optional[ThreadPoolExecutor] = None,
        sources: Optional[Dict[str, SubReport]] = None,
        today: Callable = current_date,
    ) -> None:
        self.router = router
        self.cache = cache
        self._own_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=config.DASHBOARD_WORKERS, thread_name_prefix="dashboard"
        )
        self.sources = sources or default_sources()
        self._today = today

    def get(self, user: User, period: str = "today", start: Optional[str] = None, end: Optional[str] = None) -> Dict[str, Any]:
        key = cache_key(user, period, start, end)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            route = self.router.resolve(user)
            dr = resolve_date_range(period, start, end, today=self._today())
        except Exception as exc:
            logger.warning("Dashboard for user %s could not be routed: %s", user.id, exc)
            return zero_summary()

        futures = {
            name: self.executor.submit(source, route, dr, period)
            for name, source in self.sources.items()
        }
        results = {}
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except Exception as exc:
                logger.warning("Dashboard sub-report %s failed for branch %s: %s", name, route.branch.name, exc)
                results[name] = copy.deepcopy(NEUTRAL_VALUES.get(name))

        try:
            summary = merge_summary(
                results.get("open_orders"),
                results.get("closed_orders"),
                results.get("performance"),
                results.get("debts"),
                results.get("cancelled_items"),
                results.get("cash_report"),
            )
        except Exception:
            logger.exception("Dashboard merge failed for user %s", user.id)
            summary = zero_summary()

        self.cache.set(key, summary, cache_ttl(period))
        return summary

    def close(self) -> None:
        if self._own_executor:
            self.executor.shutdown(wait=False)
