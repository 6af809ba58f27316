import asyncio
import json
import logging
from contextlib import contextmanager
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from app import config, reports
from app.auth import get_current_user, require_admin, require_report
from app.cache import CacheStore
from app.dashboard import Dashboard, zero_summary
from app.date_range import DateRange, resolve_date_range
from app.db_router import BranchRoute, BranchRouter
from app.errors import InvalidBranchSelection, QueryFailed
from app.models import User

logger = logging.getLogger(__name__)

router = APIRouter()

PERIOD_DESCRIPTION = "today, yesterday, week, last7days, month, lastmonth or custom"


def get_branch_router(request: Request) -> BranchRouter:
    return request.app.state.branch_router


def get_dashboard(request: Request) -> Dashboard:
    return request.app.state.dashboard


def get_cache(request: Request) -> CacheStore:
    return request.app.state.cache


def _route(branch_router: BranchRouter, user: User) -> BranchRoute:
    try:
        return branch_router.resolve(user)
    except InvalidBranchSelection as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _date_range(period: str, start_date: Optional[str], end_date: Optional[str]) -> DateRange:
    try:
        return resolve_date_range(period, start_date, end_date)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@contextmanager
def _report_errors(name: str):
    """Single-report endpoints surface failures; the dashboard never does."""
    try:
        yield
    except QueryFailed as exc:
        logger.error("Report %s failed: %s", name, exc)
        raise HTTPException(status_code=502, detail=f"Failed to load {name} report")
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

@router.get("/dashboard")
def get_dashboard_summary(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None, description="Start date (YYYY-MM-DD), custom only"),
    end_date: Optional[str] = Query(default=None, description="End date (YYYY-MM-DD), custom only"),
    user: User = Depends(get_current_user),
    dashboard: Dashboard = Depends(get_dashboard),
):
    """Summary cards for the selected branch. Always answers 200."""
    try:
        return dashboard.get(user, period, start_date, end_date)
    except Exception:
        logger.exception("Dashboard failed for user %s", user.id)
        return zero_summary()


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


async def dashboard_events(
    dashboard: Dashboard,
    user: User,
    period: str,
    start_date: Optional[str],
    end_date: Optional[str],
    is_disconnected: Callable[[], Awaitable[bool]],
    interval: float = config.DASHBOARD_STREAM_INTERVAL,
):
    """Yield a ``dashboard`` event now and then every ``interval`` seconds
    until the client goes away."""
    while not await is_disconnected():
        try:
            summary = await run_in_threadpool(dashboard.get, user, period, start_date, end_date)
        except Exception:
            logger.exception("Dashboard stream refresh failed for user %s", user.id)
            summary = zero_summary()
        yield _sse("dashboard", summary)
        await asyncio.sleep(interval)


@router.get("/stream/dashboard")
async def stream_dashboard(
    request: Request,
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user),
    dashboard: Dashboard = Depends(get_dashboard),
):
    return StreamingResponse(
        dashboard_events(dashboard, user, period, start_date, end_date, request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

def _orders(branch_router, user, status, period, start_date, end_date, order_type):
    route = _route(branch_router, user)
    dr = _date_range(period, start_date, end_date)
    with _report_errors(f"{status} orders"):
        return reports.get_orders(route, dr, status, period, order_type)


@router.get("/reports/orders")
def get_orders(
    status: str = Query(..., description="open or closed"),
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None, description="adisyon or paket"),
    user: User = Depends(get_current_user),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    if status not in reports.ORDER_STATUSES:
        raise HTTPException(status_code=422, detail="status must be 'open' or 'closed'")
    report_id = "open_orders" if status == "open" else "closed_orders"
    if not user.is_admin and not user.allowed_reports.permits(report_id):
        raise HTTPException(status_code=403, detail=f"Report '{report_id}' is not allowed for this user")
    return _orders(branch_router, user, status, period, start_date, end_date, type)


@router.get("/reports/open-orders")
def get_open_orders(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None, description="adisyon or paket"),
    user: User = Depends(require_report("open_orders")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _orders(branch_router, user, "open", period, start_date, end_date, type)


@router.get("/reports/closed-orders")
def get_closed_orders(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None, description="adisyon or paket"),
    user: User = Depends(require_report("closed_orders")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _orders(branch_router, user, "closed", period, start_date, end_date, type)


def _order_detail(branch_router, user, adsno, status, adtur):
    if status not in reports.ORDER_STATUSES:
        raise HTTPException(status_code=422, detail="status must be 'open' or 'closed'")
    route = _route(branch_router, user)
    with _report_errors("order detail"):
        return reports.get_order_details(route, adsno, status, adtur)


@router.get("/reports/order-details")
def get_order_details(
    adsno: int = Query(..., description="Order number"),
    status: str = Query(..., description="open or closed"),
    adtur: Optional[int] = Query(default=None, description="Order subtype; inferred when omitted"),
    user: User = Depends(get_current_user),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _order_detail(branch_router, user, adsno, status, adtur)


@router.get("/reports/order-detail/{adsno}")
def get_order_detail(
    adsno: int,
    order_type: str = Query(default="closed", description="open or closed"),
    adtur: Optional[int] = Query(default=None),
    user: User = Depends(get_current_user),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _order_detail(branch_router, user, adsno, order_type, adtur)


@router.get("/reports/order-debug")
def get_order_debug(
    adsno: int = Query(...),
    user: User = Depends(require_admin),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    route = _route(branch_router, user)
    with _report_errors("order debug"):
        return reports.debug_order_check(route, adsno)


@router.get("/reports/customer")
def get_customer(
    id: int = Query(..., description="Customer id (mustid)"),
    user: User = Depends(get_current_user),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    route = _route(branch_router, user)
    with _report_errors("customer"):
        customer = reports.get_customer(route, id)
    if customer is None:
        raise HTTPException(status_code=404, detail=f"Customer {id} not found")
    return customer


# ---------------------------------------------------------------------------
# Dated reports
# ---------------------------------------------------------------------------

def _dated_report(name, fn, branch_router, user, period, start_date, end_date, **kwargs):
    route = _route(branch_router, user)
    dr = _date_range(period, start_date, end_date)
    with _report_errors(name):
        return fn(route, dr, period, **kwargs)


@router.get("/reports/performance")
def get_performance(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report("performance", reports.get_performance, branch_router, user, period, start_date, end_date)


@router.get("/reports/payment-types")
def get_payment_types(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(require_report("payment_types")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report("payment types", reports.get_payment_types, branch_router, user, period, start_date, end_date)


@router.get("/reports/sales-chart")
def get_sales_chart(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(require_report("hourly_sales")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report("sales chart", reports.get_sales_chart, branch_router, user, period, start_date, end_date)


@router.get("/reports/cancelled-items")
def get_cancelled_items(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(require_report("cancels")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report("cancelled items", reports.get_cancelled_items, branch_router, user, period, start_date, end_date)


@router.get("/reports/unsold-cancels")
def get_unsold_cancels(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(require_report("unsold_cancels")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report("unsold cancels", reports.get_unsold_cancels, branch_router, user, period, start_date, end_date)


@router.get("/reports/debts")
def get_debts(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(require_report("debts")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report("debts", reports.get_debts, branch_router, user, period, start_date, end_date)


@router.get("/reports/unpayable")
def get_unpayable(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(require_report("unpayable")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report("unpayable", reports.get_unpayable, branch_router, user, period, start_date, end_date)


@router.get("/reports/discount")
def get_discount(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(require_report("discounts")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report("discount", reports.get_discount_orders, branch_router, user, period, start_date, end_date)


@router.get("/reports/courier-tracking")
def get_courier_tracking(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(require_report("courier")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report("courier tracking", reports.get_courier_tracking, branch_router, user, period, start_date, end_date)


def _parse_group_ids(group_ids: Optional[str]):
    if not group_ids:
        return None
    try:
        return [int(part) for part in group_ids.split(",") if part.strip()]
    except ValueError:
        raise HTTPException(status_code=422, detail="group_ids must be a comma separated list of integers")


@router.get("/reports/product-sales")
def get_product_sales(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    group_id: Optional[int] = Query(default=None),
    group_ids: Optional[str] = Query(default=None, description="Comma separated group ids"),
    plu: Optional[int] = Query(default=None),
    user: User = Depends(require_report("product_sales")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report(
        "product sales",
        reports.get_product_sales,
        branch_router,
        user,
        period,
        start_date,
        end_date,
        group_id=group_id,
        group_ids=_parse_group_ids(group_ids),
        plu=plu,
    )


@router.get("/reports/product-groups")
def get_product_groups(
    user: User = Depends(require_report("product_sales")),
    branch_router: BranchRouter = Depends(get_branch_router),
    cache: CacheStore = Depends(get_cache),
):
    route = _route(branch_router, user)
    with _report_errors("product groups"):
        return reports.get_product_groups(route, cache)


@router.get("/reports/personnel")
def get_personnel(
    user: User = Depends(require_report("personnel")),
    branch_router: BranchRouter = Depends(get_branch_router),
    cache: CacheStore = Depends(get_cache),
):
    route = _route(branch_router, user)
    with _report_errors("personnel"):
        return reports.get_personnel(route, cache)


@router.get("/reports/personnel-report")
def get_personnel_report(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(require_report("personnel")),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report("personnel", reports.get_personnel_report, branch_router, user, period, start_date, end_date)


@router.get("/reports/cash-report")
def get_cash_report(
    period: str = Query(default="today", description=PERIOD_DESCRIPTION),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user),
    branch_router: BranchRouter = Depends(get_branch_router),
):
    return _dated_report(
        "cash report",
        reports.get_cash_report,
        branch_router,
        user,
        period,
        start_date,
        end_date,
        custom_bounds=bool(start_date and end_date),
    )
