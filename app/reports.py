"""
Report queries against a branch POS database.

Every function receives the resolved ``BranchRoute`` and scopes its rows to
the route's register set (``kasa = ANY(:kasa_nos)``). POS tables of interest:

* ``ads_acik``    open order lines
* ``ads_adisyon`` closed order lines
* ``ads_odeme``   payment ledger (one row per payment, ``raptar`` = report date)
* ``ads_hareket`` account movements (debts)
* ``ads_iptal``   items cancelled before being sold
* ``kasa_raporu`` register cash report, schema varies between deployments
"""

import logging
from datetime import date, datetime, time as time_type
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.cache import CacheStore, generate_key
from app.date_range import DateRange, is_single_day_period
from app.db_router import BranchRoute
from app.errors import QueryFailed
from app.queries import (
    Row,
    fetch_all,
    fetch_one,
    first_non_empty,
    get_columns,
    pick_column,
    to_float,
    to_int,
)

logger = logging.getLogger(__name__)

# masano used by the POS for delivery (paket) orders
PACKAGE_TABLE_NO = 99999
FALLBACK_ROW_LIMIT = 200
COURIER_FALLBACK_LIMIT = 100
DEFAULT_ORDER_SUBTYPE = 0

ORDER_STATUSES = ("open", "closed")
ORDER_TYPES = ("adisyon", "paket")

CANCEL_TYPES = {1: "ikram", 2: "iade", 4: "iptal"}
UNPAYABLE_MARKERS = ["%ODENMEZ%", "%ÖDENMEZ%", "%ODENEMEZ%"]
REGISTER_COLUMNS = ["kasa", "kasano", "kasa_no"]

PRODUCT_GROUPS_TTL = 3600
PERSONNEL_TTL = 1800


def _normalize(rows: Iterable[Row], floats: Sequence[str] = (), ints: Sequence[str] = ()) -> List[Row]:
    out = []
    for row in rows:
        row = dict(row)
        for key in floats:
            if key in row:
                row[key] = to_float(row[key])
        for key in ints:
            if key in row:
                row[key] = to_int(row[key])
        out.append(row)
    return out


def _scope(route: BranchRoute) -> Dict[str, Any]:
    return {"kasa_nos": list(route.registers)}


def _dated_scope(route: BranchRoute, dr: DateRange, period: Optional[str] = None) -> Dict[str, Any]:
    end = dr.start_date if is_single_day_period(period) else dr.end_date
    return {"kasa_nos": list(route.registers), "start": dr.start_date, "end": end}


def _type_condition(order_type: Optional[str], alias: str = "a") -> str:
    if order_type == "paket":
        return f"AND {alias}.masano = {PACKAGE_TABLE_NO}"
    if order_type == "adisyon":
        return f"AND {alias}.masano != {PACKAGE_TABLE_NO}"
    return ""


def _sort_desc(rows: List[Row], key: str) -> List[Row]:
    def sort_key(row: Row):
        value = row.get(key)
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime.combine(value, time_type.min)
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                return datetime.min
        return datetime.min

    return sorted(rows, key=sort_key, reverse=True)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

_OPEN_ORDERS_SQL = """
    SELECT
        a.adsno,
        SUM(COALESCE(a.tutar, 0)) AS tutar,
        SUM(COALESCE(a.iskonto, 0)) AS iskonto,
        MAX(COALESCE(a.masano, 0)) AS masano,
        MAX(COALESCE(a.masano, 0)) AS masa_no,
        MAX(a.acsaat) AS acilis_saati,
        MAX(a.actar) AS tarih,
        MAX(COALESCE(a.adtur, 0)) AS adtur,
        MAX(a.kasa) AS kasano,
        MAX(a.mustid) AS mustid,
        MAX(CONCAT(COALESCE(m.adi, ''), ' ', COALESCE(m.soyadi, ''))) AS customer_name
    FROM ads_acik a
    LEFT JOIN ads_musteri m ON a.mustid = m.mustid
    WHERE {register_filter} {type_filter} {date_filter}
    GROUP BY a.adsno
    ORDER BY a.adsno DESC
    {limit}
"""


def _open_orders_query(register_filter: str, type_filter: str, dated: bool, limit: Optional[int]) -> str:
    return _OPEN_ORDERS_SQL.format(
        register_filter=register_filter,
        type_filter=type_filter,
        date_filter="AND DATE(a.actar) BETWEEN :start AND :end" if dated else "",
        limit=f"LIMIT {limit}" if limit else "",
    )


def get_open_orders(route: BranchRoute, dr: DateRange, period: Optional[str] = None, order_type: Optional[str] = None) -> List[Row]:
    """Open orders with the three level fallback.

    1. register set and date bounds
    2. register set only, newest rows
    3. primary register only, newest rows
    """
    type_filter = _type_condition(order_type)
    dated_params = _dated_scope(route, dr, period)

    def exact():
        return fetch_all(
            route.engine,
            _open_orders_query("a.kasa = ANY(:kasa_nos)", type_filter, True, None),
            dated_params,
            query_name="open_orders",
        )

    def undated():
        return fetch_all(
            route.engine,
            _open_orders_query("a.kasa = ANY(:kasa_nos)", type_filter, False, FALLBACK_ROW_LIMIT),
            _scope(route),
            query_name="open_orders_undated",
        )

    def primary_only():
        return fetch_all(
            route.engine,
            _open_orders_query("a.kasa = :kasa_no", type_filter, False, FALLBACK_ROW_LIMIT),
            {"kasa_no": route.primary_register},
            query_name="open_orders_primary",
        )

    rows = first_non_empty([exact, undated, primary_only])
    return _normalize(rows, floats=("tutar", "iskonto"), ints=("masano", "masa_no", "adtur"))


_CLOSED_ORDERS_SQL = """
    WITH adisyon_agg AS (
        SELECT
            a.adsno,
            COALESCE(a.adtur, 0) AS adtur,
            MAX(COALESCE(a.masano, 0)) AS masano,
            CAST(MAX(COALESCE(a.sipyer, 0)) AS INTEGER) AS sipyer,
            MAX(a.kaptar) AS kaptar,
            MAX(a.kapsaat) AS kapanis_saati,
            MAX(a.acsaat) AS acilis_saati,
            MAX(a.garsonno) AS garsonno,
            MAX(a.mustid) AS mustid,
            COALESCE(SUM(a.tutar), 0) AS toplam_tutar_adisyon
        FROM ads_adisyon a
        WHERE a.kasa = ANY(:kasa_nos) {type_filter}
        GROUP BY a.adsno, COALESCE(a.adtur, 0)
    ),
    payment_agg AS (
        SELECT
            o.adsno,
            COALESCE(o.adtur, 0) AS adtur,
            MAX(o.raptar) AS raptar,
            COALESCE(SUM(o.otutar), 0) AS toplam_tutar,
            COALESCE(SUM(o.iskonto), 0) AS toplam_iskonto,
            MAX(o.mustid) AS payment_mustid
        FROM ads_odeme o
        WHERE o.kasa = ANY(:kasa_nos)
        GROUP BY o.adsno, COALESCE(o.adtur, 0)
    )
    SELECT
        a.adsno,
        a.toplam_tutar_adisyon AS tutar,
        a.masano,
        a.masano AS masa_no,
        a.adtur,
        a.sipyer,
        COALESCE(p.raptar, a.kaptar) AS tarih,
        a.kapanis_saati,
        a.acilis_saati,
        per.adi AS garson_adi,
        COALESCE(p.payment_mustid, a.mustid) AS mustid,
        COALESCE(p.toplam_iskonto, 0) AS iskonto,
        CONCAT(COALESCE(m.adi, ''), ' ', COALESCE(m.soyadi, '')) AS customer_name
    FROM adisyon_agg a
    LEFT JOIN payment_agg p ON p.adsno = a.adsno AND p.adtur = a.adtur
    LEFT JOIN personel per ON a.garsonno = per.id
    LEFT JOIN ads_musteri m ON COALESCE(p.payment_mustid, a.mustid) = m.mustid
    WHERE DATE(p.raptar) BETWEEN :start AND :end
    ORDER BY a.adsno DESC
"""


def get_closed_orders(route: BranchRoute, dr: DateRange, period: Optional[str] = None, order_type: Optional[str] = None) -> List[Row]:
    rows = fetch_all(
        route.engine,
        _CLOSED_ORDERS_SQL.format(type_filter=_type_condition(order_type)),
        _dated_scope(route, dr, period),
        query_name="closed_orders",
    )
    return _normalize(rows, floats=("tutar", "iskonto"), ints=("masano", "masa_no", "adtur", "sipyer"))


def get_orders(
    route: BranchRoute,
    dr: DateRange,
    status: str,
    period: Optional[str] = None,
    order_type: Optional[str] = None,
) -> List[Row]:
    if status not in ORDER_STATUSES:
        raise ValueError(f"status must be one of {ORDER_STATUSES}, got {status!r}")
    if order_type is not None and order_type not in ORDER_TYPES:
        raise ValueError(f"type must be one of {ORDER_TYPES}, got {order_type!r}")
    if status == "open":
        return get_open_orders(route, dr, period, order_type)
    return get_closed_orders(route, dr, period, order_type)


# ---------------------------------------------------------------------------
# Order detail
# ---------------------------------------------------------------------------

# Subtype as the POS means it: a stored adtur wins, otherwise the delivery
# table sentinel and, for open orders, the package channel decide. Detail
# queries filter on the same expression so an inferred subtype is found.
_SUBTYPE_EXPR = {
    "closed": "COALESCE({a}adtur, CASE WHEN {a}masano = 99999 THEN 1 ELSE 0 END)",
    "open": "COALESCE({a}adtur, CASE WHEN {a}sipyer = 2 OR {a}masano = 99999 THEN 1 ELSE 0 END)",
}


def _subtype(status: str, alias: str = "") -> str:
    return _SUBTYPE_EXPR[status].format(a=alias)


_INFER_SUBTYPE_SQL = {
    "closed": f"""
        SELECT {_subtype("closed")} AS adtur
        FROM ads_adisyon
        WHERE kasa = ANY(:kasa_nos) AND adsno = :adsno
        ORDER BY kaptar DESC, kapsaat DESC
        LIMIT 1
    """,
    "open": f"""
        SELECT {_subtype("open")} AS adtur
        FROM ads_acik
        WHERE kasa = ANY(:kasa_nos) AND adsno = :adsno
        ORDER BY actar DESC, acsaat DESC
        LIMIT 1
    """,
}


def infer_order_subtype(route: BranchRoute, adsno: int, status: str) -> int:
    """Work out ``adtur`` for an order when the caller did not pass it.

    The POS does not always store it; the delivery table sentinel and the
    order channel (``sipyer`` 2 = package) stand in. Falls back to
    ``DEFAULT_ORDER_SUBTYPE`` (dine-in) when nothing can be inferred.
    """
    try:
        row = fetch_one(
            route.engine,
            _INFER_SUBTYPE_SQL[status],
            {**_scope(route), "adsno": adsno},
            query_name=f"infer_adtur_{status}",
        )
    except QueryFailed as exc:
        logger.warning("Could not infer order subtype for %s: %s", adsno, exc)
        return DEFAULT_ORDER_SUBTYPE
    if row is None or row.get("adtur") is None:
        return DEFAULT_ORDER_SUBTYPE
    return to_int(row["adtur"])


_ITEMS_JSON = """
    json_agg(
        json_build_object(
            'product_name', COALESCE(pr.product_name, CAST(a.pluid AS VARCHAR)),
            'urun_adi', COALESCE(pr.product_name, CAST(a.pluid AS VARCHAR)),
            'quantity', COALESCE(a.miktar, 1),
            'miktar', COALESCE(a.miktar, 1),
            'price', COALESCE(a.bfiyat, 0),
            'birim_fiyat', COALESCE(a.bfiyat, 0),
            'total', COALESCE(a.tutar, 0),
            'toplam', COALESCE(a.tutar, 0),
            'ack1', a.ack1,
            'ack2', a.ack2,
            'ack3', a.ack3,
            'sturu', COALESCE(a.sturu, 0),
            'pluid', a.pluid
        )
        ORDER BY {order_by}
    )
"""

_SIPYER_NAME = """
    CASE
      WHEN oi.sipyer = 1 THEN 'Hızlı Satış'
      WHEN oi.sipyer = 2 THEN 'Paket'
      WHEN oi.sipyer = 3 THEN 'Adisyon'
      ELSE 'Diğer'
    END
"""

_OPEN_DETAIL_SQL = f"""
    WITH order_info AS (
        SELECT
            adsno,
            MAX({_subtype("open")}) AS adtur,
            MAX(COALESCE(masano, 0)) AS masano,
            MAX(CAST(COALESCE(sipyer, 0) AS INTEGER)) AS sipyer,
            MAX(garsonno) AS garsonno,
            MAX(mustid) AS mustid,
            MAX(actar) AS tarih,
            MAX(acsaat) AS acilis_saati,
            COALESCE(SUM(iskonto), 0) AS toplam_iskonto,
            COALESCE(SUM(tutar), 0) AS toplam_tutar
        FROM ads_acik
        WHERE kasa = ANY(:kasa_nos) AND adsno = :adsno AND {_subtype("open")} = :adtur
        GROUP BY adsno
    ),
    order_items AS (
        SELECT
            a.adsno,
            {_ITEMS_JSON.format(order_by="a.actar, a.acsaat")} AS items
        FROM ads_acik a
        LEFT JOIN product pr ON a.pluid = pr.plu
        WHERE a.kasa = ANY(:kasa_nos) AND a.adsno = :adsno AND {_subtype("open", "a.")} = :adtur
          AND a.pluid IS NOT NULL
        GROUP BY a.adsno
    )
    SELECT
        oi.adsno,
        oi.adtur,
        oi.masano,
        oi.masano AS masa_no,
        oi.sipyer,
        {_SIPYER_NAME} AS sipyer_name,
        p.adi AS garson,
        m.adi AS customer_name,
        oi.mustid,
        oi.tarih,
        oi.acilis_saati,
        NULL AS kapanis_saati,
        oi.toplam_iskonto,
        oi.toplam_tutar,
        od.odmname AS payment_name,
        COALESCE(items.items, '[]'::json) AS items
    FROM order_info oi
    LEFT JOIN personel p ON oi.garsonno = p.id
    LEFT JOIN ads_musteri m ON oi.mustid = m.mustid
    LEFT JOIN ads_odeme o ON o.adsno = oi.adsno AND o.kasa = ANY(:kasa_nos) AND COALESCE(o.adtur, :adtur) = :adtur
    LEFT JOIN ads_odmsekli od ON o.otip = od.odmno
    LEFT JOIN order_items items ON items.adsno = oi.adsno
    LIMIT 1
"""

_CLOSED_DETAIL_SQL = f"""
    WITH order_info AS (
        SELECT
            adsno,
            MAX({_subtype("closed")}) AS adtur,
            MAX(COALESCE(masano, 0)) AS masano,
            MAX(CAST(COALESCE(sipyer, 0) AS INTEGER)) AS sipyer,
            MAX(garsonno) AS garsonno,
            MAX(mustid) AS mustid,
            MAX(acsaat) AS acilis_saati,
            MAX(kapsaat) AS kapanis_saati
        FROM ads_adisyon
        WHERE kasa = ANY(:kasa_nos) AND adsno = :adsno AND {_subtype("closed")} = :adtur
        GROUP BY adsno
    ),
    order_items AS (
        SELECT
            a.adsno,
            {_ITEMS_JSON.format(order_by="a.kaptar, a.kapsaat")} AS items
        FROM ads_adisyon a
        LEFT JOIN product pr ON a.pluid = pr.plu
        WHERE a.kasa = ANY(:kasa_nos) AND a.adsno = :adsno AND {_subtype("closed", "a.")} = :adtur
          AND a.pluid IS NOT NULL
        GROUP BY a.adsno
    ),
    payment_info AS (
        SELECT
            adsno,
            MAX(raptar) AS tarih,
            COALESCE(SUM(iskonto), 0) AS toplam_iskonto,
            COALESCE(SUM(otutar), 0) AS toplam_tutar,
            MAX(mustid) AS payment_mustid
        FROM ads_odeme
        WHERE kasa = ANY(:kasa_nos) AND adsno = :adsno AND COALESCE(adtur, :adtur) = :adtur
        GROUP BY adsno
    )
    SELECT
        oi.adsno,
        oi.adtur,
        oi.masano,
        oi.masano AS masa_no,
        oi.sipyer,
        {_SIPYER_NAME} AS sipyer_name,
        p.adi AS garson,
        m.adi AS customer_name,
        COALESCE(oi.mustid, pi.payment_mustid) AS mustid,
        COALESCE(pi.tarih, CURRENT_DATE) AS tarih,
        oi.acilis_saati,
        oi.kapanis_saati,
        COALESCE(pi.toplam_iskonto, 0) AS toplam_iskonto,
        COALESCE(pi.toplam_tutar, 0) AS toplam_tutar,
        od.odmname AS payment_name,
        COALESCE(items.items, '[]'::json) AS items
    FROM order_info oi
    LEFT JOIN personel p ON oi.garsonno = p.id
    LEFT JOIN ads_musteri m ON COALESCE(oi.mustid, 0) = m.mustid
    LEFT JOIN payment_info pi ON pi.adsno = oi.adsno
    LEFT JOIN ads_odeme o ON o.adsno = oi.adsno AND o.kasa = ANY(:kasa_nos) AND COALESCE(o.adtur, :adtur) = :adtur
    LEFT JOIN ads_odmsekli od ON o.otip = od.odmno
    LEFT JOIN order_items items ON items.adsno = oi.adsno
    LIMIT 1
"""


def get_order_details(route: BranchRoute, adsno: int, status: str, adtur: Optional[int] = None) -> Optional[Row]:
    if status not in ORDER_STATUSES:
        raise ValueError(f"status must be one of {ORDER_STATUSES}, got {status!r}")
    if adtur is None:
        adtur = infer_order_subtype(route, adsno, status)

    query = _OPEN_DETAIL_SQL if status == "open" else _CLOSED_DETAIL_SQL
    row = fetch_one(
        route.engine,
        query,
        {**_scope(route), "adsno": adsno, "adtur": adtur},
        query_name=f"order_detail_{status}",
    )
    if row is None:
        return None
    row = _normalize([row], floats=("toplam_tutar", "toplam_iskonto"), ints=("adtur", "masano", "masa_no", "sipyer"))[0]
    row["items"] = row.get("items") or []
    return row


def debug_order_check(route: BranchRoute, adsno: int) -> Dict[str, Any]:
    params = {**_scope(route), "adsno": adsno}
    open_count = fetch_one(
        route.engine,
        "SELECT COUNT(*)::int AS count FROM ads_acik WHERE adsno = :adsno AND kasa = ANY(:kasa_nos)",
        params,
        query_name="debug_open_count",
    )
    closed_count = fetch_one(
        route.engine,
        "SELECT COUNT(*)::int AS count FROM ads_adisyon WHERE adsno = :adsno AND kasa = ANY(:kasa_nos)",
        params,
        query_name="debug_closed_count",
    )
    open_items = fetch_all(
        route.engine,
        """
        SELECT a.pluid, a.miktar, a.bfiyat, a.tutar, a.sturu, a.ack1, a.actar, a.acsaat
        FROM ads_acik a
        WHERE a.adsno = :adsno AND a.kasa = ANY(:kasa_nos)
        ORDER BY a.actar DESC
        LIMIT 5
        """,
        params,
        query_name="debug_open_items",
    )
    closed_items = fetch_all(
        route.engine,
        """
        SELECT a.pluid, a.miktar, a.bfiyat, a.tutar, a.sturu, a.ack1, a.kaptar, a.kapsaat
        FROM ads_adisyon a
        WHERE a.adsno = :adsno AND a.kasa = ANY(:kasa_nos)
        ORDER BY a.kaptar DESC
        LIMIT 5
        """,
        params,
        query_name="debug_closed_items",
    )
    return {
        "adsno": adsno,
        "kasa_nos": list(route.registers),
        "open": {"count": to_int((open_count or {}).get("count")), "sample_items": open_items},
        "closed": {"count": to_int((closed_count or {}).get("count")), "sample_items": closed_items},
    }


def get_customer(route: BranchRoute, customer_id: int) -> Optional[Row]:
    # no register filter: ads_musteri is a master table shared by every register
    row = fetch_one(
        route.engine,
        """
        SELECT mustid, adi, COALESCE(soyadi, '') AS soyadi
        FROM ads_musteri
        WHERE mustid = :id
        LIMIT 1
        """,
        {"id": customer_id},
        query_name="customer",
    )
    if row is None:
        return None
    first, last = row.get("adi") or "", row.get("soyadi") or ""
    return {
        "id": row.get("mustid"),
        "first_name": first,
        "last_name": last,
        "full_name": f"{first} {last}".strip(),
    }


# ---------------------------------------------------------------------------
# Performance
# ---------------------------------------------------------------------------

def _minutes(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, (datetime, time_type)):
        return value.hour * 60 + value.minute
    parts = str(value).split(":")
    if len(parts) < 2:
        return None
    try:
        return int(parts[0]) * 60 + int(parts[1])
    except ValueError:
        return None


def order_duration_minutes(opened: Any, closed: Any) -> Optional[int]:
    """Minutes between two POS clock times, wrapping past midnight."""
    start, end = _minutes(opened), _minutes(closed)
    if start is None or end is None:
        return None
    diff = end - start
    if diff < 0:
        diff += 24 * 60
    return diff


def get_performance(route: BranchRoute, dr: DateRange, period: Optional[str] = None) -> Dict[str, Any]:
    params = _dated_scope(route, dr, "today" if period == "today" else None)

    totals = fetch_one(
        route.engine,
        """
        SELECT
            COALESCE(SUM(o.otutar), 0) AS total_sales,
            COUNT(DISTINCT o.adsno) AS orders_count,
            COALESCE(SUM(o.iskonto), 0) AS total_discount
        FROM ads_odeme o
        WHERE DATE(o.raptar) BETWEEN :start AND :end AND o.kasa = ANY(:kasa_nos)
        """,
        params,
        query_name="performance_totals",
    ) or {}
    total_sales = to_float(totals.get("total_sales"))
    orders_count = to_int(totals.get("orders_count"))

    durations = fetch_all(
        route.engine,
        """
        SELECT
            a.adsno,
            MAX(a.acsaat) AS acilis_saati,
            MAX(a.kapsaat) AS kapanis_saati,
            MAX(a.raptar) AS tarih
        FROM ads_adisyon a
        WHERE DATE(a.raptar) BETWEEN :start AND :end AND a.kasa = ANY(:kasa_nos)
        GROUP BY a.adsno
        """,
        params,
        query_name="performance_durations",
    )
    total_minutes = 0
    over60 = 0
    for row in durations:
        diff = order_duration_minutes(row.get("acilis_saati"), row.get("kapanis_saati"))
        if diff is None:
            continue
        total_minutes += diff
        if diff > 60:
            over60 += 1

    waiters = fetch_all(
        route.engine,
        """
        SELECT
            a.garsonno,
            MAX(per.adi) AS waiter_name,
            COUNT(DISTINCT a.adsno) AS orders,
            COALESCE(SUM(o.otutar), 0) AS total
        FROM ads_adisyon a
        LEFT JOIN personel per ON a.garsonno = per.id
        LEFT JOIN ads_odeme o ON a.adsno = o.adsno AND a.adtur = o.adtur AND o.kasa = ANY(:kasa_nos)
        WHERE DATE(a.raptar) BETWEEN :start AND :end AND a.kasa = ANY(:kasa_nos)
        GROUP BY a.garsonno
        ORDER BY total DESC
        LIMIT 10
        """,
        params,
        query_name="performance_waiters",
    )
    products = fetch_all(
        route.engine,
        """
        SELECT
            COALESCE(p.product_name, CAST(a.pluid AS VARCHAR), 'Ürün') AS product_name,
            COALESCE(SUM(a.miktar), 0) AS quantity,
            COALESCE(SUM(a.tutar), 0) AS total
        FROM ads_adisyon a
        LEFT JOIN product p ON a.pluid = p.plu
        WHERE DATE(a.raptar) BETWEEN :start AND :end AND a.kasa = ANY(:kasa_nos)
        GROUP BY p.product_name, a.pluid
        ORDER BY total DESC
        LIMIT 10
        """,
        params,
        query_name="performance_products",
    )
    groups = fetch_all(
        route.engine,
        """
        SELECT
            pg.adi AS group_name,
            COALESCE(SUM(a.miktar), 0) AS quantity,
            COALESCE(SUM(a.tutar), 0) AS total
        FROM ads_adisyon a
        LEFT JOIN product p ON a.pluid = p.plu
        LEFT JOIN product_group pg ON p.tip = pg.id
        WHERE DATE(a.raptar) BETWEEN :start AND :end AND a.kasa = ANY(:kasa_nos)
        GROUP BY pg.adi
        ORDER BY total DESC
        LIMIT 10
        """,
        params,
        query_name="performance_groups",
    )

    return {
        "branch": {
            "name": route.branch.name,
            "kasa_no": route.primary_register,
            "kasa_nos": list(route.registers),
        },
        "period": {"start": params["start"].isoformat(), "end": params["end"].isoformat()},
        "totals": {
            "total_sales": total_sales,
            "orders_count": orders_count,
            "avg_ticket": total_sales / max(1, orders_count),
            "avg_duration_minutes": total_minutes / len(durations) if durations else 0,
            "over60_count": over60,
            "total_discount": to_float(totals.get("total_discount")),
        },
        "waiters": _normalize(waiters, floats=("total",), ints=("orders",)),
        "products": _normalize(products, floats=("quantity", "total")),
        "groups": _normalize(groups, floats=("quantity", "total")),
    }


# ---------------------------------------------------------------------------
# Ledger reports
# ---------------------------------------------------------------------------

def get_debts(route: BranchRoute, dr: DateRange, period: Optional[str] = None) -> List[Row]:
    rows = fetch_all(
        route.engine,
        """
        WITH agg AS (
            SELECT
                ads_no,
                MAX(COALESCE(borcu, 0)) AS borc,
                MAX(islem_zamani) AS islem_zamani,
                MAX(fisno) AS fisno,
                MAX(pers_id) AS pers_id,
                MAX(musteri) AS musteri
            FROM ads_hareket
            WHERE kasano = ANY(:kasa_nos) AND DATE(islem_zamani) BETWEEN :start AND :end
            GROUP BY ads_no
        )
        SELECT
            agg.ads_no,
            agg.borc,
            agg.fisno,
            agg.pers_id,
            agg.islem_zamani,
            agg.musteri,
            COALESCE(m.adi, '') AS musteri_adi,
            COALESCE(m.soyadi, '') AS musteri_soyadi,
            p.adi AS personel_adi
        FROM agg
        LEFT JOIN ads_musteri m ON agg.musteri = m.mustid
        LEFT JOIN personel p ON agg.pers_id = p.id
        ORDER BY agg.islem_zamani DESC
        """,
        _dated_scope(route, dr, period),
        query_name="debts",
    )
    debts = []
    for r in rows:
        stamp = r.get("islem_zamani")
        debts.append(
            {
                "adsno": r.get("ads_no"),
                "borc": to_float(r.get("borc")),
                "fisno": r.get("fisno"),
                "pers_id": r.get("pers_id"),
                "personel_adi": r.get("personel_adi"),
                "mustid": r.get("musteri"),
                "musteri_fullname": f"{r.get('musteri_adi') or ''} {r.get('musteri_soyadi') or ''}".strip(),
                "tarih": stamp.strftime("%Y-%m-%d") if isinstance(stamp, datetime) else None,
                "saat": stamp.strftime("%H:%M") if isinstance(stamp, datetime) else None,
            }
        )
    return debts


_CANCELLED_SQL = """
    SELECT
        COALESCE(p.product_name, CAST(a.pluid AS VARCHAR), 'Ürün') AS product_name,
        COALESCE(a.miktar, 0) AS quantity,
        COALESCE(a.tutar, 0) AS tutar,
        a.ack1 AS reason,
        a.{date_col} AS date,
        a.adsno AS order_id,
        a.adtur AS adtur,
        per.adi AS waiter_name,
        CASE a.sturu WHEN 1 THEN 'ikram' WHEN 2 THEN 'iade' WHEN 4 THEN 'iptal' ELSE 'diğer' END AS type,
        '{status}' AS status
    FROM {table} a
    LEFT JOIN product p ON a.pluid = p.plu
    LEFT JOIN personel per ON a.garsonno = per.id
    WHERE DATE(a.{date_col}) BETWEEN :start AND :end AND a.kasa = ANY(:kasa_nos) AND a.sturu IN (1, 2, 4)
"""


def get_cancelled_items(route: BranchRoute, dr: DateRange, period: Optional[str] = None) -> List[Row]:
    """Complimentary (ikram), returned (iade) and cancelled (iptal) lines."""
    params = _dated_scope(route, dr)
    open_rows = fetch_all(
        route.engine,
        _CANCELLED_SQL.format(date_col="actar", table="ads_acik", status="open"),
        params,
        query_name="cancelled_open",
    )
    closed_rows = fetch_all(
        route.engine,
        _CANCELLED_SQL.format(date_col="raptar", table="ads_adisyon", status="closed"),
        params,
        query_name="cancelled_closed",
    )
    rows = _normalize(open_rows + closed_rows, floats=("quantity", "tutar"))
    return _sort_desc(rows, "date")[:FALLBACK_ROW_LIMIT]


def get_unsold_cancels(route: BranchRoute, dr: DateRange, period: Optional[str] = None) -> List[Row]:
    """Items voided before they were sold (``ads_iptal``).

    The table's register column differs between POS versions; deployments
    without one cannot be scoped and report nothing.
    """
    register_col = pick_column(get_columns(route.engine, "ads_iptal"), REGISTER_COLUMNS)
    if register_col is None:
        logger.warning("ads_iptal on branch %s has no register column; skipping", route.branch.name)
        return []

    rows = fetch_all(
        route.engine,
        f"""
        SELECT
            COALESCE(a.urun_adi, 'Ürün') AS urun_adi,
            a.tarih_saat,
            a.pers_id,
            per.adi AS personel_adi,
            COALESCE(a.miktar, 0) AS miktar,
            COALESCE(a.tutar, 0) AS tutar
        FROM ads_iptal a
        LEFT JOIN personel per ON a.pers_id = per.id
        WHERE a.tarih_saat >= :start_ts AND a.tarih_saat < :end_ts
          AND a.{register_col} = ANY(:kasa_nos)
        ORDER BY a.tarih_saat DESC
        """,
        {**_scope(route), "start_ts": dr.start, "end_ts": dr.end_exclusive},
        query_name="unsold_cancels",
    )
    result = []
    for r in rows:
        stamp = r.get("tarih_saat")
        result.append(
            {
                "urun_adi": r.get("urun_adi"),
                "tarih": stamp.strftime("%Y-%m-%d") if isinstance(stamp, datetime) else None,
                "saat": stamp.strftime("%H:%M") if isinstance(stamp, datetime) else None,
                "pers_id": r.get("pers_id"),
                "personel_adi": r.get("personel_adi"),
                "miktar": to_float(r.get("miktar")),
                "tutar": to_float(r.get("tutar")),
            }
        )
    return result


def get_payment_types(route: BranchRoute, dr: DateRange, period: Optional[str] = None) -> List[Row]:
    rows = fetch_all(
        route.engine,
        """
        SELECT
            COALESCE(od.odmname, 'Tanımsız') AS payment_name,
            COALESCE(SUM(o.otutar), 0) AS total,
            COUNT(DISTINCT o.adsno) AS count,
            od.odmno AS otip
        FROM ads_odeme o
        LEFT JOIN ads_odmsekli od ON o.otip = od.odmno
        WHERE o.raptar >= :start_ts AND o.raptar < :end_ts AND o.kasa = ANY(:kasa_nos)
        GROUP BY od.odmno, od.odmname
        ORDER BY total DESC
        """,
        {**_scope(route), "start_ts": dr.start, "end_ts": dr.end_exclusive},
        query_name="payment_types",
    )
    return _normalize(rows, floats=("total",), ints=("count",))


def get_sales_chart(route: BranchRoute, dr: DateRange, period: Optional[str] = None) -> List[Row]:
    """Daily closed sales; older deployments leave ``raptar`` empty, so
    the closing date is tried second."""
    params = _dated_scope(route, dr)

    def by_report_date():
        return fetch_all(
            route.engine,
            """
            SELECT DATE(raptar) AS tarih, SUM(COALESCE(tutar, 0)) AS toplam
            FROM ads_adisyon
            WHERE DATE(raptar) BETWEEN :start AND :end AND kasa = ANY(:kasa_nos)
            GROUP BY DATE(raptar)
            ORDER BY DATE(raptar)
            """,
            params,
            query_name="sales_chart",
        )

    def by_closing_date():
        return fetch_all(
            route.engine,
            """
            SELECT DATE(kaptar) AS tarih, SUM(COALESCE(tutar, 0)) AS toplam
            FROM ads_adisyon
            WHERE DATE(kaptar) BETWEEN :start AND :end AND kasa = ANY(:kasa_nos)
            GROUP BY DATE(kaptar)
            ORDER BY DATE(kaptar)
            """,
            params,
            query_name="sales_chart_kaptar",
        )

    rows = first_non_empty([by_report_date, by_closing_date])
    return [
        {
            "tarih": r["tarih"].isoformat() if isinstance(r.get("tarih"), date) else r.get("tarih"),
            "toplam": to_float(r.get("toplam")),
        }
        for r in rows
    ]


_COURIER_OPEN_SQL = """
    SELECT DISTINCT
        a.adsno,
        per.adi AS kurye,
        a.gidsaat AS cikis,
        a.donsaat AS donus,
        a.actar AS tarih,
        'open' AS status
    FROM ads_acik a
    LEFT JOIN personel per ON a.garsonno = per.id
    WHERE a.kasa = ANY(:kasa_nos)
      AND (COALESCE(a.adtur, 0) = 1 OR a.masano = 99999)
      {date_filter}
    {tail}
"""

_COURIER_CLOSED_SQL = """
    SELECT DISTINCT
        a.adsno,
        per.adi AS kurye,
        a.motcikis AS cikis,
        a.stopsaat AS donus,
        a.raptar AS tarih,
        a.sipsaat AS sipsaat,
        a.stoptar AS stoptar,
        'closed' AS status
    FROM ads_adisyon a
    LEFT JOIN personel per ON a.garsonno = per.id
    WHERE a.kasa = ANY(:kasa_nos)
      AND (COALESCE(a.adtur, 0) = 1 OR a.masano = 99999)
      {date_filter}
    {tail}
"""


def get_courier_tracking(route: BranchRoute, dr: DateRange, period: Optional[str] = None) -> List[Row]:
    """Delivery orders with courier departure/return times."""
    params = _dated_scope(route, dr)

    def dated():
        open_rows = fetch_all(
            route.engine,
            _COURIER_OPEN_SQL.format(date_filter="AND DATE(a.actar) BETWEEN :start AND :end", tail=""),
            params,
            query_name="courier_open",
        )
        closed_rows = fetch_all(
            route.engine,
            _COURIER_CLOSED_SQL.format(date_filter="AND DATE(a.raptar) BETWEEN :start AND :end", tail=""),
            params,
            query_name="courier_closed",
        )
        return open_rows + closed_rows

    def latest():
        open_rows = fetch_all(
            route.engine,
            _COURIER_OPEN_SQL.format(date_filter="", tail=f"ORDER BY a.actar DESC LIMIT {COURIER_FALLBACK_LIMIT}"),
            _scope(route),
            query_name="courier_open_latest",
        )
        closed_rows = fetch_all(
            route.engine,
            _COURIER_CLOSED_SQL.format(date_filter="", tail=f"ORDER BY a.raptar DESC LIMIT {COURIER_FALLBACK_LIMIT}"),
            _scope(route),
            query_name="courier_closed_latest",
        )
        return open_rows + closed_rows

    return _sort_desc(first_non_empty([dated, latest]), "tarih")


# ---------------------------------------------------------------------------
# Products and personnel
# ---------------------------------------------------------------------------

def get_product_sales(
    route: BranchRoute,
    dr: DateRange,
    period: Optional[str] = None,
    group_id: Optional[int] = None,
    group_ids: Optional[Sequence[int]] = None,
    plu: Optional[int] = None,
) -> List[Row]:
    params: Dict[str, Any] = _dated_scope(route, dr)
    conditions = []
    if group_ids:
        conditions.append("p.tip = ANY(:group_ids)")
        params["group_ids"] = list(group_ids)
    elif group_id:
        conditions.append("p.tip = :group_id")
        params["group_id"] = group_id
    if plu is not None:
        conditions.append("p.plu = :plu")
        params["plu"] = plu

    if period == "today":
        # the business day is still running: closed and open lines together
        where = ("WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"""
            WITH combined_sales AS (
                SELECT a.pluid, a.miktar, a.tutar
                FROM ads_adisyon a
                WHERE DATE(a.raptar) = :start AND a.kasa = ANY(:kasa_nos)
                UNION ALL
                SELECT a.pluid, a.miktar, a.tutar
                FROM ads_acik a
                WHERE DATE(a.actar) = :start AND a.kasa = ANY(:kasa_nos)
            )
            SELECT
                p.product_name AS product_name,
                p.plu AS plu,
                p.tip AS group_id,
                pg.adi AS group_name,
                COALESCE(SUM(cs.miktar), 0) AS quantity,
                COALESCE(SUM(cs.tutar), 0) AS total
            FROM combined_sales cs
            LEFT JOIN product p ON cs.pluid = p.plu
            LEFT JOIN product_group pg ON p.tip = pg.id
            {where}
            GROUP BY p.product_name, p.plu, p.tip, pg.adi
            ORDER BY total DESC
        """
    else:
        extra = ("AND " + " AND ".join(conditions)) if conditions else ""
        query = f"""
            SELECT
                p.product_name AS product_name,
                a.pluid AS plu,
                p.tip AS group_id,
                pg.adi AS group_name,
                COALESCE(SUM(a.miktar), 0) AS quantity,
                COALESCE(SUM(a.tutar), 0) AS total
            FROM ads_adisyon a
            LEFT JOIN product p ON a.pluid = p.plu
            LEFT JOIN product_group pg ON p.tip = pg.id
            WHERE DATE(a.raptar) BETWEEN :start AND :end AND a.kasa = ANY(:kasa_nos)
            {extra}
            GROUP BY p.product_name, a.pluid, p.tip, pg.adi
            ORDER BY total DESC
        """
    rows = fetch_all(route.engine, query, params, query_name="product_sales")
    return _normalize(rows, floats=("quantity", "total"))


def _master_data_key(prefix: str, route: BranchRoute) -> str:
    # keyed by the physical database: master tables are shared by every register
    branch = route.branch
    return generate_key(prefix, branch.db_host, branch.db_port, branch.db_name)


def get_product_groups(route: BranchRoute, cache: Optional[CacheStore] = None) -> List[Row]:
    key = _master_data_key("product_groups", route)
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            return cached
    rows = fetch_all(
        route.engine,
        "SELECT id, adi AS name FROM product_group ORDER BY adi ASC",
        query_name="product_groups",
    )
    if cache is not None:
        cache.set(key, rows, PRODUCT_GROUPS_TTL)
    return rows


def get_personnel(route: BranchRoute, cache: Optional[CacheStore] = None) -> List[Row]:
    key = _master_data_key("personnel", route)
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            return cached
    rows = fetch_all(
        route.engine,
        "SELECT id, adi FROM personel ORDER BY adi ASC",
        query_name="personnel",
    )
    if cache is not None:
        cache.set(key, rows, PERSONNEL_TTL)
    return rows


def get_personnel_report(route: BranchRoute, dr: DateRange, period: Optional[str] = None) -> Dict[str, Any]:
    params = _dated_scope(route, dr)
    rows = fetch_all(
        route.engine,
        """
        SELECT
            a.garsonno AS personnel_id,
            per.adi AS personnel_name,
            COUNT(DISTINCT a.adsno) AS order_count,
            COALESCE(SUM(a.tutar), 0) AS total_sales,
            COALESCE(SUM(CASE WHEN a.sturu = 1 THEN a.tutar ELSE 0 END), 0) AS ikram_total,
            COALESCE(SUM(CASE WHEN a.sturu = 2 THEN a.tutar ELSE 0 END), 0) AS iade_total,
            COALESCE(SUM(CASE WHEN a.sturu = 4 THEN a.tutar ELSE 0 END), 0) AS iptal_total,
            COUNT(CASE WHEN a.sturu = 1 THEN 1 END) AS ikram_count,
            COUNT(CASE WHEN a.sturu = 2 THEN 1 END) AS iade_count,
            COUNT(CASE WHEN a.sturu = 4 THEN 1 END) AS iptal_count
        FROM ads_adisyon a
        LEFT JOIN personel per ON a.garsonno = per.id
        WHERE DATE(a.raptar) BETWEEN :start AND :end AND a.kasa = ANY(:kasa_nos)
        GROUP BY a.garsonno, per.adi
        ORDER BY total_sales DESC
        """,
        params,
        query_name="personnel_report",
    )

    open_by_person: Dict[Any, Dict[str, Any]] = {}
    if period == "today":
        open_rows = fetch_all(
            route.engine,
            """
            SELECT
                a.garsonno AS personnel_id,
                COUNT(DISTINCT a.adsno) AS open_order_count,
                COALESCE(SUM(a.tutar), 0) AS open_total
            FROM ads_acik a
            WHERE DATE(a.actar) BETWEEN :start AND :end AND a.kasa = ANY(:kasa_nos)
            GROUP BY a.garsonno
            """,
            params,
            query_name="personnel_report_open",
        )
        for r in open_rows:
            open_by_person[r.get("personnel_id")] = {
                "open_order_count": to_int(r.get("open_order_count")),
                "open_total": to_float(r.get("open_total")),
            }

    grand_total = 0.0
    grand_orders = 0
    personnel = []
    for r in rows:
        open_data = open_by_person.get(r.get("personnel_id"), {"open_order_count": 0, "open_total": 0.0})
        closed_total = to_float(r.get("total_sales"))
        closed_count = to_int(r.get("order_count"))
        total = closed_total + open_data["open_total"]
        order_count = closed_count + open_data["open_order_count"]
        grand_total += total
        grand_orders += order_count
        personnel.append(
            {
                "id": r.get("personnel_id"),
                "name": r.get("personnel_name") or "Bilinmiyor",
                "order_count": order_count,
                "closed_order_count": closed_count,
                "open_order_count": open_data["open_order_count"],
                "total_sales": total,
                "closed_sales": closed_total,
                "open_sales": open_data["open_total"],
                "avg_ticket": total / order_count if order_count else 0,
                "ikram_total": to_float(r.get("ikram_total")),
                "iade_total": to_float(r.get("iade_total")),
                "iptal_total": to_float(r.get("iptal_total")),
                "ikram_count": to_int(r.get("ikram_count")),
                "iade_count": to_int(r.get("iade_count")),
                "iptal_count": to_int(r.get("iptal_count")),
            }
        )

    return {
        "period": dr.as_dict(),
        "summary": {
            "total_sales": grand_total,
            "total_orders": grand_orders,
            "personnel_count": len(personnel),
            "avg_per_personnel": grand_total / len(personnel) if personnel else 0,
        },
        "personnel": personnel,
    }


def get_unpayable(route: BranchRoute, dr: DateRange, period: Optional[str] = None) -> List[Row]:
    """Lines closed with an "ödenmez" (will not be paid) note in ``ack4``."""
    rows = fetch_all(
        route.engine,
        """
        SELECT
            a.adtur,
            a.adsno,
            a.actar,
            a.acsaat,
            a.kaptar,
            a.masano,
            a.pluid,
            COALESCE(a.miktar, 0) AS miktar,
            COALESCE(pf.fiyat, a.bfiyat, 0) AS bfiyat,
            COALESCE(a.tutar, 0) AS tutar,
            a.ack4,
            a.mustid,
            COALESCE(p.product_name, CAST(a.pluid AS VARCHAR)) AS product_name,
            m.adi AS musteri_adi,
            m.soyadi AS musteri_soyadi
        FROM ads_adisyon a
        LEFT JOIN product p ON a.pluid = p.plu
        LEFT JOIN product_fiyat pf ON pf.plu = a.pluid
        LEFT JOIN ads_musteri m ON a.mustid = m.mustid
        WHERE DATE(a.kaptar) BETWEEN :start AND :end
          AND a.kasa = ANY(:kasa_nos)
          AND a.ack4 ILIKE ANY(:markers)
        ORDER BY a.kaptar DESC, a.adsno DESC
        """,
        {**_dated_scope(route, dr), "markers": UNPAYABLE_MARKERS},
        query_name="unpayable",
    )
    result = []
    for r in rows:
        quantity = to_float(r.get("miktar"))
        unit_price = to_float(r.get("bfiyat"))
        closed_on = r.get("kaptar")
        day = closed_on or r.get("actar")
        first, last = r.get("musteri_adi") or "", r.get("musteri_soyadi") or ""
        result.append(
            {
                "adtur": r.get("adtur"),
                "adsno": r.get("adsno"),
                "tarih": day.strftime("%Y-%m-%d") if isinstance(day, date) else None,
                "saat": r.get("acsaat"),
                "kapanis_tarih": closed_on.strftime("%Y-%m-%d") if isinstance(closed_on, date) else None,
                "masano": r.get("masano"),
                "pluid": r.get("pluid"),
                "product_name": r.get("product_name"),
                "miktar": quantity,
                "bfiyat": unit_price,
                "tutar": quantity * unit_price,
                "ack4": r.get("ack4"),
                "mustid": r.get("mustid"),
                "musteri_adi": r.get("musteri_adi"),
                "musteri_soyadi": r.get("musteri_soyadi"),
                "musteri_fullname": f"{first} {last}".strip(),
            }
        )
    return result


def get_discount_orders(route: BranchRoute, dr: DateRange, period: Optional[str] = None) -> List[Row]:
    rows = fetch_all(
        route.engine,
        """
        WITH payments AS (
            SELECT
                o.adsno,
                DATE(o.raptar) AS raptar,
                COALESCE(SUM(o.otutar), 0) AS net_tutar,
                COALESCE(SUM(o.iskonto), 0) AS iskonto,
                COALESCE(SUM(COALESCE(o.otutar, 0) + COALESCE(o.iskonto, 0)), 0) AS tutar,
                MAX(o.mustid) AS mustid
            FROM ads_odeme o
            WHERE o.kasa = ANY(:kasa_nos)
              AND DATE(o.raptar) BETWEEN :start AND :end
              AND o.iskonto > 0
            GROUP BY o.adsno, DATE(o.raptar)
        ),
        adisyon_agg AS (
            SELECT
                a.adsno,
                MAX(a.kapsaat) AS kapanis_saati,
                MAX(a.acsaat) AS acilis_saati,
                MAX(COALESCE(a.masano, 0)) AS masa_no,
                MAX(a.garsonno) AS garsonno
            FROM ads_adisyon a
            WHERE a.kasa = ANY(:kasa_nos)
            GROUP BY a.adsno
        )
        SELECT
            p.adsno,
            p.raptar AS tarih,
            a.kapanis_saati,
            a.acilis_saati,
            a.masa_no,
            p.net_tutar,
            p.iskonto,
            p.tutar,
            TRIM(CONCAT(COALESCE(m.adi, ''), ' ', COALESCE(m.soyadi, ''))) AS customer_name,
            p.mustid,
            per.adi AS garson_adi
        FROM payments p
        LEFT JOIN adisyon_agg a ON a.adsno = p.adsno
        LEFT JOIN ads_musteri m ON p.mustid = m.mustid
        LEFT JOIN personel per ON a.garsonno = per.id
        ORDER BY p.raptar DESC, p.adsno DESC
        """,
        _dated_scope(route, dr),
        query_name="discount_orders",
    )
    return _normalize(rows, floats=("net_tutar", "iskonto", "tutar"))


# ---------------------------------------------------------------------------
# Cash report
# ---------------------------------------------------------------------------

def empty_cash_totals() -> Dict[str, float]:
    return {"nakit": 0.0, "kredi_karti": 0.0, "yemek_karti": 0.0, "diger": 0.0, "toplam": 0.0}


def cash_bucket(description: Optional[str]) -> str:
    label = (description or "").lower()
    if "nakit" in label:
        return "nakit"
    if "kredi" in label or ("kart" in label and "yemek" not in label):
        return "kredi_karti"
    if "yemek" in label or "ticket" in label:
        return "yemek_karti"
    return "diger"


def get_cash_report(
    route: BranchRoute,
    dr: DateRange,
    period: Optional[str] = None,
    custom_bounds: bool = False,
) -> Dict[str, Any]:
    """Register cash report from ``kasa_raporu``.

    Deployments disagree on the table's columns, so the date, register,
    description and amount columns are probed first.
    """
    end = dr.start_date if (is_single_day_period(period) and not custom_bounds) else dr.end_date
    period_info = {"start": dr.start_date.isoformat(), "end": end.isoformat()}

    columns = get_columns(route.engine, "kasa_raporu")
    register_col = pick_column(columns, REGISTER_COLUMNS)
    if not columns or register_col is None:
        logger.warning("kasa_raporu on branch %s cannot be scoped to registers", route.branch.name)
        return {"period": period_info, "count": 0, "totals": empty_cash_totals(), "rows": []}

    date_col = pick_column(columns, ["raptar", "tarih"])
    desc_col = pick_column(columns, ["aciklama", "tur"])
    amount_col = pick_column(columns, ["tutar", "toplam"])

    select = [
        f"{date_col} AS tarih" if date_col else "NULL AS tarih",
        f"{register_col} AS kasa",
        f"{desc_col} AS aciklama" if desc_col else "'İşlem' AS aciklama",
        f"COALESCE({amount_col}, 0) AS tutar" if amount_col else "0 AS tutar",
    ]
    params: Dict[str, Any] = _scope(route)
    where = [f"{register_col} = ANY(:kasa_nos)"]
    if date_col:
        where.append(f"DATE({date_col}) BETWEEN :start AND :end")
        params.update({"start": dr.start_date, "end": end})
        tail = f"ORDER BY {date_col} DESC, {register_col} ASC"
    else:
        tail = "ORDER BY 1 DESC LIMIT 500"

    rows = fetch_all(
        route.engine,
        f"SELECT {', '.join(select)} FROM kasa_raporu WHERE {' AND '.join(where)} {tail}",
        params,
        query_name="cash_report",
    )

    totals = empty_cash_totals()
    out = []
    for r in rows:
        amount = to_float(r.get("tutar"))
        totals[cash_bucket(r.get("aciklama"))] += amount
        totals["toplam"] += amount
        out.append(
            {
                "tarih": r.get("tarih") or dr.start_date,
                "kasa": r.get("kasa"),
                "aciklama": r.get("aciklama") or "İşlem",
                "tutar": round(amount, 2),
            }
        )
    return {"period": period_info, "count": len(out), "totals": totals, "rows": out}
