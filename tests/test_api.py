import asyncio
import json
from datetime import datetime, timedelta

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient

from app import auth, config
from app.auth import get_current_user
from app.dashboard import zero_summary
from app.errors import InvalidBranchSelection
from app.main import app
from app.models import AllowedReports
from app.routers.reports import dashboard_events, get_branch_router, get_dashboard
from conftest import FakeEngine, db_down, make_branch, make_route, make_user


class StubRouter:
    def __init__(self, route=None, error=None) -> None:
        self.route = route
        self.error = error

    def resolve(self, user, branch_index=None):
        if self.error is not None:
            raise self.error
        return self.route


class StubDashboard:
    def __init__(self, result=None, error=None) -> None:
        self.result = result
        self.error = error
        self.calls = []

    def get(self, user, period="today", start=None, end=None):
        self.calls.append((user.id, period, start, end))
        if self.error is not None:
            raise self.error
        return self.result


def _make_client(user, router=None, dashboard=None) -> TestClient:
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_branch_router] = lambda: router or StubRouter(make_route(FakeEngine()))
    app.dependency_overrides[get_dashboard] = lambda: dashboard or StubDashboard(zero_summary())
    return TestClient(app)


@pytest.fixture(autouse=True)
def _clear_overrides(monkeypatch):
    monkeypatch.setattr(config, "JWT_SECRET", "test-secret-with-enough-length-for-hs256")
    yield
    app.dependency_overrides.clear()


def test_report_denied_when_not_allowed() -> None:
    client = _make_client(make_user(allowed_reports=AllowedReports.nothing()))
    resp = client.get("/api/reports/debts", params={"period": "today"})
    assert resp.status_code == 403


def test_report_allowed_by_subset() -> None:
    engine = FakeEngine(lambda sql, params: [{"ads_no": 1, "borc": 20, "islem_zamani": None}])
    client = _make_client(
        make_user(allowed_reports=AllowedReports.subset(["debts"])),
        router=StubRouter(make_route(engine, (1, 2))),
    )
    resp = client.get("/api/reports/debts", params={"period": "week"})
    assert resp.status_code == 200
    assert resp.json()[0]["borc"] == 20.0

    assert client.get("/api/reports/courier-tracking").status_code == 403


def test_admin_sees_every_report() -> None:
    client = _make_client(make_user(is_admin=True, allowed_reports=AllowedReports.nothing()))
    assert client.get("/api/reports/payment-types").status_code == 200


def test_orders_endpoint_checks_status_permission() -> None:
    client = _make_client(make_user(allowed_reports=AllowedReports.subset(["open_orders"])))
    assert client.get("/api/reports/orders", params={"status": "open"}).status_code == 200
    assert client.get("/api/reports/orders", params={"status": "closed"}).status_code == 403
    assert client.get("/api/reports/orders", params={"status": "other"}).status_code == 422


def test_invalid_branch_is_400() -> None:
    client = _make_client(make_user(), router=StubRouter(error=InvalidBranchSelection(4, 1)))
    resp = client.get("/api/reports/open-orders")
    assert resp.status_code == 400


def test_query_failure_is_502() -> None:
    engine = FakeEngine(lambda sql, params: db_down())
    client = _make_client(make_user(), router=StubRouter(make_route(engine)))
    resp = client.get("/api/reports/closed-orders")
    assert resp.status_code == 502


def test_bad_custom_bounds_are_422() -> None:
    client = _make_client(make_user())
    resp = client.get("/api/reports/sales-chart", params={"period": "custom", "start_date": "2024-01-01"})
    assert resp.status_code == 422


def test_missing_order_is_null() -> None:
    client = _make_client(make_user())
    for path, params in [
        ("/api/reports/order-details", {"adsno": 5, "status": "closed"}),
        ("/api/reports/order-detail/5", {}),
        ("/api/reports/order-detail/77", {"order_type": "open", "adtur": 0}),
    ]:
        resp = client.get(path, params=params)
        assert resp.status_code == 200
        assert resp.json() is None


def test_order_debug_requires_admin() -> None:
    client = _make_client(make_user())
    assert client.get("/api/reports/order-debug", params={"adsno": 5}).status_code == 403


def test_product_sales_parses_group_ids() -> None:
    engine = FakeEngine()
    client = _make_client(make_user(), router=StubRouter(make_route(engine)))
    assert client.get("/api/reports/product-sales", params={"group_ids": "1,2"}).status_code == 200
    assert engine.calls[0][1]["group_ids"] == [1, 2]
    assert client.get("/api/reports/product-sales", params={"group_ids": "1,x"}).status_code == 422


def test_dashboard_passes_query_parameters() -> None:
    dashboard = StubDashboard(zero_summary())
    client = _make_client(make_user(), dashboard=dashboard)
    resp = client.get("/api/dashboard", params={"period": "custom", "start_date": "2024-01-01", "end_date": "2024-01-31"})
    assert resp.status_code == 200
    assert dashboard.calls == [("user-1", "custom", "2024-01-01", "2024-01-31")]


def test_dashboard_never_fails() -> None:
    client = _make_client(make_user(), dashboard=StubDashboard(error=RuntimeError("boom")))
    resp = client.get("/api/dashboard")
    assert resp.status_code == 200
    assert resp.json() == zero_summary()


def test_select_branch(monkeypatch) -> None:
    saved = []
    monkeypatch.setattr(auth, "update_selected_branch", lambda user_id, index: saved.append((user_id, index)))
    client = _make_client(make_user(branches=[make_branch(), make_branch(id=2)]))

    assert client.post("/api/auth/select-branch", json={"index": 1}).json() == {"success": True}
    assert saved == [("user-1", 1)]
    assert client.post("/api/auth/select-branch", json={"index": 2}).status_code == 400
    assert saved == [("user-1", 1)]


def test_me_hides_credentials() -> None:
    client = _make_client(make_user())
    body = client.get("/api/auth/me").json()
    assert body["email"] == "owner@example.com"
    assert "db_password" not in json.dumps(body)


def test_requests_without_token_are_rejected() -> None:
    client = TestClient(app)
    assert client.get("/api/dashboard").status_code in (401, 403)


def _credentials(payload) -> HTTPAuthorizationCredentials:
    token = jwt.encode(payload, config.JWT_SECRET, algorithm="HS256")
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def test_current_user_loaded_from_token(monkeypatch) -> None:
    monkeypatch.setattr(auth, "load_user", lambda email: make_user(email=email))
    user = get_current_user(_credentials({"email": "owner@example.com"}))
    assert user.email == "owner@example.com"


def test_expired_subscription_is_401(monkeypatch) -> None:
    expired = make_user(expiry_date=datetime.now() - timedelta(days=1))
    monkeypatch.setattr(auth, "load_user", lambda email: expired)
    with pytest.raises(HTTPException) as exc:
        get_current_user(_credentials({"email": "owner@example.com"}))
    assert exc.value.status_code == 401


def test_unknown_user_and_bad_token_are_401(monkeypatch) -> None:
    monkeypatch.setattr(auth, "load_user", lambda email: None)
    with pytest.raises(HTTPException) as exc:
        get_current_user(_credentials({"email": "ghost@example.com"}))
    assert exc.value.status_code == 401

    with pytest.raises(HTTPException) as exc:
        get_current_user(HTTPAuthorizationCredentials(scheme="Bearer", credentials="not-a-jwt"))
    assert exc.value.status_code == 401


def test_configured_admin_email_is_promoted(monkeypatch) -> None:
    monkeypatch.setattr(config, "ADMIN_EMAILS", ["boss@example.com"])
    monkeypatch.setattr(auth, "load_user", lambda email: make_user(email="Boss@example.com"))
    assert get_current_user(_credentials({"email": "Boss@example.com"})).is_admin


def test_dashboard_stream_emits_events() -> None:
    dashboard = StubDashboard({"acik_adisyon_toplam": 5})
    checks = iter([False, False, True])

    async def is_disconnected():
        return next(checks)

    async def collect():
        return [event async for event in dashboard_events(dashboard, make_user(), "today", None, None, is_disconnected, interval=0)]

    events = asyncio.run(collect())
    assert len(events) == 2
    assert events[0].startswith("event: dashboard\ndata: ")
    assert json.loads(events[0].split("data: ", 1)[1]) == {"acik_adisyon_toplam": 5}
