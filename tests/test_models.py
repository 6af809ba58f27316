from datetime import date, datetime

from app.models import AllowedKind, AllowedReports, Branch, User


def test_null_allowed_reports_means_everything() -> None:
    allowed = AllowedReports.from_db(None)
    assert allowed.kind is AllowedKind.all
    assert allowed.permits("debts")
    assert allowed.permits("unsold_cancels")
    assert allowed.to_db() is None


def test_empty_allowed_reports_means_nothing() -> None:
    allowed = AllowedReports.from_db([])
    assert allowed.kind is AllowedKind.none
    assert not allowed.permits("debts")
    assert allowed.to_db() == []
    assert allowed != AllowedReports.from_db(None)


def test_subset_permits_only_listed_reports() -> None:
    allowed = AllowedReports.from_db(["debts", "courier"])
    assert allowed.kind is AllowedKind.subset
    assert allowed.permits("courier")
    assert not allowed.permits("open_orders")
    assert allowed.to_db() == ["courier", "debts"]


def test_empty_subset_collapses_to_nothing() -> None:
    assert AllowedReports.subset([]) == AllowedReports.nothing()


def test_branch_from_row_defaults_and_inline_registers() -> None:
    branch = Branch.from_row(
        {
            "id": 7,
            "name": "Kadıköy",
            "db_host": "db.local",
            "db_port": None,
            "db_name": "pos",
            "db_user": "rapor",
            "db_password": "x",
            "kasa_no": None,
            "kasalar": [2, "3", None, 4, True],
            "closing_hour": 30,
        }
    )
    assert branch.db_port == 5432
    assert branch.kasa_no == 1
    assert branch.kasalar == [2, 4]
    assert branch.closing_hour == 23
    assert "x" not in repr(branch)


def test_branch_public_dict_hides_credentials() -> None:
    branch = Branch.from_row({"id": 1, "name": "A", "db_host": "h", "db_name": "d", "db_user": "u", "db_password": "p"})
    public = branch.public_dict()
    assert "db_password" not in public
    assert "db_host" not in public


def test_user_from_row_and_expiry() -> None:
    user = User.from_row(
        {
            "id": "abc",
            "email": "a@b.c",
            "is_admin": None,
            "expiry_date": date(2024, 5, 15),
            "allowed_reports": [],
            "selected_branch": "2",
        }
    )
    assert user.is_admin is False
    assert user.selected_branch == 2
    assert user.allowed_reports == AllowedReports.nothing()
    assert not user.is_expired(now=datetime(2024, 5, 15, 18, 0))
    assert user.is_expired(now=datetime(2024, 5, 16, 0, 1))


def test_user_without_expiry_never_expires() -> None:
    user = User.from_row({"id": 1, "email": "a@b.c"})
    assert not user.is_expired(now=datetime(2099, 1, 1))
    assert user.public_dict()["allowed_reports"] is None
