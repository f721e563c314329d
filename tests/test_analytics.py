"""Tests for portfolio view tracking."""

from datetime import datetime, timedelta

import pytest
from bson import ObjectId

from analytics import record_view, view_stats
from database import PORTFOLIOS, VIEWS
from errors import ForbiddenError, NotFoundError, ValidationError

NOW = datetime(2024, 5, 20, 15, 30)


@pytest.fixture
def portfolio_id(db, user) -> str:
    result = db[PORTFOLIOS].insert_one({"user_id": user.user_id, "subdomain": "jane", "title": "Jane"})
    return str(result.inserted_id)


class TestRecordView:

    def test_same_ip_within_an_hour_counts_once(self, db, portfolio_id):
        assert record_view(db, portfolio_id, "1.2.3.4", now=NOW) is True
        assert record_view(db, portfolio_id, "1.2.3.4", now=NOW + timedelta(minutes=59)) is False
        assert db[VIEWS].count_documents({}) == 1
        assert db[PORTFOLIOS].find_one({})["view_count"] == 1

    def test_same_ip_after_an_hour_counts_again(self, db, portfolio_id):
        record_view(db, portfolio_id, "1.2.3.4", now=NOW)
        assert record_view(db, portfolio_id, "1.2.3.4", now=NOW + timedelta(hours=1, minutes=1)) is True
        assert db[PORTFOLIOS].find_one({})["view_count"] == 2

    def test_other_ip_counts(self, db, portfolio_id):
        record_view(db, portfolio_id, "1.2.3.4", now=NOW)
        assert record_view(db, portfolio_id, "5.6.7.8", now=NOW) is True

    def test_defaults_for_missing_client_details(self, db, portfolio_id):
        record_view(db, portfolio_id, None, now=NOW)
        view = db[VIEWS].find_one({})
        assert view["ip_address"] == "unknown"
        assert view["user_agent"] == "unknown"
        assert "referrer" not in view

    def test_unknown_portfolio(self, db):
        with pytest.raises(NotFoundError):
            record_view(db, str(ObjectId()), "1.2.3.4")

    def test_malformed_id(self, db):
        with pytest.raises(ValidationError, match="Invalid portfolio ID"):
            record_view(db, "not-an-id", "1.2.3.4")


class TestViewStats:
    """Aggregated statistics for the owner."""

    @pytest.fixture
    def visits(self, db, portfolio_id):
        record_view(db, portfolio_id, "1.1.1.1", referrer="https://google.com", now=NOW - timedelta(days=40))
        record_view(db, portfolio_id, "2.2.2.2", referrer="https://google.com", now=NOW - timedelta(days=10))
        record_view(db, portfolio_id, "1.1.1.1", referrer="https://github.com", now=NOW - timedelta(days=3))
        record_view(db, portfolio_id, "3.3.3.3", now=NOW - timedelta(hours=2))
        record_view(db, portfolio_id, "3.3.3.3", referrer="https://google.com", now=NOW)
        return portfolio_id

    def test_all_time(self, db, user, visits):
        stats = view_stats(db, user, visits, now=NOW)
        assert stats["total_views"] == 5
        assert stats["unique_visitors"] == 3
        assert stats["period"] == "all"
        assert stats["top_referrers"] == [
            {"referrer": "https://google.com", "count": 3},
            {"referrer": "https://github.com", "count": 1},
        ]

    @pytest.mark.parametrize("period,total,unique", [
        ("today", 2, 1),
        ("week", 3, 2),
        ("month", 4, 3),
    ])
    def test_periods(self, db, user, visits, period, total, unique):
        stats = view_stats(db, user, visits, period=period, now=NOW)
        assert (stats["total_views"], stats["unique_visitors"]) == (total, unique)

    def test_admin_can_read(self, db, admin, visits):
        assert view_stats(db, admin, visits, now=NOW)["total_views"] == 5

    def test_other_user_is_forbidden(self, db, other_user, visits):
        with pytest.raises(ForbiddenError):
            view_stats(db, other_user, visits)

    def test_unknown_period(self, db, user, visits):
        with pytest.raises(ValidationError) as exc:
            view_stats(db, user, visits, period="year")
        assert exc.value.details == {"allowed": ["all", "today", "week", "month"]}

    def test_unknown_portfolio(self, db, user):
        with pytest.raises(NotFoundError):
            view_stats(db, user, str(ObjectId()))
