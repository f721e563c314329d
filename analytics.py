"""Portfolio view tracking."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from pymongo.database import Database

from auth import Identity
from database import PORTFOLIOS, VIEWS, create_document, to_oid, utcnow
from errors import ForbiddenError, NotFoundError, ValidationError
from schemas import PortfolioView

logger = logging.getLogger(__name__)

DEDUPE_WINDOW = timedelta(hours=1)
PERIODS = ("all", "today", "week", "month")
TOP_REFERRERS = 5


def record_view(db: Database, portfolio_id: str, ip_address: Optional[str], user_agent: Optional[str] = None,
                referrer: Optional[str] = None, now: Optional[datetime] = None) -> bool:
    """Store a visit unless this IP already viewed the portfolio within the last hour.

    Returns True when a new view was counted.
    """
    oid = to_oid(portfolio_id, "Portfolio")
    if not db[PORTFOLIOS].find_one({"_id": oid}, {"_id": 1}):
        raise NotFoundError("Portfolio not found")

    now = now or utcnow()
    ip_address = ip_address or "unknown"
    recent = db[VIEWS].find_one({
        "portfolio_id": portfolio_id,
        "ip_address": ip_address,
        "date": {"$gte": now - DEDUPE_WINDOW},
    })
    if recent:
        return False

    create_document(db, VIEWS, PortfolioView(
        portfolio_id=portfolio_id,
        ip_address=ip_address,
        user_agent=user_agent or "unknown",
        referrer=referrer or None,
        date=now,
    ))
    db[PORTFOLIOS].update_one({"_id": oid}, {"$inc": {"view_count": 1}})
    return True


def _period_start(period: str, now: datetime) -> Optional[datetime]:
    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now - timedelta(days=30)
    return None


def view_stats(db: Database, identity: Identity, portfolio_id: str, period: str = "all",
               now: Optional[datetime] = None) -> dict:
    if period not in PERIODS:
        raise ValidationError(f"Unknown period '{period}'", details={"allowed": list(PERIODS)})
    portfolio = db[PORTFOLIOS].find_one({"_id": to_oid(portfolio_id, "Portfolio")}, {"user_id": 1})
    if not portfolio:
        raise NotFoundError("Portfolio not found")
    if portfolio["user_id"] != identity.user_id and not identity.is_admin:
        raise ForbiddenError("You do not have permission to view these statistics")

    match = {"portfolio_id": portfolio_id}
    start = _period_start(period, now or utcnow())
    if start is not None:
        match["date"] = {"$gte": start}

    total = db[VIEWS].count_documents(match)
    unique = len(db[VIEWS].distinct("ip_address", match))
    referrers = db[VIEWS].aggregate([
        {"$match": {**match, "referrer": {"$ne": None}}},
        {"$group": {"_id": "$referrer", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
        {"$limit": TOP_REFERRERS},
    ])
    return {
        "total_views": total,
        "unique_visitors": unique,
        "period": period,
        "top_referrers": [{"referrer": r["_id"], "count": r["count"]} for r in referrers],
    }
