# backend/settlement/routes/system.py
"""
System health and operating-calendar endpoints.

The calendar check reports "degraded" when the current year has no lunar
holiday table: working dates still compute, but without lunar holidays.
"""

import time
from flask import Blueprint, current_app, request

from ..errors import CalendarGap
from ..extensions import db
from ..models import StockRecord, ReturnStatement, DeductionStatement
from ..services.business_day_service import business_day_window, get_calendar, working_date
from settlement.time_utils import parse_iso_datetime, to_local, to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        variant_count = db.session.query(StockRecord).count()
        pending_returns = db.session.query(ReturnStatement).filter_by(status="pending").count()
        pending_deductions = db.session.query(DeductionStatement).filter_by(status="pending").count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "variants": variant_count,
                "pending_return_statements": pending_returns,
                "pending_deduction_statements": pending_deductions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_calendar_health() -> dict:
    """Check that the holiday table covers the current business year."""
    calendar = get_calendar()
    year = to_local(utcnow()).year
    try:
        calendar.lunar_holidays(year)
    except CalendarGap as e:
        return {
            "status": "degraded",
            "warning": e.message,
            "details": {"known_years": calendar.known_years},
        }
    return {
        "status": "healthy",
        "details": {"known_years": calendar.known_years},
    }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    calendar_health = check_calendar_health()

    all_checks = [database_health, calendar_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "calendar": calendar_health,
        }
    }

    return response, http_status


@system_bp.get("/api/system/working-date")
def working_date_route():
    """
    Working date of a timestamp (default: now) and its listing window.

    Query: ?at=2025-03-14T06:00:00Z
    """
    raw = request.args.get("at")
    try:
        at = parse_iso_datetime(raw) if raw else utcnow()
    except ValueError:
        return {"error": "at must be an ISO-8601 datetime"}, 400
    if at is None:
        return {"error": "at must be an ISO-8601 datetime"}, 400

    day = working_date(at)
    return {
        "at": to_utc_z(at),
        "working_date": day.isoformat(),
        "window": business_day_window(day).to_dict(),
    }
