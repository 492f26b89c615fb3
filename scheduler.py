"""
Centralized Scheduler — Registers all periodic background jobs.

Jobs:
  - Daily analytics snapshots (2 AM)
  - Weekly analytics snapshots (Monday 3 AM)
  - Abandoned time-session cleanup (every 10 minutes)
  - TTL cache cleanup (every 1 hour)
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)


def _snapshot_all(app, generate, day: date, label: str) -> list[dict]:
    """Run ``generate(classroom_id, day)`` for every active classroom.

    One classroom's failure is logged and does not stop the others.
    """
    from db_stores import ClassroomStoreDB

    results = []
    with app.app_context():
        for classroom in ClassroomStoreDB.active_classrooms():
            try:
                generate(classroom["id"], day)
                results.append({"classroom_id": classroom["id"], "success": True})
            except Exception as e:
                logger.exception("%s analytics failed for classroom %s", label, classroom["id"])
                results.append({"classroom_id": classroom["id"], "success": False, "error": str(e)})
    ok = sum(1 for r in results if r["success"])
    logger.info("%s analytics: %d/%d classrooms for %s", label, ok, len(results), day.isoformat())
    return results


def run_daily_analytics(app, day: date | None = None) -> list[dict]:
    """Generate the daily snapshot (default: yesterday) for every active classroom."""
    from analytics import AnalyticsService

    day = day or date.today() - timedelta(days=1)
    return _snapshot_all(app, AnalyticsService.generate_daily_snapshot, day, "Daily")


def run_weekly_analytics(app, week_ending: date | None = None) -> list[dict]:
    """Generate the weekly snapshot for the week ending ``week_ending`` (default: yesterday)."""
    from analytics import AnalyticsService

    week_ending = week_ending or date.today() - timedelta(days=1)
    return _snapshot_all(app, AnalyticsService.generate_weekly_snapshot, week_ending, "Weekly")


def cleanup_sessions(app) -> int:
    """Close time sessions whose heartbeat has gone stale."""
    from time_tracking import TimeTrackingService

    with app.app_context():
        try:
            return TimeTrackingService().cleanup_abandoned_sessions()
        except Exception:
            logger.exception("Session cleanup failed")
            return 0


def _cleanup_cache() -> None:
    from cache_backend import get_cache

    removed = get_cache().cleanup()
    if removed:
        logger.debug("Removed %d expired cache entries", removed)


def init_scheduler(app):
    """Start a centralized background scheduler for all periodic jobs.

    Returns the scheduler instance.
    """
    # Default: local time, the same clock as stored timestamps
    options = {"daemon": True}
    if app.config.get("SCHEDULER_TIMEZONE"):
        options["timezone"] = app.config["SCHEDULER_TIMEZONE"]
    scheduler = BackgroundScheduler(**options)

    # 1. Daily analytics: cron at 2 AM
    scheduler.add_job(
        func=run_daily_analytics,
        args=[app],
        trigger="cron",
        hour=2,
        id="daily_analytics",
        replace_existing=True,
    )

    # 2. Weekly analytics: Mondays at 3 AM
    scheduler.add_job(
        func=run_weekly_analytics,
        args=[app],
        trigger="cron",
        day_of_week="mon",
        hour=3,
        id="weekly_analytics",
        replace_existing=True,
    )

    # 3. Abandoned session cleanup: every 10 minutes
    scheduler.add_job(
        func=cleanup_sessions,
        args=[app],
        trigger="interval",
        minutes=10,
        id="session_cleanup",
        replace_existing=True,
    )

    # 4. TTL cache cleanup: every 1 hour
    scheduler.add_job(
        func=_cleanup_cache,
        trigger="interval",
        hours=1,
        id="cache_cleanup",
        replace_existing=True,
    )

    scheduler.start()
    app.logger.info("Centralized scheduler started (analytics, session cleanup, cache cleanup)")
    return scheduler
