"""Periodic maintenance of the reel store."""

from __future__ import annotations

from typing import Any

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger


def run(app: Any) -> None:
    """Enforce the storage quota now and then on every maintenance interval."""
    scheduler = BlockingScheduler()
    interval = app.config.store.maintenance_interval_minutes

    scheduler.add_job(
        app.enforce_storage_quota,
        trigger=IntervalTrigger(minutes=interval),
        id="enforce_storage_quota",
        name="Enforce Storage Quota",
        max_instances=1,
    )

    store_settings = app.config.store
    app.logger.info("Click reel maintenance started")
    app.logger.info("Database: %s", store_settings.database_path)
    app.logger.info("Maintenance interval: %s minutes", interval)
    app.logger.info(
        "Retention: keep %s reel(s) once %s are stored or usage reaches %.0f%%",
        store_settings.keep_count,
        store_settings.max_reels,
        store_settings.quota_warning_percent,
    )

    try:
        app.enforce_storage_quota()
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        app.logger.info("Click reel maintenance stopped")
        scheduler.shutdown()


__all__ = ["run"]
