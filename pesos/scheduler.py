import os
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger


scheduler = BackgroundScheduler()


def init_scheduler(app):
    """Initialize the background scheduler for periodic feed synchronization."""
    fetch_interval = int(os.getenv('FETCH_INTERVAL_MINUTES', 30))

    def sync_job():
        with app.app_context():
            from pesos.services import FeedSynchronizer, ConcurrencyConflict
            try:
                stats = FeedSynchronizer.from_app(app).run(triggered_by='cron')
            except ConcurrencyConflict:
                app.logger.info("Scheduled sync skipped: an update is already running")
                return
            except Exception as e:
                app.logger.error(f"Scheduled sync failed: {e}")
                return
            app.logger.info(
                f"Scheduled sync: {stats.total_new_items} new items, "
                f"{stats.total_feeds_processed} feeds processed, "
                f"{stats.total_errors} errors, "
                f"{len(stats.skipped_failed_feeds)} skipped after failure"
            )

    scheduler.add_job(
        sync_job,
        trigger=IntervalTrigger(minutes=fetch_interval),
        id='sync_feeds',
        name='Synchronize RSS feeds',
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )

    scheduler.start()
    app.logger.info(f"Scheduler started: syncing every {fetch_interval} minutes")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
