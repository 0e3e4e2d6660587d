"""Synchronization of every active source into per-user items."""
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from pesos import db, get_run_status
from pesos.models import Item, Source, UserSource
from pesos.services import activity_logger as events
from pesos.services.activity_logger import ActivityLogger
from pesos.services.dedup import filter_new_entries
from pesos.services.errors import ConcurrencyConflict, FatalError, PersistenceError, SyncError
from pesos.services.fetcher import FeedFetcher
from pesos.services.item_writer import ItemWriter, clip_title
from pesos.services.rss_parser import ParsedEntry, RSSParser
from pesos.services.run_status import RunStatus

logger = logging.getLogger(__name__)

BATCH_SIZE = 5
BATCH_DELAY = 0.1  # seconds between batches


@dataclass
class SourceJob:
    """An active source and the users subscribed to it."""

    id: int
    url: str
    user_ids: List[str] = field(default_factory=list)


@dataclass
class FeedStats:
    url: str
    new_items_count: int = 0
    total_items_processed: int = 0
    error: Optional[str] = None


@dataclass
class SyncStats:
    """Counters accumulated over one run."""

    triggered_by: str = 'manual'
    successful_feeds: List[FeedStats] = field(default_factory=list)
    failed_feeds: List[FeedStats] = field(default_factory=list)
    skipped_feeds: List[str] = field(default_factory=list)
    skipped_failed_feeds: List[str] = field(default_factory=list)
    total_sources: int = 0
    total_new_items: int = 0
    total_feeds_processed: int = 0
    execution_time_ms: int = 0

    @property
    def total_errors(self) -> int:
        return len(self.failed_feeds)

    @property
    def success(self) -> bool:
        """False only when every attempted source failed."""
        attempted = self.total_feeds_processed + self.total_errors
        return attempted == 0 or self.total_feeds_processed > 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data['total_errors'] = self.total_errors
        data['success'] = self.success
        return data

    def audit_metadata(self) -> dict:
        return {
            'triggered_by': self.triggered_by,
            'total_feeds': self.total_sources,
            'processed_feeds': self.total_feeds_processed,
            'failed_feeds': self.total_errors,
            'skipped_feeds': len(self.skipped_feeds),
            'skipped_failed_feeds': len(self.skipped_failed_feeds),
            'new_items': self.total_new_items,
            'execution_time_ms': self.execution_time_ms,
            'errors': {f.url: f.error for f in self.failed_feeds},
        }

    def summary(self) -> str:
        """Human-readable report of the run."""
        lines = ['Feed Update Complete', '']

        if self.successful_feeds:
            lines.append('Feeds with new items:')
            for feed in sorted(self.successful_feeds, key=lambda f: f.new_items_count, reverse=True):
                lines.append(
                    f"• {feed.url}: {feed.new_items_count} new items "
                    f"(processed {feed.total_items_processed} items)"
                )
            lines.append('')

        if self.failed_feeds:
            lines.append('Failed feeds:')
            for feed in self.failed_feeds:
                lines.append(f"• {feed.url}: {feed.error}")
            lines.append('')

        unchanged = self.total_feeds_processed - len(self.successful_feeds)
        if unchanged > 0:
            lines.append(f"{unchanged} other feeds checked (no new items or problems)")
            lines.append('')

        lines.extend([
            'Summary:',
            f"• Total new items: {self.total_new_items}",
            f"• Total feeds processed: {self.total_feeds_processed}",
            f"• Failed feeds: {self.total_errors}",
            f"• Skipped feeds (no users): {len(self.skipped_feeds)}",
            f"• Skipped feeds (recent failure): {len(self.skipped_failed_feeds)}",
            f"• Execution time: {self.execution_time_ms / 1000:.2f}s",
        ])
        return '\n'.join(lines)


class FeedSynchronizer:
    """Fetch every active source and store new entries for each subscriber."""

    def __init__(self, status: RunStatus, fetcher: Optional[FeedFetcher] = None,
                 parser: Optional[RSSParser] = None, writer: Optional[ItemWriter] = None,
                 activity: Optional[ActivityLogger] = None, batch_size: int = BATCH_SIZE,
                 batch_delay: float = BATCH_DELAY, sleep: Callable[[float], None] = time.sleep):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.status = status
        self.clock: Callable[[], datetime] = status.clock
        self.fetcher = fetcher or FeedFetcher()
        self.parser = parser or RSSParser()
        self.writer = writer or ItemWriter(clock=self.clock)
        self.activity = activity or ActivityLogger()
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.sleep = sleep

    @classmethod
    def from_app(cls, app) -> 'FeedSynchronizer':
        """Build a synchronizer from the app's configuration and run status."""
        config = app.config
        status = get_run_status(app)
        return cls(
            status,
            fetcher=FeedFetcher(
                timeout=config['FEED_FETCH_TIMEOUT'],
                user_agent=config['FEED_USER_AGENT'],
            ),
            parser=RSSParser(
                max_entries=config['SYNC_MAX_ITEMS_PER_FEED'],
                untitled=config['UNTITLED_PLACEHOLDER'],
                missing_date_policy=config['MISSING_DATE_POLICY'],
            ),
            writer=ItemWriter(clock=status.clock),
            batch_size=config['SYNC_BATCH_SIZE'],
            batch_delay=config['SYNC_BATCH_DELAY'],
        )

    def run(self, clear_failed: bool = False, triggered_by: str = 'manual') -> SyncStats:
        """
        Synchronize all active sources.

        Args:
            clear_failed: Forget failure backoff before starting
            triggered_by: Who asked for the run (manual, cron, ...)

        Returns:
            SyncStats for the run. stats.success is False when every
            attempted source failed.

        Raises:
            ConcurrencyConflict: A run is already in progress; nothing changed
            FatalError: Sources could not be loaded from storage
        """
        if not self.status.try_start():
            raise ConcurrencyConflict("Update already in progress")

        started = time.monotonic()
        stats = SyncStats(triggered_by=triggered_by)

        try:
            self.status.add_log(f"Starting feed update (triggered by {triggered_by})")
            if clear_failed:
                self.status.failures.clear()
            self.activity.log_system_update(
                events.SYNC_STARTED,
                {'triggered_by': triggered_by, 'clear_failed': clear_failed},
            )

            jobs = self.load_sources()
            stats.total_sources = len(jobs)
            self.status.add_log(f"Found {len(jobs)} active sources to process")

            total_batches = math.ceil(len(jobs) / self.batch_size)
            with ThreadPoolExecutor(max_workers=self.batch_size, thread_name_prefix='feed-fetch') as executor:
                for index in range(0, len(jobs), self.batch_size):
                    batch = jobs[index:index + self.batch_size]
                    self.status.add_log(
                        f"Processing batch {index // self.batch_size + 1} of {total_batches}"
                    )
                    self._process_batch(executor, batch, stats)

                    if index + self.batch_size < len(jobs) and self.batch_delay:
                        self.sleep(self.batch_delay)
        except Exception as e:
            db.session.rollback()
            stats.execution_time_ms = _elapsed_ms(started)
            message = str(e) or e.__class__.__name__
            logger.exception("Feed update failed")
            self.status.add_log(f"Fatal error: {message}")
            self.status.finish(success=False, error=message)
            self.activity.log_system_update(
                events.SYNC_FAILED, stats.audit_metadata(), success=False, error_message=message
            )
            raise

        stats.execution_time_ms = _elapsed_ms(started)
        summary = stats.summary()
        self.status.add_log(summary)

        if stats.success:
            self.status.finish(success=True)
            self.activity.log_system_update(
                events.SYNC_COMPLETED, dict(stats.audit_metadata(), summary=summary)
            )
        else:
            error = f"All {stats.total_errors} feeds failed"
            self.status.finish(success=False, error=error)
            self.activity.log_system_update(
                events.SYNC_FAILED, dict(stats.audit_metadata(), summary=summary),
                success=False, error_message=error,
            )
        return stats

    def load_sources(self) -> List[SourceJob]:
        """Active sources with their subscribers, in id order."""
        try:
            rows = (
                db.session.query(Source.id, Source.url, UserSource.user_id)
                .outerjoin(UserSource, UserSource.source_id == Source.id)
                .filter(Source.active == 'Y')
                .order_by(Source.id, UserSource.user_id)
                .all()
            )
        except SQLAlchemyError as e:
            db.session.rollback()
            raise FatalError(f"Could not load sources: {e}") from e

        jobs: Dict[int, SourceJob] = {}
        for source_id, url, user_id in rows:
            job = jobs.setdefault(source_id, SourceJob(id=source_id, url=url))
            if user_id is not None:
                job.user_ids.append(user_id)
        return list(jobs.values())

    def _process_batch(self, executor: ThreadPoolExecutor, batch: List[SourceJob], stats: SyncStats) -> None:
        runnable = []
        for job in batch:
            if not job.user_ids:
                self.status.add_log(f"Skipping {job.url} - no users associated")
                stats.skipped_feeds.append(job.url)
                continue
            if self.status.failures.should_skip(job.url):
                stats.skipped_failed_feeds.append(job.url)
                continue
            self.status.add_log(f"Processing {job.url} ({len(job.user_ids)} users)")
            runnable.append(job)

        # Network work runs concurrently; storage stays on this thread's session
        now = self.clock()
        futures = [(job, executor.submit(self._fetch_entries, job.url, now)) for job in runnable]

        for job, future in futures:
            feed_stats = FeedStats(url=job.url)
            try:
                entries = future.result()
                feed_stats.total_items_processed = len(entries)
                self._store_entries(job, entries, feed_stats)
            except Exception as e:
                self._record_failure(job, e, feed_stats, stats)
                continue

            stats.total_feeds_processed += 1
            if feed_stats.new_items_count > 0:
                stats.successful_feeds.append(feed_stats)
                stats.total_new_items += feed_stats.new_items_count

    def _fetch_entries(self, url: str, now: datetime) -> List[ParsedEntry]:
        fetched = self.fetcher.fetch(url)
        entries = self.parser.parse(fetched.text, fetched.content_type, now=now)
        self.status.add_log(f"Found {len(entries)} items in {url}")
        return entries

    def _store_entries(self, job: SourceJob, entries: List[ParsedEntry], feed_stats: FeedStats) -> None:
        """Diff and insert for each subscriber, one transaction per user."""
        for user_id in job.user_ids:
            try:
                new_entries = filter_new_entries(user_id, job.id, entries)
                if not new_entries:
                    continue
                inserted = self.writer.insert(user_id, job.id, new_entries)
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                raise PersistenceError(f"Database error for user {user_id}: {e}") from e
            except PersistenceError:
                db.session.rollback()
                raise

            if inserted:
                self.status.add_log(f"Adding {inserted} new items from {job.url} for user {user_id}")
            feed_stats.new_items_count += inserted

    def _record_failure(self, job: SourceJob, error: Exception, feed_stats: FeedStats, stats: SyncStats) -> None:
        message = str(error) or error.__class__.__name__
        if not isinstance(error, SyncError):
            logger.exception(f"Unexpected error processing {job.url}")
        else:
            logger.warning(f"Feed {job.url} failed: {message}")

        self.status.add_log(f"Error processing {job.url}: {message}")
        self.status.failures.record(job.url, message)
        self.status.set_error(message)

        feed_stats.error = message
        stats.failed_feeds.append(feed_stats)
        # Rows committed for earlier subscribers still count
        stats.total_new_items += feed_stats.new_items_count

    def refresh_item(self, slug: str) -> Optional[Item]:
        """
        Re-read one stored item from its feed and update it in place.

        Returns the updated item, or None when the item, its active source
        or the matching feed entry cannot be found. Fetch and parse errors
        propagate.
        """
        item = Item.query.filter_by(slug=slug).first()
        if item is None:
            logger.warning(f"No item found with slug {slug}")
            return None

        source = Source.query.filter_by(id=item.source_id, active='Y').first()
        if source is None:
            logger.warning(f"Active source not found for id {item.source_id}")
            return None

        fetched = self.fetcher.fetch(source.url)
        entries = self.parser.parse(fetched.text, fetched.content_type, now=self.clock())
        match = next((e for e in entries if e.link == item.url), None)
        if match is None:
            logger.warning(f"Could not find feed entry for {item.url} in {source.url}")
            return None

        item.title = clip_title(match.title)
        item.description = match.content
        item.postdate = match.publish_date
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError(f"Failed to update item {slug}: {e}") from e

        logger.info(f"Refreshed item {slug} from {source.url}")
        self.activity.log(events.ITEM_REFRESHED, {'slug': slug, 'url': item.url, 'source_url': source.url})
        return item


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
