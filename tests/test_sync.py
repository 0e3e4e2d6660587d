import pytest
from pesos import db
from pesos.models import Item, ActivityLog, Source
from pesos.services import (
    FeedSynchronizer, ConcurrencyConflict, FatalError, HttpStatusError, FetchTimeout,
    ParseError, PersistenceError, ItemWriter,
)
from conftest import SAMPLE_RSS_XML, FIXED_NOW, StubFetcher, rss_feed

FEED_A = 'https://a.example.com/rss'
FEED_B = 'https://b.example.com/rss'
FEED_C = 'https://c.example.com/rss'


class TestFeedSynchronizer:
    def test_new_items_are_stored(self, synchronizer, fetcher, subscribe):
        """Two items, one without pubDate: both stored, undated one at run time."""
        subscribe(FEED_A, 'user-1')
        fetcher.responses[FEED_A] = SAMPLE_RSS_XML

        stats = synchronizer.run()

        assert stats.success
        assert stats.total_new_items == 2
        assert stats.total_feeds_processed == 1
        items = {i.url: i for i in Item.query.filter_by(user_id='user-1')}
        assert len(items) == 2
        assert items['https://example.com/article-2'].postdate == FIXED_NOW
        slugs = [i.slug for i in items.values()]
        assert all(slugs)
        assert len(set(slugs)) == 2

    def test_second_run_is_idempotent(self, synchronizer, fetcher, subscribe):
        subscribe(FEED_A, 'user-1')
        fetcher.responses[FEED_A] = SAMPLE_RSS_XML

        synchronizer.run()
        second = synchronizer.run()

        assert second.total_new_items == 0
        assert second.total_feeds_processed == 1
        assert second.successful_feeds == []
        assert Item.query.count() == 2

    def test_items_are_per_user(self, synchronizer, fetcher, subscribe):
        subscribe(FEED_A, 'user-1', 'user-2')
        links = [f'https://a.example.com/{i}' for i in range(3)]
        fetcher.responses[FEED_A] = rss_feed(*links)

        stats = synchronizer.run()

        assert stats.total_new_items == 6
        assert Item.query.filter_by(user_id='user-1').count() == 3
        assert Item.query.filter_by(user_id='user-2').count() == 3

    def test_only_new_entries_are_added(self, synchronizer, fetcher, subscribe):
        subscribe(FEED_A, 'user-1')
        fetcher.responses[FEED_A] = rss_feed('https://a.example.com/1')
        synchronizer.run()

        fetcher.responses[FEED_A] = rss_feed('https://a.example.com/2', 'https://a.example.com/1')
        stats = synchronizer.run()

        assert stats.total_new_items == 1
        assert Item.query.count() == 2

    def test_partial_failure_is_isolated(self, synchronizer, fetcher, subscribe):
        subscribe(FEED_A, 'user-1')
        subscribe(FEED_B, 'user-1')
        subscribe(FEED_C, 'user-1')
        fetcher.responses[FEED_A] = rss_feed('https://a.example.com/1')
        fetcher.responses[FEED_B] = HttpStatusError(503, FEED_B)
        fetcher.responses[FEED_C] = rss_feed('https://c.example.com/1', 'https://c.example.com/2')

        stats = synchronizer.run()

        assert stats.success
        assert stats.total_new_items == 3
        assert stats.total_feeds_processed == 2
        assert stats.total_errors == 1
        assert stats.failed_feeds[0].url == FEED_B
        assert stats.failed_feeds[0].error == 'HTTP error! status: 503'
        assert list(synchronizer.status.failures.snapshot()) == [FEED_B]
        assert synchronizer.status.status == 'completed'

    def test_all_sources_failing_fails_the_run(self, synchronizer, fetcher, subscribe):
        subscribe(FEED_A, 'user-1')
        subscribe(FEED_B, 'user-1')
        fetcher.responses[FEED_A] = FetchTimeout('timed out')
        fetcher.responses[FEED_B] = ParseError('not a feed')

        stats = synchronizer.run()

        assert not stats.success
        assert stats.total_errors == 2
        assert synchronizer.status.status == 'failed'
        assert synchronizer.status.last_error == 'All 2 feeds failed'

    def test_persistence_error_is_isolated(self, run_status, fetcher, subscribe):
        broken_id = subscribe(FEED_A, 'user-1')
        subscribe(FEED_B, 'user-1')
        fetcher.responses[FEED_A] = rss_feed('https://a.example.com/1')
        fetcher.responses[FEED_B] = rss_feed('https://b.example.com/1')

        class BrokenWriter(ItemWriter):
            def insert(self, user_id, source_id, entries):
                if source_id == broken_id:
                    raise PersistenceError('disk full')
                return super().insert(user_id, source_id, entries)

        synchronizer = FeedSynchronizer(run_status, fetcher=fetcher, writer=BrokenWriter(), batch_delay=0)
        stats = synchronizer.run()

        assert stats.success
        assert stats.total_errors == 1
        assert stats.failed_feeds[0].url == FEED_A
        assert Item.query.count() == 1
        assert Item.query.one().url == 'https://b.example.com/1'

    def test_sources_without_users_are_skipped(self, synchronizer, fetcher, subscribe):
        subscribe(FEED_A)
        subscribe(FEED_B, 'user-1')
        fetcher.responses[FEED_B] = rss_feed('https://b.example.com/1')

        stats = synchronizer.run()

        assert stats.skipped_feeds == [FEED_A]
        assert stats.skipped_failed_feeds == []
        assert fetcher.call_count(FEED_A) == 0

    def test_inactive_sources_are_ignored(self, synchronizer, fetcher, subscribe):
        subscribe(FEED_A, 'user-1', active='N')

        stats = synchronizer.run()

        assert stats.total_sources == 0
        assert fetcher.calls == []

    def test_batches_cover_every_source(self, run_status, subscribe):
        urls = [f'https://feed{i}.example.com/rss' for i in range(12)]
        fetcher = StubFetcher({url: rss_feed(f'{url}/1') for url in urls})
        for url in urls:
            subscribe(url, 'user-1')
        delays = []

        synchronizer = FeedSynchronizer(run_status, fetcher=fetcher, batch_size=5,
                                        batch_delay=0.1, sleep=delays.append)
        stats = synchronizer.run()

        assert stats.total_feeds_processed == 12
        assert sorted(fetcher.calls) == sorted(urls)
        # Three batches, a pause between each pair
        assert delays == [0.1, 0.1]
        logs = run_status.snapshot()['logs']
        assert any('Processing batch 3 of 3' in line for line in logs)

    def test_failed_feed_is_skipped_within_cooldown(self, synchronizer, fetcher, subscribe, clock):
        subscribe(FEED_A, 'user-1')
        subscribe(FEED_B, 'user-1')
        fetcher.responses[FEED_A] = rss_feed('https://a.example.com/1')
        fetcher.responses[FEED_B] = HttpStatusError(500, FEED_B)
        synchronizer.run()

        clock.advance(hours=1)
        stats = synchronizer.run()

        assert stats.skipped_failed_feeds == [FEED_B]
        assert stats.total_errors == 0
        assert fetcher.call_count(FEED_B) == 1

    def test_failed_feed_is_retried_after_cooldown(self, synchronizer, fetcher, subscribe, clock):
        subscribe(FEED_B, 'user-1')
        fetcher.responses[FEED_B] = HttpStatusError(500, FEED_B)
        synchronizer.run()

        clock.advance(hours=25)
        fetcher.responses[FEED_B] = rss_feed('https://b.example.com/1')
        stats = synchronizer.run()

        assert stats.skipped_failed_feeds == []
        assert stats.total_new_items == 1
        assert fetcher.call_count(FEED_B) == 2
        assert len(synchronizer.status.failures) == 0

    def test_clear_failed_overrides_cooldown(self, synchronizer, fetcher, subscribe, clock):
        subscribe(FEED_B, 'user-1')
        fetcher.responses[FEED_B] = HttpStatusError(500, FEED_B)
        synchronizer.run()

        clock.advance(minutes=1)
        fetcher.responses[FEED_B] = rss_feed('https://b.example.com/1')
        stats = synchronizer.run(clear_failed=True)

        assert stats.skipped_failed_feeds == []
        assert stats.total_new_items == 1
        assert fetcher.call_count(FEED_B) == 2

    def test_conflicting_run_is_refused(self, synchronizer, run_status):
        run_status.try_start()
        run_status.add_log('in progress')

        with pytest.raises(ConcurrencyConflict):
            synchronizer.run()

        assert run_status.is_running
        assert run_status.snapshot()['logs'][-1].endswith('in progress')

    def test_run_started_during_a_run_does_not_disturb_it(self, run_status, subscribe):
        conflicts = []

        class ReentrantFetcher(StubFetcher):
            def fetch(self, url):
                try:
                    synchronizer.run()
                except ConcurrencyConflict as e:
                    conflicts.append(e)
                return super().fetch(url)

        fetcher = ReentrantFetcher({FEED_A: rss_feed('https://a.example.com/1')})
        subscribe(FEED_A, 'user-1')
        synchronizer = FeedSynchronizer(run_status, fetcher=fetcher, batch_delay=0)

        stats = synchronizer.run()

        assert len(conflicts) == 1
        assert stats.total_new_items == 1
        starts = [line for line in run_status.snapshot()['logs'] if 'Starting feed update' in line]
        assert len(starts) == 1
        assert not run_status.is_running

    def test_unreachable_storage_fails_the_run(self, synchronizer, run_status):
        # Sources can no longer be read; the audit table still works
        Source.__table__.drop(db.engine)

        with pytest.raises(FatalError):
            synchronizer.run()

        assert run_status.status == 'failed'
        assert 'Could not load sources' in run_status.last_error
        assert not run_status.is_running
        failed = ActivityLog.query.filter_by(event_type='feed_sync_failed').one()
        assert failed.success is False

    def test_audit_events_are_recorded(self, synchronizer, fetcher, subscribe):
        subscribe(FEED_A, 'user-1')
        fetcher.responses[FEED_A] = SAMPLE_RSS_XML

        synchronizer.run(triggered_by='cron')

        events = [log.event_type for log in ActivityLog.query.order_by(ActivityLog.id)]
        assert events == ['feed_sync_started', 'feed_sync_completed']
        completed = ActivityLog.query.filter_by(event_type='feed_sync_completed').one()
        assert completed.source == 'cron'
        assert completed.details['new_items'] == 2
        assert completed.details['triggered_by'] == 'cron'
        assert 'Total new items: 2' in completed.details['summary']

    def test_summary_lists_feeds(self, synchronizer, fetcher, subscribe):
        subscribe(FEED_A, 'user-1')
        subscribe(FEED_B, 'user-1')
        subscribe(FEED_C)
        fetcher.responses[FEED_A] = SAMPLE_RSS_XML
        fetcher.responses[FEED_B] = HttpStatusError(404, FEED_B)

        summary = synchronizer.run().summary()

        assert f'• {FEED_A}: 2 new items (processed 2 items)' in summary
        assert f'• {FEED_B}: HTTP error! status: 404' in summary
        assert '• Skipped feeds (no users): 1' in summary
        assert '• Failed feeds: 1' in summary


class TestRefreshItem:
    def test_refresh_updates_item(self, synchronizer, fetcher, subscribe):
        subscribe(FEED_A, 'user-1')
        fetcher.responses[FEED_A] = SAMPLE_RSS_XML
        synchronizer.run()
        item = Item.query.filter_by(url='https://example.com/article-1').one()
        slug = item.slug

        fetcher.responses[FEED_A] = SAMPLE_RSS_XML.replace('First Article', 'First Article (updated)')
        refreshed = synchronizer.refresh_item(slug)

        assert refreshed is not None
        assert refreshed.title == 'First Article (updated)'
        assert ActivityLog.query.filter_by(event_type='feed_item_refreshed').count() == 1

    def test_refresh_unknown_slug(self, synchronizer):
        assert synchronizer.refresh_item('missing') is None

    def test_refresh_without_matching_entry(self, synchronizer, fetcher, subscribe):
        subscribe(FEED_A, 'user-1')
        fetcher.responses[FEED_A] = SAMPLE_RSS_XML
        synchronizer.run()
        slug = Item.query.first().slug

        fetcher.responses[FEED_A] = rss_feed('https://example.com/something-else')

        assert synchronizer.refresh_item(slug) is None
