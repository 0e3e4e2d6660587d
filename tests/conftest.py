"""Shared test fixtures for PESOS tests."""
import threading
from datetime import datetime, timedelta

import pytest

from pesos import create_app, db, RUN_STATUS_EXTENSION
from pesos.models import Source, UserSource
from pesos.services import FetchedFeed, FeedSynchronizer, RunStatus


SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <description>Description of the first article</description>
      <content:encoded><![CDATA[<p>Full text of the first article</p>]]></content:encoded>
      <pubDate>Fri, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <description>Description of the second article</description>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.org"/>
  <id>urn:uuid:feed</id>
  <updated>2026-02-13T10:00:00Z</updated>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.org/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_JSON_FEED = """{
  "version": "https://jsonfeed.org/version/1.1",
  "title": "Test JSON Feed",
  "items": [
    {
      "id": "1",
      "url": "https://example.net/post-1",
      "title": "JSON Post",
      "content_html": "<p>Hello</p>",
      "date_published": "2026-02-13T10:00:00+02:00"
    },
    {
      "id": "2",
      "content_text": "No link here"
    }
  ]
}"""

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0)


def rss_feed(*links, title='Feed'):
    """Build a minimal RSS document with one dated item per link."""
    items = ''.join(
        f"<item><title>{title} {i}</title><link>{link}</link>"
        f"<pubDate>Fri, 13 Feb 2026 10:00:00 GMT</pubDate></item>"
        for i, link in enumerate(links)
    )
    return f'<?xml version="1.0"?><rss version="2.0"><channel><title>{title}</title>{items}</channel></rss>'


class FakeClock:
    """Settable clock for backoff and timestamp tests."""

    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class StubFetcher:
    """Serve canned bodies per URL; an exception value is raised instead."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, url):
        with self._lock:
            self.calls.append(url)
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return FetchedFeed(url=url, text=response, content_type='application/rss+xml')

    def call_count(self, url):
        return self.calls.count(url)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(clock):
    """Create test application."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SYNC_BATCH_DELAY': 0,
    })
    app.extensions[RUN_STATUS_EXTENSION] = RunStatus.from_config(app.config, clock=clock)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def subscribe(app):
    """Create a source (if needed) and subscribe users to it. Returns the source id."""
    def _subscribe(url, *user_ids, active='Y'):
        source = Source.query.filter_by(url=url).first()
        if source is None:
            source = Source(url=url, active=active)
            db.session.add(source)
            db.session.flush()
        for user_id in user_ids:
            db.session.add(UserSource(user_id=user_id, source_id=source.id))
        db.session.commit()
        return source.id
    return _subscribe


@pytest.fixture
def fetcher():
    return StubFetcher()


@pytest.fixture
def run_status(app):
    return app.extensions[RUN_STATUS_EXTENSION]


@pytest.fixture
def synchronizer(app, run_status, fetcher):
    return FeedSynchronizer(run_status, fetcher=fetcher, batch_size=5, batch_delay=0)
