#!/usr/bin/env python3
"""Synchronize all feeds once, or force-refresh a single item."""
import argparse
import os
import sys

# Add the parent directory to the path so we can import pesos
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from pesos import create_app
from pesos.services import FeedSynchronizer, SyncError


def update_feeds(clear_failed=False, app=None):
    """
    Run a full synchronization.

    Failure backoff lives in the running process, so clear_failed only
    matters when app is a long-lived application passed in by the caller.

    Returns:
        True if at least one source succeeded (or none were attempted).
    """
    app = app or create_app()

    with app.app_context():
        try:
            stats = FeedSynchronizer.from_app(app).run(clear_failed=clear_failed, triggered_by='cli')
        except SyncError as e:
            print(f"Feed update failed: {e}")
            return False

        print(stats.summary())
        return stats.success


def force_update(slug, app=None):
    """Refresh one stored item from its feed. Returns True on success."""
    app = app or create_app()

    with app.app_context():
        try:
            item = FeedSynchronizer.from_app(app).refresh_item(slug)
        except SyncError as e:
            print(f"Forced update failed: {e}")
            return False

        if item is None:
            print(f"Could not refresh item with slug {slug}")
            return False

        print(f"Refreshed {item.slug}: {item.title}")
        return True


def main(argv=None, app=None):
    parser = argparse.ArgumentParser(description='Synchronize RSS feeds into stored items')
    parser.add_argument(
        '--clear-failed',
        action='store_true',
        help='Retry sources that failed recently instead of skipping them'
    )
    parser.add_argument(
        '--force',
        metavar='SLUG',
        help='Re-read a single item from its feed and update it'
    )
    args = parser.parse_args(argv)

    if args.force:
        ok = force_update(args.force, app=app)
    else:
        ok = update_feeds(clear_failed=args.clear_failed, app=app)
    return 0 if ok else 1


if __name__ == '__main__':
    sys.exit(main())
