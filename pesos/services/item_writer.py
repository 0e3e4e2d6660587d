import logging
import secrets
import string
from datetime import datetime
from typing import Callable, Dict, List, Sequence

from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from pesos import db
from pesos.models import Item
from pesos.services.errors import PersistenceError
from pesos.services.rss_parser import ParsedEntry

logger = logging.getLogger(__name__)

SLUG_ALPHABET = string.digits + string.ascii_lowercase
SLUG_LENGTH = 12

TITLE_MAX_LENGTH = Item.__table__.c.title.type.length
URL_MAX_LENGTH = Item.__table__.c.url.type.length


def generate_slug(length: int = SLUG_LENGTH) -> str:
    """Random base-36 token used in item permalinks."""
    return ''.join(secrets.choice(SLUG_ALPHABET) for _ in range(length))


def clip_title(title: str) -> str:
    return (title or '')[:TITLE_MAX_LENGTH]


class ItemWriter:
    """Insert new feed entries as Items, skipping rows that conflict."""

    def __init__(self, slug_factory: Callable[[], str] = generate_slug,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.slug_factory = slug_factory
        self.clock = clock

    def build_rows(self, user_id: str, source_id: int, entries: Sequence[ParsedEntry]) -> List[Dict]:
        created_at = self.clock()
        return [
            {
                'title': clip_title(entry.title),
                'url': entry.link,
                'description': entry.content or '',
                'postdate': entry.publish_date,
                'slug': self.slug_factory(),
                'user_id': user_id,
                'source_id': source_id,
                'created_at': created_at,
            }
            for entry in entries
        ]

    def insert(self, user_id: str, source_id: int, entries: Sequence[ParsedEntry]) -> int:
        """
        Insert entries for one user/source pair.

        Conflicting rows (same slug, or same url for the pair) are skipped
        individually, as are entries whose link does not fit the url
        column. Does not commit.

        Returns the number of rows inserted.
        """
        rows = self.build_rows(user_id, source_id, self._storable(entries))
        if not rows:
            return 0

        try:
            dialect = db.session.get_bind().dialect.name
            if dialect == 'sqlite':
                return self._insert_ignoring_conflicts(sqlite_insert, rows)
            if dialect == 'postgresql':
                return self._insert_ignoring_conflicts(pg_insert, rows)
            return self._insert_row_by_row(rows)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to insert {len(rows)} items for user {user_id} source {source_id}: {e}"
            ) from e

    @staticmethod
    def _storable(entries: Sequence[ParsedEntry]) -> List[ParsedEntry]:
        storable = []
        for entry in entries:
            if not entry.link:
                continue
            if len(entry.link) > URL_MAX_LENGTH:
                logger.warning(f"Skipping item with {len(entry.link)} character link: {entry.link[:100]}...")
                continue
            storable.append(entry)
        return storable

    @staticmethod
    def _insert_ignoring_conflicts(dialect_insert, rows: List[Dict]) -> int:
        # One parameterized statement; values never reach the SQL text.
        # Skipped rows return nothing, so the returned ids are the inserted rows.
        stmt = (
            dialect_insert(Item.__table__)
            .on_conflict_do_nothing()
            .returning(Item.__table__.c.id)
        )
        return len(db.session.execute(stmt, rows).all())

    @staticmethod
    def _insert_row_by_row(rows: List[Dict]) -> int:
        inserted = 0
        for row in rows:
            try:
                with db.session.begin_nested():
                    db.session.execute(insert(Item.__table__), row)
                inserted += 1
            except IntegrityError:
                # Duplicate slug or url for this user/source
                logger.debug(f"Skipping conflicting item {row['url']}")
        return inserted
