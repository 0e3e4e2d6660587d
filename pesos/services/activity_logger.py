"""Audit events for synchronization runs."""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from pesos import db
from pesos.models import ActivityLog

logger = logging.getLogger(__name__)

SYNC_STARTED = 'feed_sync_started'
SYNC_COMPLETED = 'feed_sync_completed'
SYNC_FAILED = 'feed_sync_failed'
ITEM_REFRESHED = 'feed_item_refreshed'


class ActivityLogger:
    """Record events in the activity log table."""

    def log(self, event_type: str, metadata: Optional[Dict[str, Any]] = None,
            success: bool = True, error_message: Optional[str] = None,
            source: str = 'system', duration: Optional[int] = None) -> Optional[ActivityLog]:
        """
        Store one event and commit it.

        A failure to store the event is logged and does not propagate, so
        auditing never breaks the operation being audited.
        """
        entry = ActivityLog(
            event_type=event_type,
            details=metadata,
            success=success,
            error_message=error_message,
            source=source,
            duration=duration,
        )
        try:
            db.session.add(entry)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to log activity {event_type}: {e}")
            return None
        return entry

    def log_system_update(self, event_type: str, metadata: Dict[str, Any],
                          success: bool = True, error_message: Optional[str] = None):
        source = 'cron' if metadata.get('triggered_by') == 'cron' else 'system'
        return self.log(
            event_type,
            metadata=metadata,
            success=success,
            error_message=error_message,
            source=source,
            duration=metadata.get('execution_time_ms'),
        )
