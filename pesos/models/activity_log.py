from datetime import datetime
from pesos import db


class ActivityLog(db.Model):
    """Audit trail of synchronization runs and other system events."""
    __tablename__ = 'activity_logs'

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    source = db.Column(db.String(32), default='system')  # web, api, cron, system
    success = db.Column(db.Boolean, default=True)
    error_message = db.Column(db.Text)
    duration = db.Column(db.Integer)  # milliseconds
    details = db.Column('metadata', db.JSON)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'event_type': self.event_type,
            'source': self.source,
            'success': self.success,
            'error_message': self.error_message,
            'duration': self.duration,
            'metadata': self.details,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<ActivityLog {self.event_type}>'
