from datetime import datetime
from pesos import db


class Source(db.Model):
    __tablename__ = 'sources'

    id = db.Column(db.Integer, primary_key=True)
    url = db.Column(db.String(500), unique=True, nullable=False)
    active = db.Column(db.String(1), nullable=False, default='Y')  # Y or N
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    subscriptions = db.relationship('UserSource', backref='source', lazy='dynamic', cascade='all, delete-orphan')
    items = db.relationship('Item', backref='source', lazy='dynamic')

    @property
    def is_active(self):
        return self.active == 'Y'

    def to_dict(self):
        return {
            'id': self.id,
            'url': self.url,
            'active': self.active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'subscriber_count': self.subscriptions.count(),
        }

    def __repr__(self):
        return f'<Source {self.url}>'


class UserSource(db.Model):
    __tablename__ = 'user_sources'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(255), nullable=False, index=True)
    source_id = db.Column(db.Integer, db.ForeignKey('sources.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'source_id', name='uq_user_source'),
    )

    def __repr__(self):
        return f'<UserSource {self.user_id} -> {self.source_id}>'
