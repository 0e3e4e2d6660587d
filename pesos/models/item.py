from datetime import datetime
from pesos import db


class Item(db.Model):
    __tablename__ = 'items'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(500), nullable=False)
    url = db.Column(db.String(1000), nullable=False)
    description = db.Column(db.Text)
    postdate = db.Column(db.DateTime)
    slug = db.Column(db.String(32), unique=True, nullable=False)
    user_id = db.Column(db.String(255), nullable=False)
    source_id = db.Column(db.Integer, db.ForeignKey('sources.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'source_id', 'url', name='uq_item_user_source_url'),
        db.Index('idx_item_user_postdate', 'user_id', 'postdate'),
    )

    def to_dict(self, include_description=False):
        data = {
            'id': self.id,
            'title': self.title,
            'url': self.url,
            'slug': self.slug,
            'postdate': self.postdate.isoformat() if self.postdate else None,
            'user_id': self.user_id,
            'source_id': self.source_id,
            'source_url': self.source.url if self.source else None,
        }
        if include_description:
            data['description'] = self.description
        return data

    def __repr__(self):
        return f'<Item {self.slug} {self.title[:50]}>'
