from narravo import db
from narravo.utils.datetime_utils import utc_now, isoformat

UPLOAD_STATUSES = ('temporary', 'committed')


class Upload(db.Model):
    __tablename__ = 'uploads'
    __table_args__ = (
        db.Index('idx_uploads_status_created', 'status', 'created_at'),
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(512), unique=True, nullable=False)
    url = db.Column(db.String(1024), nullable=False)
    mime = db.Column(db.String(100))
    size = db.Column(db.Integer)
    status = db.Column(db.String(16), nullable=False, default='temporary')
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'))
    session_id = db.Column(db.String(128))
    created_at = db.Column(db.DateTime, default=utc_now)
    committed_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            'id': self.id,
            'key': self.key,
            'url': self.url,
            'mime': self.mime,
            'size': self.size,
            'status': self.status,
            'created_at': isoformat(self.created_at),
        }
