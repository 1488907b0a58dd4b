from narravo import db
from narravo.utils.datetime_utils import utc_now, isoformat


class Redirect(db.Model):
    __tablename__ = 'redirects'

    id = db.Column(db.Integer, primary_key=True)
    from_path = db.Column(db.String(1024), unique=True, nullable=False)
    to_path = db.Column(db.String(1024), nullable=False)
    status = db.Column(db.Integer, nullable=False, default=301)
    created_at = db.Column(db.DateTime, default=utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'from_path': self.from_path,
            'to_path': self.to_path,
            'status': self.status,
            'created_at': isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<Redirect {self.from_path} -> {self.to_path}>'
