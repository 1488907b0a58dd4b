from narravo import db
from narravo.utils.datetime_utils import utc_now, isoformat


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(200))
    image = db.Column(db.String(1024))
    provider = db.Column(db.String(32))
    provider_account_id = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    two_factor_enabled = db.Column(db.Boolean, default=False, nullable=False)
    two_factor_enforced_at = db.Column(db.DateTime)
    mfa_verified_at = db.Column(db.DateTime)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    def __init__(self, email, name=None, image=None, provider=None, provider_account_id=None):
        self.email = email.strip().lower()
        self.name = name
        self.image = image
        self.provider = provider
        self.provider_account_id = provider_account_id

    @property
    def display_name(self):
        return self.name or self.email.split('@')[0]

    def to_dict(self, include_sensitive=False):
        data = {
            'id': self.id,
            'name': self.name,
            'image': self.image,
            'created_at': isoformat(self.created_at),
        }
        if include_sensitive:
            data.update({
                'email': self.email,
                'is_active': self.is_active,
                'is_admin': self.is_admin,
                'two_factor_enabled': self.two_factor_enabled,
                'provider': self.provider,
                'last_login_at': isoformat(self.last_login_at),
                'updated_at': isoformat(self.updated_at),
            })
        return data

    @staticmethod
    def find_by_email(email):
        if not email:
            return None
        return User.query.filter_by(email=email.strip().lower()).first()

    def __repr__(self):
        return f'<User {self.email}>'
