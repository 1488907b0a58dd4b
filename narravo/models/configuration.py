"""
Runtime configuration rows.

A row with ``user_id`` NULL is the global value for a key; rows with a user id
are per-user overrides of that key. Values are stored as JSON so every
declared type round-trips unchanged.
"""

from narravo import db
from narravo.utils.datetime_utils import utc_now, isoformat

CONFIG_VALUE_TYPES = ('string', 'integer', 'number', 'boolean', 'date', 'datetime', 'json')


class Configuration(db.Model):
    __tablename__ = 'configuration'
    __table_args__ = (
        db.UniqueConstraint('key', 'user_id', name='uq_configuration_key_user'),
        db.Index('idx_configuration_key', 'key'),
        db.Index('uq_configuration_global_key', 'key', unique=True,
                 postgresql_where=db.text('user_id IS NULL'), sqlite_where=db.text('user_id IS NULL')),
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(255), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'))
    type = db.Column(db.String(16), nullable=False)
    value = db.Column(db.JSON)
    allowed_values = db.Column(db.JSON)
    required = db.Column(db.Boolean, default=False, nullable=False)
    category = db.Column(db.String(100))
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    def to_dict(self):
        return {
            'key': self.key,
            'user_id': self.user_id,
            'type': self.type,
            'value': self.value,
            'allowed_values': self.allowed_values,
            'required': self.required,
            'category': self.category,
            'description': self.description,
            'updated_at': isoformat(self.updated_at),
        }

    def __repr__(self):
        scope = self.user_id if self.user_id is not None else 'global'
        return f'<Configuration {self.key}@{scope}>'
