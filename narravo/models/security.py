"""
Two-factor authentication tables: TOTP secrets, recovery codes, trusted
devices, WebAuthn credentials and the security activity log.
"""

from narravo import db
from narravo.utils.datetime_utils import utc_now, isoformat

SECURITY_EVENTS = (
    '2fa_enabled',
    '2fa_disabled',
    'totp_activated',
    'passkey_added',
    'passkey_removed',
    'recovery_codes_generated',
    'recovery_code_used',
    'trusted_device_added',
    'trusted_device_revoked',
    'all_trusted_devices_revoked',
)


class OwnerTotp(db.Model):
    __tablename__ = 'owner_totp'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    secret_base32 = db.Column(db.String(64), nullable=False)
    activated_at = db.Column(db.DateTime)
    last_used_at = db.Column(db.DateTime)
    last_used_step = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=utc_now)


class RecoveryCode(db.Model):
    __tablename__ = 'recovery_codes'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    code_hash = db.Column(db.String(128), nullable=False)
    used_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now)


class TrustedDevice(db.Model):
    __tablename__ = 'trusted_devices'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True)
    user_agent = db.Column(db.String(512))
    ip_hash = db.Column(db.String(16))
    created_at = db.Column(db.DateTime, default=utc_now)
    last_seen_at = db.Column(db.DateTime, default=utc_now)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            'id': self.id,
            'user_agent': self.user_agent,
            'created_at': isoformat(self.created_at),
            'last_seen_at': isoformat(self.last_seen_at),
            'expires_at': isoformat(self.expires_at),
        }


class WebAuthnCredential(db.Model):
    __tablename__ = 'webauthn_credentials'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    credential_id = db.Column(db.LargeBinary, nullable=False, unique=True)
    public_key = db.Column(db.LargeBinary, nullable=False)
    counter = db.Column(db.Integer, nullable=False, default=0)
    transports = db.Column(db.JSON)
    nickname = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=utc_now)
    last_used_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            'id': self.id,
            'nickname': self.nickname,
            'transports': self.transports or [],
            'created_at': isoformat(self.created_at),
            'last_used_at': isoformat(self.last_used_at),
        }


class SecurityActivity(db.Model):
    __tablename__ = 'security_activity'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    event = db.Column(db.String(64), nullable=False)
    ip = db.Column(db.String(64))
    user_agent = db.Column(db.String(512))
    details = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'event': self.event,
            'ip': self.ip,
            'user_agent': self.user_agent,
            'details': self.details,
            'created_at': isoformat(self.created_at),
        }
