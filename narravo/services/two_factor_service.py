"""
Two-factor authentication: TOTP, single-use recovery codes, trusted devices
and the per-user security activity log.

Recovery codes are stored as bcrypt hashes; trusted-device tokens (which are
long random values) as SHA-256 digests so they can be looked up directly.
"""

import hashlib
import logging
import secrets
import time
from datetime import timedelta

import pyotp
from pyotp.utils import strings_equal

from narravo import db, bcrypt
from narravo.models.security import (
    OwnerTotp,
    RecoveryCode,
    TrustedDevice,
    WebAuthnCredential,
    SecurityActivity,
    SECURITY_EVENTS,
)
from narravo.utils.constants import RECOVERY_CODE_COUNT, TRUSTED_DEVICE_DAYS, TOTP_ISSUER
from narravo.utils.datetime_utils import utc_now, as_utc

logger = logging.getLogger(__name__)


class TwoFactorError(Exception):
    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# -- TOTP ---------------------------------------------------------------

def generate_totp_secret():
    return pyotp.random_base32()


def generate_totp_uri(secret, email, issuer=TOTP_ISSUER):
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=issuer)


def verify_totp_code(secret, code, for_time=None, window=1):
    """Return the matching time step within ±window, or None."""
    code = (code or '').strip().replace(' ', '')
    if not code.isdigit():
        return None
    totp = pyotp.TOTP(secret)
    now = int(time.time() if for_time is None else for_time)
    for offset in range(-window, window + 1):
        at = now + offset * totp.interval
        if strings_equal(totp.at(at), code):
            return at // totp.interval
    return None


# -- recovery codes -----------------------------------------------------

def generate_recovery_codes(count=RECOVERY_CODE_COUNT):
    codes = []
    for _ in range(count):
        raw = secrets.token_hex(4).upper()
        codes.append(f'{raw[:4]}-{raw[4:]}')
    return codes


def _normalize_recovery_code(code):
    cleaned = (code or '').strip().upper().replace(' ', '')
    if len(cleaned) == 8 and '-' not in cleaned:
        cleaned = f'{cleaned[:4]}-{cleaned[4:]}'
    return cleaned


def hash_recovery_code(code):
    return bcrypt.generate_password_hash(_normalize_recovery_code(code)).decode('utf-8')


def check_recovery_code(code, code_hash):
    return bcrypt.check_password_hash(code_hash, _normalize_recovery_code(code))


# -- trusted devices ----------------------------------------------------

def hash_device_token(token):
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def hash_ip_address(ip):
    return hashlib.sha256(ip.encode('utf-8')).hexdigest()[:16]


def create_trusted_device(user_id, user_agent=None, ip=None, days=TRUSTED_DEVICE_DAYS):
    """Persist a trusted device and return the raw token (shown to the client once)."""
    token = secrets.token_urlsafe(32)
    device = TrustedDevice(
        user_id=user_id,
        token_hash=hash_device_token(token),
        user_agent=(user_agent or '')[:512] or None,
        ip_hash=hash_ip_address(ip) if ip else None,
        expires_at=utc_now() + timedelta(days=days),
    )
    db.session.add(device)
    log_security_event(user_id, 'trusted_device_added', ip=ip, user_agent=user_agent, commit=False)
    db.session.commit()
    return token


def verify_trusted_device(user_id, token):
    if not token:
        return False
    device = TrustedDevice.query.filter_by(user_id=user_id, token_hash=hash_device_token(token)).first()
    if device is None or device.revoked_at is not None or as_utc(device.expires_at) <= utc_now():
        return False
    device.last_seen_at = utc_now()
    db.session.commit()
    return True


def list_trusted_devices(user_id):
    now = utc_now()
    rows = TrustedDevice.query.filter(
        TrustedDevice.user_id == user_id,
        TrustedDevice.revoked_at.is_(None),
        TrustedDevice.expires_at > now,
    ).order_by(TrustedDevice.last_seen_at.desc()).all()
    return rows


def revoke_trusted_device(user_id, device_id, ip=None, user_agent=None):
    device = TrustedDevice.query.filter_by(id=device_id, user_id=user_id).first()
    if device is None or device.revoked_at is not None:
        return False
    device.revoked_at = utc_now()
    log_security_event(user_id, 'trusted_device_revoked', ip=ip, user_agent=user_agent,
                       details={'device_id': device_id}, commit=False)
    db.session.commit()
    return True


def revoke_all_trusted_devices(user_id, ip=None, user_agent=None, log=True):
    count = TrustedDevice.query.filter(
        TrustedDevice.user_id == user_id, TrustedDevice.revoked_at.is_(None)
    ).update({TrustedDevice.revoked_at: utc_now()}, synchronize_session=False)
    if log:
        log_security_event(user_id, 'all_trusted_devices_revoked', ip=ip, user_agent=user_agent,
                           details={'count': count}, commit=False)
    db.session.commit()
    return count


# -- security activity --------------------------------------------------

def log_security_event(user_id, event, ip=None, user_agent=None, details=None, commit=True):
    if event not in SECURITY_EVENTS:
        raise ValueError(f'Unknown security event: {event}')
    db.session.add(SecurityActivity(
        user_id=user_id,
        event=event,
        ip=ip,
        user_agent=(user_agent or '')[:512] or None,
        details=details,
    ))
    if commit:
        db.session.commit()


def get_security_activity(user_id, limit=50):
    return SecurityActivity.query.filter_by(user_id=user_id) \
        .order_by(SecurityActivity.created_at.desc(), SecurityActivity.id.desc()).limit(limit).all()


# -- flows --------------------------------------------------------------

def get_status(user):
    totp = OwnerTotp.query.filter_by(user_id=user.id).first()
    return {
        'enabled': bool(user.two_factor_enabled),
        'totp_active': bool(totp and totp.activated_at),
        'passkeys': WebAuthnCredential.query.filter_by(user_id=user.id).count(),
        'recovery_codes_remaining': RecoveryCode.query.filter_by(user_id=user.id, used_at=None).count(),
        'trusted_devices': len(list_trusted_devices(user.id)),
        'enforced_at': user.two_factor_enforced_at.isoformat() if user.two_factor_enforced_at else None,
    }


def begin_totp_setup(user):
    """Store a fresh, not yet activated secret and return it with its otpauth URI."""
    totp = OwnerTotp.query.filter_by(user_id=user.id).first()
    if totp is not None and totp.activated_at is not None:
        raise TwoFactorError('TOTP is already active', 409)
    secret = generate_totp_secret()
    if totp is None:
        totp = OwnerTotp(user_id=user.id, secret_base32=secret)
        db.session.add(totp)
    else:
        totp.secret_base32 = secret
    db.session.commit()
    return {'secret': secret, 'otpauth_uri': generate_totp_uri(secret, user.email)}


def _replace_recovery_codes(user_id):
    RecoveryCode.query.filter_by(user_id=user_id).delete(synchronize_session=False)
    codes = generate_recovery_codes()
    for code in codes:
        db.session.add(RecoveryCode(user_id=user_id, code_hash=hash_recovery_code(code)))
    return codes


def confirm_totp_setup(user, code, ip=None, user_agent=None):
    """Activate the pending secret; returns the first set of recovery codes."""
    totp = OwnerTotp.query.filter_by(user_id=user.id).first()
    if totp is None:
        raise TwoFactorError('TOTP setup has not been started')
    if totp.activated_at is not None:
        raise TwoFactorError('TOTP is already active', 409)
    step = verify_totp_code(totp.secret_base32, code)
    if step is None:
        raise TwoFactorError('Invalid code')

    now = utc_now()
    totp.activated_at = now
    totp.last_used_at = now
    totp.last_used_step = step
    user.two_factor_enabled = True
    user.mfa_verified_at = now
    codes = _replace_recovery_codes(user.id)
    log_security_event(user.id, 'totp_activated', ip, user_agent, commit=False)
    log_security_event(user.id, '2fa_enabled', ip, user_agent, commit=False)
    log_security_event(user.id, 'recovery_codes_generated', ip, user_agent, commit=False)
    db.session.commit()
    logger.info("Two-factor enabled for user %s", user.id)
    return codes


def verify_totp_login(user, code):
    """
    Check a login code and record its step.

    Raises:
        TwoFactorError: no active TOTP, invalid code, or a replayed step
    """
    totp = OwnerTotp.query.filter_by(user_id=user.id).first()
    if totp is None or totp.activated_at is None:
        raise TwoFactorError('TOTP is not enabled')
    step = verify_totp_code(totp.secret_base32, code)
    if step is None:
        raise TwoFactorError('Invalid code', 401)
    if totp.last_used_step is not None and step <= totp.last_used_step:
        raise TwoFactorError('Code already used', 401)
    totp.last_used_step = step
    totp.last_used_at = utc_now()
    user.mfa_verified_at = utc_now()
    db.session.commit()
    return True


def use_recovery_code(user, code, ip=None, user_agent=None):
    for row in RecoveryCode.query.filter_by(user_id=user.id, used_at=None).all():
        if check_recovery_code(code, row.code_hash):
            row.used_at = utc_now()
            user.mfa_verified_at = utc_now()
            remaining = RecoveryCode.query.filter_by(user_id=user.id, used_at=None).count() - 1
            log_security_event(user.id, 'recovery_code_used', ip, user_agent,
                               details={'remaining': remaining}, commit=False)
            db.session.commit()
            return True
    raise TwoFactorError('Invalid recovery code', 401)


def regenerate_recovery_codes(user, ip=None, user_agent=None):
    if not user.two_factor_enabled:
        raise TwoFactorError('Two-factor authentication is not enabled')
    codes = _replace_recovery_codes(user.id)
    log_security_event(user.id, 'recovery_codes_generated', ip, user_agent, commit=False)
    db.session.commit()
    return codes


def disable_two_factor(user, ip=None, user_agent=None):
    OwnerTotp.query.filter_by(user_id=user.id).delete(synchronize_session=False)
    RecoveryCode.query.filter_by(user_id=user.id).delete(synchronize_session=False)
    WebAuthnCredential.query.filter_by(user_id=user.id).delete(synchronize_session=False)
    revoke_all_trusted_devices(user.id, log=False)
    user.two_factor_enabled = False
    user.mfa_verified_at = None
    log_security_event(user.id, '2fa_disabled', ip, user_agent, commit=False)
    db.session.commit()
    logger.info("Two-factor disabled for user %s", user.id)
