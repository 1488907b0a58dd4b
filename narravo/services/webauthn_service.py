"""
Passkeys as a second factor, through the ``webauthn`` library.

The routes keep the pending challenge in the Flask session and pass it in
here together with the relying party id and origin of the current request.
"""

import json
import logging

from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, options_to_json
from webauthn.helpers.exceptions import (
    InvalidAuthenticationResponse,
    InvalidJSONStructure,
    InvalidRegistrationResponse,
)
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    PublicKeyCredentialDescriptor,
    UserVerificationRequirement,
)

from narravo import db
from narravo.models.security import WebAuthnCredential
from narravo.services.two_factor_service import TwoFactorError, log_security_event
from narravo.utils.constants import TOTP_ISSUER
from narravo.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

_VERIFY_ERRORS = (InvalidRegistrationResponse, InvalidAuthenticationResponse,
                  InvalidJSONStructure, ValueError, KeyError)


def _descriptors(user_id):
    rows = WebAuthnCredential.query.filter_by(user_id=user_id).all()
    return [PublicKeyCredentialDescriptor(id=row.credential_id) for row in rows]


def registration_options(user, rp_id, rp_name=TOTP_ISSUER):
    """Return ``(options_dict, challenge)``."""
    options = generate_registration_options(
        rp_id=rp_id,
        rp_name=rp_name,
        user_id=str(user.id).encode(),
        user_name=user.email,
        user_display_name=user.display_name,
        exclude_credentials=_descriptors(user.id),
        attestation=AttestationConveyancePreference.NONE,
    )
    return json.loads(options_to_json(options)), options.challenge


def complete_registration(user, credential, challenge, rp_id, origin,
                          nickname=None, ip=None, user_agent=None):
    if not challenge:
        raise TwoFactorError('No registration in progress')
    try:
        verified = verify_registration_response(
            credential=credential,
            expected_challenge=challenge,
            expected_rp_id=rp_id,
            expected_origin=origin,
            require_user_verification=True,
        )
        credential_id = base64url_to_bytes(credential['id'])
    except _VERIFY_ERRORS as e:
        logger.warning("Passkey registration failed for user %s: %s", user.id, e)
        raise TwoFactorError('Passkey registration failed')

    if WebAuthnCredential.query.filter_by(credential_id=credential_id).first() is not None:
        raise TwoFactorError('Passkey already registered', 409)

    row = WebAuthnCredential(
        user_id=user.id,
        credential_id=credential_id,
        public_key=verified.credential_public_key,
        counter=verified.sign_count or 0,
        transports=(credential.get('response') or {}).get('transports'),
        nickname=(nickname or 'Passkey').strip()[:100],
    )
    db.session.add(row)
    user.two_factor_enabled = True
    log_security_event(user.id, 'passkey_added', ip, user_agent,
                       details={'nickname': row.nickname}, commit=False)
    db.session.commit()
    return row


def authentication_options(user, rp_id):
    allow = _descriptors(user.id)
    if not allow:
        raise TwoFactorError('No passkeys registered')
    options = generate_authentication_options(
        rp_id=rp_id,
        allow_credentials=allow,
        user_verification=UserVerificationRequirement.PREFERRED,
    )
    return json.loads(options_to_json(options)), options.challenge


def complete_authentication(user, credential, challenge, rp_id, origin):
    if not challenge:
        raise TwoFactorError('No authentication in progress')
    try:
        credential_id = base64url_to_bytes(credential['id'])
    except _VERIFY_ERRORS:
        raise TwoFactorError('Invalid credential')
    row = WebAuthnCredential.query.filter_by(user_id=user.id, credential_id=credential_id).first()
    if row is None:
        raise TwoFactorError('Unknown credential', 401)

    try:
        verified = verify_authentication_response(
            credential=credential,
            expected_challenge=challenge,
            expected_rp_id=rp_id,
            expected_origin=origin,
            credential_public_key=row.public_key,
            credential_current_sign_count=row.counter,
            require_user_verification=True,
        )
    except _VERIFY_ERRORS as e:
        logger.warning("Passkey authentication failed for user %s: %s", user.id, e)
        raise TwoFactorError('Passkey verification failed', 401)

    row.counter = verified.new_sign_count
    row.last_used_at = utc_now()
    user.mfa_verified_at = utc_now()
    db.session.commit()
    return row


def list_credentials(user_id):
    return WebAuthnCredential.query.filter_by(user_id=user_id) \
        .order_by(WebAuthnCredential.created_at.desc()).all()


def delete_credential(user_id, credential_pk, ip=None, user_agent=None):
    row = WebAuthnCredential.query.filter_by(id=credential_pk, user_id=user_id).first()
    if row is None:
        return False
    db.session.delete(row)
    log_security_event(user_id, 'passkey_removed', ip, user_agent,
                       details={'nickname': row.nickname}, commit=False)
    db.session.commit()
    return True
