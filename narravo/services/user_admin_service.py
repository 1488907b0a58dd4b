"""Admin views over users, and GDPR-style anonymization."""

import logging

from flask import current_app
from sqlalchemy import or_

from narravo import db
from narravo.models.comment import Comment
from narravo.models.post import Post
from narravo.models.reaction import Reaction
from narravo.models.security import TrustedDevice, WebAuthnCredential, OwnerTotp, RecoveryCode
from narravo.models.user import User
from narravo.services.data_operations import log_operation
from narravo.utils.constants import DEFAULT_PAGE_SIZE
from narravo.utils.datetime_utils import utc_now
from narravo.utils.validation import escape_like

logger = logging.getLogger(__name__)


class UserAdminError(ValueError):
    pass


def admin_emails():
    raw = current_app.config.get('ADMIN_EMAILS') or ''
    return {email.strip().lower() for email in raw.split(',') if email.strip()}


def is_admin_email(email):
    return bool(email) and email.strip().lower() in admin_emails()


def list_users(page=1, search=None, per_page=DEFAULT_PAGE_SIZE):
    query = User.query
    if search and search.strip():
        term = f'%{escape_like(search.strip())}%'
        query = query.filter(or_(User.email.ilike(term, escape='\\'), User.name.ilike(term, escape='\\')))
    paginated = query.order_by(User.created_at.desc(), User.id.desc()) \
        .paginate(page=max(1, int(page or 1)), per_page=per_page, error_out=False)
    return {
        'items': [user.to_dict(include_sensitive=True) for user in paginated.items],
        'pagination': {
            'page': paginated.page,
            'per_page': per_page,
            'total': paginated.total,
            'pages': paginated.pages,
            'has_next': paginated.has_next,
            'has_prev': paginated.has_prev,
        },
    }


def get_user_detail(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        return None
    data = user.to_dict(include_sensitive=True)
    data['counts'] = {
        'posts': Post.query.filter_by(author_id=user.id).count(),
        'comments': Comment.query.filter_by(user_id=user.id).count(),
        'reactions': Reaction.query.filter_by(user_id=user.id).count(),
    }
    data['recent_comments'] = [
        c.to_dict(include_admin=True)
        for c in Comment.query.filter_by(user_id=user.id).order_by(Comment.created_at.desc()).limit(10)
    ]
    return data


def anonymize_user(user_id=None, email=None, actor_id=None, ip_address=None, user_agent=None):
    """
    Strip personal data from a user while keeping their comments.

    Exactly one of ``user_id`` / ``email`` selects the user.

    Returns:
        dict: ``{'ok': bool, 'mode': 'id'|'email', 'user_id': n | None}``
    """
    if user_id is None and not email:
        raise UserAdminError('user_id or email required')
    if user_id is not None and email:
        raise UserAdminError('provide either user_id or email, not both')

    mode = 'id' if user_id is not None else 'email'
    user = db.session.get(User, user_id) if user_id is not None else User.find_by_email(email)
    if user is None:
        return {'ok': False, 'mode': mode, 'user_id': None}

    user.email = f'deleted-{user.id}@example.invalid'
    user.name = None
    user.image = None
    user.provider_account_id = None
    user.is_active = False
    user.is_admin = False
    user.two_factor_enabled = False
    user.updated_at = utc_now()
    Comment.query.filter_by(user_id=user.id).update({Comment.author_name: None}, synchronize_session=False)
    for model in (TrustedDevice, WebAuthnCredential, OwnerTotp, RecoveryCode):
        model.query.filter_by(user_id=user.id).delete(synchronize_session=False)

    log_operation(
        'anonymize_user',
        user_id=actor_id,
        details={'target_user_id': user.id, 'mode': mode},
        records_affected=1,
        ip_address=ip_address,
        user_agent=user_agent,
        commit=False,
    )
    db.session.commit()
    logger.info("User %s anonymized", user.id)
    return {'ok': True, 'mode': mode, 'user_id': user.id}
