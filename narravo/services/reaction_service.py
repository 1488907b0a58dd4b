"""Toggleable reactions on posts and comments."""

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from narravo import db
from narravo.models.comment import Comment
from narravo.models.post import Post
from narravo.models.reaction import Reaction, REACTION_KINDS, REACTION_TARGETS

logger = logging.getLogger(__name__)


class ReactionError(ValueError):
    pass


def _validate(target_type, kind=None):
    if target_type not in REACTION_TARGETS:
        raise ReactionError(f'Invalid target type: {target_type}')
    if kind is not None and kind not in REACTION_KINDS:
        raise ReactionError(f'Invalid reaction kind: {kind}')


def _target_exists(target_type, target_id):
    model = Post if target_type == 'post' else Comment
    row = db.session.get(model, target_id)
    if row is None:
        return False
    if target_type == 'post':
        return not row.is_deleted
    return row.status == 'approved'


def toggle_reaction(target_type, target_id, user_id, kind):
    """Add the reaction, or remove it when the user already has it. Returns 'added' or 'removed'."""
    _validate(target_type, kind)
    if not _target_exists(target_type, target_id):
        raise ReactionError('Target not found')

    existing = Reaction.query.filter_by(
        target_type=target_type, target_id=target_id, user_id=user_id, kind=kind
    ).first()
    if existing is not None:
        db.session.delete(existing)
        db.session.commit()
        return 'removed'

    db.session.add(Reaction(target_type=target_type, target_id=target_id, user_id=user_id, kind=kind))
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent toggle inserted the same row first.
        db.session.rollback()
        logger.info("Duplicate reaction ignored for %s:%s user %s", target_type, target_id, user_id)
    return 'added'


def get_reaction_counts(target_type, ids):
    """``{target_id: {kind: count}}`` with every kind present (zeros included)."""
    _validate(target_type)
    ids = list(ids or [])
    counts = {target_id: {kind: 0 for kind in REACTION_KINDS} for target_id in ids}
    if not ids:
        return counts
    rows = db.session.query(Reaction.target_id, Reaction.kind, func.count(Reaction.id)).filter(
        Reaction.target_type == target_type, Reaction.target_id.in_(ids)
    ).group_by(Reaction.target_id, Reaction.kind).all()
    for target_id, kind, count in rows:
        counts[target_id][kind] = count
    return counts


def get_user_reactions(target_type, ids, user_id):
    """``{target_id: {kind: bool}}`` for one user."""
    _validate(target_type)
    ids = list(ids or [])
    result = {target_id: {kind: False for kind in REACTION_KINDS} for target_id in ids}
    if not ids or user_id is None:
        return result
    rows = db.session.query(Reaction.target_id, Reaction.kind).filter(
        Reaction.target_type == target_type,
        Reaction.target_id.in_(ids),
        Reaction.user_id == user_id,
    ).all()
    for target_id, kind in rows:
        result[target_id][kind] = True
    return result
