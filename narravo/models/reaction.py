from narravo import db
from narravo.utils.datetime_utils import utc_now

REACTION_KINDS = ('like', 'dislike', 'heart', 'laugh', 'thumbsup', 'thumbsdown')
REACTION_TARGETS = ('post', 'comment')


class Reaction(db.Model):
    __tablename__ = 'reactions'
    __table_args__ = (
        db.UniqueConstraint('target_type', 'target_id', 'user_id', 'kind', name='uq_reaction_target_user_kind'),
        db.Index('idx_reactions_target', 'target_type', 'target_id'),
    )

    id = db.Column(db.Integer, primary_key=True)
    target_type = db.Column(db.String(16), nullable=False)
    target_id = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    kind = db.Column(db.String(16), nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)

    def __repr__(self):
        return f'<Reaction {self.kind} on {self.target_type}:{self.target_id}>'
