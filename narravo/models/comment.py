from narravo import db
from narravo.utils.datetime_utils import utc_now, isoformat

COMMENT_STATUSES = ('pending', 'approved', 'spam', 'deleted')
ATTACHMENT_KINDS = ('image', 'video')


class Comment(db.Model):
    __tablename__ = 'comments'
    __table_args__ = (
        db.Index('idx_comments_post_path', 'post_id', 'path'),
        db.Index('idx_comments_status', 'status'),
    )

    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'))
    parent_id = db.Column(db.Integer, db.ForeignKey('comments.id', ondelete='CASCADE'))
    # Materialized path: zero-padded sibling ordinals joined by '.'
    path = db.Column(db.String(255), nullable=False)
    depth = db.Column(db.Integer, nullable=False, default=0)
    body_md = db.Column(db.Text)
    body_html = db.Column(db.Text, nullable=False, default='')
    status = db.Column(db.String(16), nullable=False, default='pending')
    author_name = db.Column(db.String(200))
    imported_system_id = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)
    deleted_at = db.Column(db.DateTime)

    author = db.relationship('User', backref='comments')
    post = db.relationship('Post', backref=db.backref('comments', lazy='dynamic', passive_deletes=True))
    attachments = db.relationship('CommentAttachment', backref='comment', lazy='selectin',
                                  cascade='all, delete-orphan')

    @property
    def parent_path(self):
        return self.path.rsplit('.', 1)[0] if '.' in self.path else None

    def to_dict(self, include_admin=False):
        data = {
            'id': self.id,
            'post_id': self.post_id,
            'parent_id': self.parent_id,
            'path': self.path,
            'depth': self.depth,
            'body_html': self.body_html,
            'created_at': isoformat(self.created_at),
            'author': {
                'id': self.author.id,
                'name': self.author.display_name,
                'image': self.author.image,
            } if self.author else {'id': None, 'name': self.author_name or 'Anonymous', 'image': None},
            'attachments': [a.to_dict() for a in self.attachments],
        }
        if include_admin:
            data.update({
                'body_md': self.body_md,
                'status': self.status,
                'updated_at': isoformat(self.updated_at),
                'deleted_at': isoformat(self.deleted_at),
                'post_slug': self.post.slug if self.post else None,
                'post_title': self.post.title if self.post else None,
            })
        return data

    def __repr__(self):
        return f'<Comment {self.id} {self.path}>'


class CommentAttachment(db.Model):
    __tablename__ = 'comment_attachments'

    id = db.Column(db.Integer, primary_key=True)
    comment_id = db.Column(db.Integer, db.ForeignKey('comments.id', ondelete='CASCADE'), nullable=False)
    kind = db.Column(db.String(16), nullable=False)
    url = db.Column(db.String(1024), nullable=False)
    poster_url = db.Column(db.String(1024))
    mime = db.Column(db.String(100))
    bytes = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'kind': self.kind,
            'url': self.url,
            'poster_url': self.poster_url,
            'mime': self.mime,
            'bytes': self.bytes,
        }
