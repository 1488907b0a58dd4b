from narravo import db
from narravo.models.tag import post_tags
from narravo.utils.datetime_utils import utc_now, as_utc, isoformat


class Post(db.Model):
    __tablename__ = 'posts'
    __table_args__ = (
        db.Index('idx_posts_published_at_id', 'published_at', 'id'),
        db.Index('idx_posts_deleted_at', 'deleted_at'),
        db.Index('idx_posts_category_id', 'category_id'),
    )

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(255), unique=True, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    body_md = db.Column(db.Text)
    body_html = db.Column(db.Text, nullable=False, default='')
    excerpt = db.Column(db.Text)
    imported_system_id = db.Column(db.String(512), unique=True)
    featured_image_url = db.Column(db.String(1024))
    featured_image_alt = db.Column(db.String(512))
    views_total = db.Column(db.Integer, default=0, nullable=False)
    is_locked = db.Column(db.Boolean, default=False, nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey('categories.id', ondelete='SET NULL'))
    author_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'))
    published_at = db.Column(db.DateTime)
    deleted_at = db.Column(db.DateTime)
    deleted_by = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'))
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    author = db.relationship('User', foreign_keys=[author_id], backref='posts')
    tags = db.relationship('Tag', secondary=post_tags, lazy='subquery',
                           backref=db.backref('posts', lazy='dynamic'))

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @property
    def is_published(self):
        published_at = as_utc(self.published_at)
        return (
            not self.is_deleted
            and published_at is not None
            and published_at <= utc_now()
        )

    @property
    def status(self):
        if self.is_deleted:
            return 'deleted'
        return 'published' if self.is_published else 'draft'

    def soft_delete(self, user_id=None):
        self.deleted_at = utc_now()
        self.deleted_by = user_id

    def restore(self):
        self.deleted_at = None
        self.deleted_by = None

    def to_dict_lite(self):
        """Listing payload: no body."""
        return {
            'id': self.id,
            'slug': self.slug,
            'title': self.title,
            'excerpt': self.excerpt,
            'featured_image_url': self.featured_image_url,
            'featured_image_alt': self.featured_image_alt,
            'published_at': isoformat(self.published_at),
            'views_total': self.views_total or 0,
        }

    def to_dict(self, include_body=True, include_admin=False):
        data = self.to_dict_lite()
        data.update({
            'tags': [tag.to_dict() for tag in self.tags],
            'category': self.category.to_dict() if self.category else None,
            'author': self.author.to_dict() if self.author else None,
            'is_locked': self.is_locked,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        })
        if include_body:
            data['body_html'] = self.body_html
        if include_admin:
            data.update({
                'body_md': self.body_md,
                'status': self.status,
                'imported_system_id': self.imported_system_id,
                'deleted_at': isoformat(self.deleted_at),
                'deleted_by': self.deleted_by,
            })
        return data

    def __repr__(self):
        return f'<Post {self.slug}>'
