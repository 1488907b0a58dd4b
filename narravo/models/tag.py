from narravo import db
from narravo.utils.datetime_utils import utc_now, isoformat
from narravo.utils.slug import slugify


# Association table for many-to-many relationship between posts and tags
post_tags = db.Table('post_tags',
    db.Column('post_id', db.Integer, db.ForeignKey('posts.id', ondelete='CASCADE'), primary_key=True),
    db.Column('tag_id', db.Integer, db.ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True)
)


class Tag(db.Model):
    __tablename__ = 'tags'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(120), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)

    def __init__(self, name, slug=None):
        self.name = name.strip()
        self.slug = slug or self.create_slug(name)

    @staticmethod
    def create_slug(name):
        return slugify(name.strip().lstrip('#').lower(), max_length=120, fallback='tag')

    def to_dict(self, post_count=None):
        data = {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'created_at': isoformat(self.created_at),
        }
        if post_count is not None:
            data['post_count'] = post_count
        return data

    def __repr__(self):
        return f'<Tag {self.name}>'
