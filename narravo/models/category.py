from narravo import db
from narravo.utils.datetime_utils import utc_now, isoformat
from narravo.utils.slug import slugify


class Category(db.Model):
    __tablename__ = 'categories'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(120), unique=True, nullable=False)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utc_now)

    posts = db.relationship('Post', backref='category', lazy='dynamic')

    def __init__(self, name, slug=None, description=None):
        self.name = name.strip()
        self.slug = slug or self.create_slug(name)
        self.description = description

    @staticmethod
    def create_slug(name):
        return slugify(name.strip().lower(), max_length=120, fallback='category')

    def to_dict(self, post_count=None):
        data = {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'description': self.description,
            'created_at': isoformat(self.created_at),
        }
        if post_count is not None:
            data['post_count'] = post_count
        return data

    def __repr__(self):
        return f'<Category {self.name}>'
