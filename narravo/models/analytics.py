from narravo import db
from narravo.utils.datetime_utils import utc_now


class PostDailyView(db.Model):
    __tablename__ = 'post_daily_views'
    __table_args__ = (
        db.UniqueConstraint('day', 'post_id', name='uq_post_daily_views_day_post'),
    )

    id = db.Column(db.Integer, primary_key=True)
    day = db.Column(db.Date, nullable=False)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False)
    views = db.Column(db.Integer, nullable=False, default=0)


class PostViewEvent(db.Model):
    __tablename__ = 'post_view_events'
    __table_args__ = (
        db.Index('idx_post_view_events_post_ts', 'post_id', 'ts'),
        db.Index('idx_post_view_events_session', 'session_id', 'post_id'),
    )

    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False)
    ts = db.Column(db.DateTime, nullable=False, default=utc_now)
    session_id = db.Column(db.String(128))
    ip_hash = db.Column(db.String(64))
    user_agent = db.Column(db.String(512))
    referer_host = db.Column(db.String(255))
    referer_path = db.Column(db.String(1024))
    user_lang = db.Column(db.String(32))
    bot = db.Column(db.Boolean, nullable=False, default=False)
