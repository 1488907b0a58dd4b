"""
Bookkeeping for long-running and destructive admin operations:
WXR import jobs (with per-item errors) and the data operation audit log.
"""

from narravo import db
from narravo.utils.datetime_utils import utc_now, isoformat

IMPORT_JOB_STATUSES = ('queued', 'running', 'completed', 'failed', 'cancelled')


class ImportJob(db.Model):
    __tablename__ = 'import_jobs'

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default='queued')
    file_name = db.Column(db.String(255), nullable=False)
    options = db.Column(db.JSON)
    total_items = db.Column(db.Integer, default=0)
    posts_imported = db.Column(db.Integer, default=0)
    attachments_processed = db.Column(db.Integer, default=0)
    redirects_created = db.Column(db.Integer, default=0)
    skipped = db.Column(db.Integer, default=0)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'))
    started_at = db.Column(db.DateTime)
    finished_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    errors = db.relationship('ImportJobError', backref='job', lazy='dynamic',
                             cascade='all, delete-orphan')

    def to_dict(self, include_errors=False):
        data = {
            'id': self.id,
            'status': self.status,
            'file_name': self.file_name,
            'options': self.options or {},
            'total_items': self.total_items or 0,
            'posts_imported': self.posts_imported or 0,
            'attachments_processed': self.attachments_processed or 0,
            'redirects_created': self.redirects_created or 0,
            'skipped': self.skipped or 0,
            'error_count': self.errors.count(),
            'started_at': isoformat(self.started_at),
            'finished_at': isoformat(self.finished_at),
            'created_at': isoformat(self.created_at),
        }
        if include_errors:
            data['errors'] = [e.to_dict() for e in self.errors.order_by(ImportJobError.id)]
        return data


class ImportJobError(db.Model):
    __tablename__ = 'import_job_errors'

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey('import_jobs.id', ondelete='CASCADE'), nullable=False)
    item_identifier = db.Column(db.String(512))
    error_type = db.Column(db.String(64), nullable=False)
    error_message = db.Column(db.Text, nullable=False)
    item_data = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'item_identifier': self.item_identifier,
            'error_type': self.error_type,
            'error_message': self.error_message,
            'created_at': isoformat(self.created_at),
        }


class DataOperationLog(db.Model):
    __tablename__ = 'data_operation_logs'

    id = db.Column(db.Integer, primary_key=True)
    operation_type = db.Column(db.String(32), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'))
    details = db.Column(db.JSON)
    records_affected = db.Column(db.Integer, default=0)
    status = db.Column(db.String(16), nullable=False, default='completed')
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(512))
    created_at = db.Column(db.DateTime, default=utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'operation_type': self.operation_type,
            'user_id': self.user_id,
            'details': self.details,
            'records_affected': self.records_affected or 0,
            'status': self.status,
            'ip_address': self.ip_address,
            'created_at': isoformat(self.created_at),
        }
