"""
Structured logging for the Narravo API.

JSON lines by default (LOG_FORMAT=json) so the output can be shipped to a log
aggregator as-is; LOG_FORMAT=text gives a human readable format for local work.
"""

import logging
import sys
import os
import uuid
from datetime import datetime, timezone
from pythonjsonlogger import jsonlogger
from flask import g, request, has_request_context


class RequestContextJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with the current request."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name

        if has_request_context():
            log_record['request_id'] = getattr(g, 'request_id', None)
            log_record['method'] = request.method
            log_record['path'] = request.path
            log_record['remote_addr'] = request.remote_addr
            log_record['user_id'] = getattr(g, 'current_user_id', None)

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)


def setup_logging(app):
    """Install a single stdout handler on the root logger."""
    log_level = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_format = os.getenv('LOG_FORMAT', 'json')

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)

    if log_format == 'json':
        formatter = RequestContextJsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    handler.setFormatter(formatter)
    handler.setLevel(getattr(logging, log_level, logging.INFO))

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Third-party chatter
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('botocore').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    app.logger.debug('Logging configured (level=%s, format=%s)', log_level, log_format)
    return root_logger


def add_request_id_middleware(app):
    """Tag each request with an id and emit an access log line when it finishes."""

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        g.request_start_time = datetime.now(timezone.utc)

    @app.after_request
    def log_request(response):
        response.headers['X-Request-ID'] = getattr(g, 'request_id', '')

        if hasattr(g, 'request_start_time'):
            duration = (datetime.now(timezone.utc) - g.request_start_time).total_seconds()
            logging.getLogger('narravo.access').info(
                'Request completed',
                extra={
                    'duration_seconds': duration,
                    'status_code': response.status_code,
                    'content_length': response.content_length
                }
            )

        return response

    return app
