import logging
import time
from functools import wraps

from flask import request
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from narravo import limiter

logger = logging.getLogger('narravo.security')


class SecurityMiddleware:
    """Response hardening and security event logging"""

    SECURITY_HEADERS = {
        'X-Content-Type-Options': 'nosniff',
        'X-Frame-Options': 'DENY',
        'Strict-Transport-Security': 'max-age=31536000; includeSubDomains',
        'Content-Security-Policy': "default-src 'self'; img-src 'self' https: data:; media-src 'self' https:; "
                                   "frame-src https://www.youtube-nocookie.com https://player.vimeo.com",
        'Referrer-Policy': 'strict-origin-when-cross-origin',
        'Permissions-Policy': 'geolocation=(), microphone=(), camera=()',
    }

    @staticmethod
    def add_security_headers(response):
        for header, value in SecurityMiddleware.SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response

    @staticmethod
    def log_security_event(event_type, details, severity='medium', user_id=None):
        """Log a security event with request context"""
        entry = {
            'event_type': event_type,
            'ip_address': request.remote_addr,
            'user_agent': request.headers.get('User-Agent', 'Unknown'),
            'endpoint': request.endpoint,
            'method': request.method,
            'user_id': user_id,
            'details': details,
            'severity': severity,
        }
        if severity == 'high':
            logger.error("Security alert: %s", event_type, extra={'security': entry})
        elif severity == 'medium':
            logger.warning("Security warning: %s", event_type, extra={'security': entry})
        else:
            logger.info("Security info: %s", event_type, extra={'security': entry})


def register_security_hooks(app):
    from narravo.services.redirect_service import init_redirects
    init_redirects(app)

    @app.after_request
    def apply_security_headers(response):
        return SecurityMiddleware.add_security_headers(response)


# Rate limits per endpoint class
def rate_limit_auth(limit="10 per minute"):
    return limiter.limit(limit)


def rate_limit_search(limit="30 per minute"):
    return limiter.limit(limit)


def rate_limit_upload(limit="20 per hour"):
    return limiter.limit(limit)


def audit_log(action):
    """Log admin actions (success or failure) with timing"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            start = time.monotonic()
            user_id = None
            try:
                verify_jwt_in_request(optional=True)
                user_id = get_jwt_identity()
            except Exception as e:
                logger.debug("Audit could not read identity: %s", e)

            entry = {
                'action': action,
                'user_id': user_id,
                'endpoint': request.endpoint,
                'method': request.method,
                'ip_address': request.remote_addr,
            }
            try:
                result = f(*args, **kwargs)
            except Exception as e:
                entry.update(success=False, error=str(e),
                             duration_ms=round((time.monotonic() - start) * 1000, 2))
                logger.warning("Audit failed: %s", action, extra={'audit': entry})
                raise

            status = result[1] if isinstance(result, tuple) and len(result) > 1 else getattr(result, 'status_code', 200)
            entry.update(success=status < 400, status=status,
                         duration_ms=round((time.monotonic() - start) * 1000, 2))
            logger.info("Audit: %s", action, extra={'audit': entry})
            return result
        return decorated_function
    return decorator
