from flask import Blueprint, jsonify, Response
from narravo import db, cache, limiter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET'])
@limiter.limit("60 per minute")
@cache.cached(timeout=10)
def health_check() -> tuple[Response, int]:
    """Liveness plus a database ping"""
    try:
        db.session.execute(text('SELECT 1'))
        return jsonify({
            'status': 'healthy',
            'service': 'narravo-api',
            'database': 'connected'
        }), 200
    except SQLAlchemyError as e:
        logger.error("Health check failed: %s", e)
        return jsonify({
            'status': 'unhealthy',
            'service': 'narravo-api',
            'database': 'disconnected'
        }), 503


@health_bp.route('/readyz', methods=['GET'])
def readiness() -> tuple[Response, int]:
    """Ready once the schema answers queries"""
    try:
        db.session.execute(text('SELECT COUNT(*) FROM configuration'))
        return jsonify({'status': 'ready'}), 200
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning("Readiness check failed: %s", e)
        return jsonify({'status': 'not ready', 'error': 'database unavailable'}), 503
