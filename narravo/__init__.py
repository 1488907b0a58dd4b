from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_bcrypt import Bcrypt
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_caching import Cache
from dotenv import load_dotenv
import os
from datetime import timedelta

load_dotenv()

db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
bcrypt = Bcrypt()
limiter = Limiter(key_func=get_remote_address)
cache = Cache()


def create_app(config_overrides=None):
    app = Flask(__name__)

    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'postgresql://localhost/narravo')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-secret-key')
    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'jwt-secret-key')
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(hours=24)
    app.config['JWT_REFRESH_TOKEN_EXPIRES'] = timedelta(days=30)
    app.config['MFA_PENDING_TOKEN_EXPIRES'] = timedelta(minutes=10)

    # Rate limiting configuration
    app.config['RATELIMIT_STORAGE_URI'] = os.getenv('REDIS_URL', 'memory://')
    app.config['RATELIMIT_DEFAULT'] = os.getenv('RATE_LIMIT_DEFAULT', '1000 per hour')
    app.config['RATELIMIT_HEADERS_ENABLED'] = True

    # Response caching for feeds and health checks
    app.config['CACHE_TYPE'] = os.getenv('CACHE_TYPE', 'SimpleCache')
    app.config['CACHE_DEFAULT_TIMEOUT'] = 300

    # Site and integrations
    app.config['SITE_URL'] = os.getenv('SITE_URL', 'http://localhost:5001').rstrip('/')
    app.config['SITE_NAME'] = os.getenv('SITE_NAME', 'Narravo')
    app.config['ADMIN_EMAILS'] = os.getenv('ADMIN_EMAILS', '')
    app.config['ANALYTICS_IP_SALT'] = os.getenv('ANALYTICS_IP_SALT', '')
    app.config['UPLOADS_DIR'] = os.getenv('UPLOADS_DIR', os.path.join(os.getcwd(), 'public', 'uploads'))
    app.config['MAX_CONTENT_LENGTH'] = 60 * 1024 * 1024

    # S3 or Cloudflare R2; uploads fall back to UPLOADS_DIR when unset
    for name in ('REGION', 'ENDPOINT', 'ACCESS_KEY_ID', 'SECRET_ACCESS_KEY', 'BUCKET', 'PUBLIC_BASE'):
        app.config[f'S3_{name}'] = os.getenv(f'S3_{name}')
        app.config[f'R2_{name}'] = os.getenv(f'R2_{name}')
    app.config['R2_ACCOUNT_ID'] = os.getenv('R2_ACCOUNT_ID')

    app.config['OAUTH_PROVIDERS'] = {
        'github': {
            'client_id': os.getenv('GITHUB_CLIENT_ID'),
            'client_secret': os.getenv('GITHUB_CLIENT_SECRET'),
        },
        'google': {
            'client_id': os.getenv('GOOGLE_CLIENT_ID'),
            'client_secret': os.getenv('GOOGLE_CLIENT_SECRET'),
        },
    }

    if config_overrides:
        app.config.update(config_overrides)

    from narravo.utils.logging_config import setup_logging, add_request_id_middleware
    if not app.config.get('TESTING'):
        setup_logging(app)
    add_request_id_middleware(app)

    CORS(app, origins=os.getenv('CORS_ORIGINS', '*').split(','))
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    bcrypt.init_app(app)
    limiter.init_app(app)
    cache.init_app(app)

    from narravo.services.config_service import ConfigService
    ConfigService().init_app(app)

    from narravo.services.anti_abuse import init_anti_abuse
    init_anti_abuse(app)

    from narravo.middleware.security import register_security_hooks
    register_security_hooks(app)

    from narravo.routes.posts import posts_bp
    from narravo.routes.auth import auth_bp
    from narravo.routes.health import health_bp
    from narravo.routes.taxonomy import taxonomy_bp
    from narravo.routes.comments import comments_bp
    from narravo.routes.reactions import reactions_bp
    from narravo.routes.archives import archives_bp
    from narravo.routes.metrics import metrics_bp
    from narravo.routes.uploads import uploads_bp, uploads_files_bp
    from narravo.routes.two_factor import two_factor_bp
    from narravo.routes.preferences import preferences_bp
    from narravo.routes.admin import admin_bp
    from narravo.routes.admin_config import admin_config_bp
    from narravo.routes.feeds import feeds_bp
    app.register_blueprint(posts_bp, url_prefix='/api')
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(health_bp, url_prefix='/api')
    app.register_blueprint(taxonomy_bp, url_prefix='/api')
    app.register_blueprint(comments_bp, url_prefix='/api')
    app.register_blueprint(reactions_bp, url_prefix='/api')
    app.register_blueprint(archives_bp, url_prefix='/api')
    app.register_blueprint(metrics_bp, url_prefix='/api')
    app.register_blueprint(uploads_bp, url_prefix='/api')
    app.register_blueprint(two_factor_bp, url_prefix='/api/2fa')
    app.register_blueprint(preferences_bp, url_prefix='/api')
    app.register_blueprint(admin_bp, url_prefix='/api')
    app.register_blueprint(admin_config_bp, url_prefix='/api')
    app.register_blueprint(feeds_bp)
    app.register_blueprint(uploads_files_bp)

    from narravo.cli import register_commands
    register_commands(app)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': getattr(error, 'description', None) or 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'error': 'Method not allowed'}), 405

    @app.errorhandler(429)
    def ratelimit_handler(error):
        return jsonify({'success': False, 'error': f'Rate limit exceeded: {error.description}'}), 429

    return app
