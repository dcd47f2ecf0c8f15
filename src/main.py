import os
import logging
import importlib
import traceback
from flask import Flask, jsonify
from flask_cors import CORS

from src.config import config
from src.extensions import db, jwt

# Blueprint import path -> URL prefix
BLUEPRINTS = [
    ('src.routes.sequence', 'sequence_bp', '/api/v1'),
    ('src.routes.analytics', 'analytics_bp', '/api/v1/analytics'),
    ('src.routes.automation', 'automation_bp', '/api/v1/automation'),
    ('src.routes.webhook', 'webhook_bp', '/api/v1/webhooks'),
]


def _configure_logging(app):
    log_level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    if not app.debug and not app.testing:
        if not os.path.exists('logs'):
            os.mkdir('logs')
        file_handler = logging.FileHandler('logs/outreach_sequences.log')
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(log_level)
        app.logger.addHandler(file_handler)
        app.logger.setLevel(log_level)
        app.logger.info('Outreach Sequence API startup')


def create_app(config_name=None):
    """Application factory pattern."""
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app.config.from_object(config[config_name])

    # Validate production configuration if needed
    if config_name == 'production':
        config[config_name].validate_config()

    # Configure CORS
    CORS(app, origins=app.config['CORS_ORIGINS'], supports_credentials=True)

    # Initialize extensions
    db.init_app(app)
    jwt.init_app(app)

    # Configure logging first so we can see route registration errors
    _configure_logging(app)

    # Register blueprints
    for module_path, name, url_prefix in BLUEPRINTS:
        try:
            blueprint = getattr(importlib.import_module(module_path), name)
            app.register_blueprint(blueprint, url_prefix=url_prefix)
            app.logger.info(f"Registered {blueprint.name} blueprint at {url_prefix}")
        except Exception as e:
            app.logger.error(f"Failed to register {name}: {str(e)}")
            app.logger.error(f"Blueprint error traceback: {traceback.format_exc()}")
            raise

    # Register global error handlers
    from src.utils.error_handlers import register_error_handlers
    register_error_handlers(app)

    # Create database tables (avoid fatal boot failures in production)
    try:
        with app.app_context():
            # In production, only run if explicitly enabled
            if config_name != 'production' or os.environ.get('STARTUP_DB_CREATE_ALL', 'false').lower() == 'true':
                db.create_all()
                app.logger.info("Database tables created/verified")
            else:
                app.logger.info("Skipping db.create_all() on startup in production")
    except Exception as e:
        app.logger.error(f"Failed to create/verify database tables on startup: {str(e)}")

    # Initialize scheduler with app context
    from src.services.scheduler import get_sequence_scheduler
    scheduler = get_sequence_scheduler()
    scheduler.init_app(app)

    # Start scheduler in production or when explicitly requested
    if config_name == 'production' or app.config.get('START_SCHEDULER', False):
        try:
            scheduler.start()
            app.logger.info("Sequence scheduler started automatically")
        except Exception as e:
            app.logger.error(f"Failed to start scheduler: {str(e)}")

    # Simple health check endpoint
    @app.route('/')
    def index():
        return jsonify({'status': 'ok', 'message': 'Outreach Sequence API is running'})

    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=5001, debug=True)
