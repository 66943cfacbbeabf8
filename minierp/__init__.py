"""Flask application factory."""
import logging
import traceback

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from minierp.database import init_db


def _configure_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    logging.getLogger().setLevel(level)
    app.logger.setLevel(level)


def create_app(config_object='config.Config', config_overrides=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)
    if config_overrides:
        app.config.update(config_overrides)

    app.json.sort_keys = False
    _configure_logging(app)

    # Error tracking, production only
    if app.config.get('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=app.config.get('ENV'),
        )

    # Redis cache for reports
    from minierp.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from minierp.blueprints.metrics import record_error, setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Initialize database
    init_db(app)

    # Error Handlers
    from minierp.exceptions import MiniErpError

    @app.errorhandler(MiniErpError)
    def handle_app_error(error):
        """Render application exceptions as JSON."""
        if error.status_code >= 500:
            app.logger.error(f"MiniErpError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"MiniErpError [{error.status_code}]: {error.message}")
        record_error(error.error_code)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error):
        """404, 405 and other routing errors as JSON."""
        return jsonify({
            'status': 'error',
            'error': error.name.lower().replace(' ', '_'),
            'message': error.name
        }), error.code

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        record_error('internal_error')
        return jsonify({
            'status': 'error',
            'error': 'internal_error',
            'message': 'Internal Server Error'
        }), 500

    # Register blueprints
    from minierp.blueprints.main import main_bp
    from minierp.blueprints.metrics import metrics_bp
    from minierp.blueprints.suppliers import suppliers_bp
    from minierp.blueprints.products import products_bp
    from minierp.blueprints.transactions import transactions_bp
    from minierp.blueprints.reports import reports_bp
    from minierp.blueprints.ai import ai_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(metrics_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(ai_bp)

    # Register CLI commands
    from minierp.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
