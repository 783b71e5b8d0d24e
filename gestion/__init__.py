"""Flask application factory."""
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from gestion.database import init_db
import logging
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Logging level for app and service loggers
    log_level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    app.logger.setLevel(log_level)
    logging.getLogger('gestion').setLevel(log_level)

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Prometheus metrics instrumentation
    from gestion.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Error Handlers
    from gestion.exceptions import GestionError

    @app.errorhandler(GestionError)
    def handle_gestion_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"{type(error).__name__} [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"{type(error).__name__} [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'status': 'error', 'message': 'Method Not Allowed'}), 405

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        if isinstance(error, HTTPException) and error.code < 500:
            return jsonify({'status': 'error', 'message': error.description}), error.code
        app.logger.error(f"Unhandled Exception: {error}", exc_info=True)
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from gestion.blueprints.purchases import purchases_bp
    from gestion.blueprints.products import products_bp
    from gestion.blueprints.metrics import metrics_bp

    app.register_blueprint(purchases_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from gestion.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"COST_POLICY={app.config.get('COST_POLICY')} LOCAL_CURRENCY={app.config.get('LOCAL_CURRENCY')}")

    return app
