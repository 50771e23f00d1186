"""Flask application factory."""
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from checkout.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            profiles_sample_rate=0.1,  # 10% for profiling
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Prometheus metrics instrumentation
    from checkout.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=1,      # Trust X-Forwarded-For with 1 proxy
            x_proto=1,    # Trust X-Forwarded-Proto
            x_host=1,     # Trust X-Forwarded-Host
            x_port=1,     # Trust X-Forwarded-Port
            x_prefix=0    # No prefix (not behind a URL prefix)
        )

    # Initialize database
    init_db(app)

    from checkout.middleware import load_user

    @app.before_request
    def before_request_handler():
        """Load the signed-in user for each request."""
        load_user()

    # Error Handlers
    from checkout.exceptions import CheckoutError

    @app.errorhandler(CheckoutError)
    def handle_checkout_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"CheckoutError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"CheckoutError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        if isinstance(error, HTTPException) and error.code and error.code < 500:
            return jsonify({'status': 'error', 'message': error.description}), error.code

        from checkout.database import db_session
        db_session.rollback()
        app.logger.exception(f"Unhandled Exception on {request.method} {request.path}: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from checkout.blueprints.cart import cart_bp
    from checkout.blueprints.shipping import shipping_bp
    from checkout.blueprints.auth import auth_bp
    from checkout.blueprints.checkout import checkout_bp
    from checkout.blueprints.webhooks import webhooks_bp
    from checkout.blueprints.metrics import metrics_bp

    app.register_blueprint(cart_bp)
    app.register_blueprint(shipping_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from checkout.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(
        f"Checkout engine ready: min_order={app.config.get('MIN_ORDER_PER_SELLER')} "
        f"advance_percent={app.config.get('ADVANCE_PAYMENT_PERCENT')} currency={app.config.get('CURRENCY')}"
    )

    return app
