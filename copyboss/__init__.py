from flask import Flask, request
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_bcrypt import Bcrypt
from flask_marshmallow import Marshmallow
import os


db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
bcrypt = Bcrypt()
ma = Marshmallow()


def create_app(config_object='copyboss.config.Config'):
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config_object)

    from copyboss.logger import init_logging, app_logger
    init_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    CORS(app)
    bcrypt.init_app(app)
    ma.init_app(app)

    from copyboss.models import User, Commission, AffiliatePayout
    from copyboss.utils.payment_rail import StripeTransferRail

    app.extensions['payment_rail'] = StripeTransferRail.from_config(app.config)

    # Initialize database automatically on first run
    with app.app_context():
        from copyboss.database_setup import initialize_database, register_db_commands

        # Register CLI commands
        register_db_commands(app)

        # Auto-initialize database on startup
        initialize_database()

    # Register blueprints
    from copyboss.routes.auth import auth_bp
    from copyboss.routes.affiliate import affiliate_bp
    from copyboss.routes.billing import billing_bp
    from copyboss.routes.admin import admin_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(affiliate_bp, url_prefix='/affiliate')
    app.register_blueprint(billing_bp, url_prefix='/api/billing')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')

    @app.route('/api/health')
    def health_check():
        return {
            'status': 'healthy',
            'message': 'CopyBoss API is running!',
            'version': '1.0.0'
        }, 200

    @app.route('/api/db-info')
    def db_info():
        try:
            return {
                'database_status': 'connected',
                'stats': {
                    'users': User.query.count(),
                    'commissions': Commission.query.count(),
                    'payouts': AffiliatePayout.query.count()
                }
            }, 200
        except Exception as e:
            app_logger.error(f"db-info failed: {e}")
            return {
                'database_status': 'error',
                'message': str(e),
                'stats': None
            }, 500

    @app.route('/api/status')
    def app_status():
        """Complete application status"""
        try:
            User.query.first()
            db_status = 'connected'
        except Exception as e:
            db_status = f'error: {str(e)}'

        return {
            'application': 'CopyBoss',
            'version': '1.0.0',
            'status': 'running',
            'database': db_status,
            'environment': os.getenv('FLASK_ENV', 'development'),
            'payout_scheduler': 'payout_scheduler' in app.extensions,
            'endpoints': {
                'health': '/api/health',
                'database_info': '/api/db-info',
                'auth': '/api/auth/login',
                'affiliate_dashboard': '/affiliate/dashboard',
                'stripe_webhook': '/api/billing/stripe-webhook'
            }
        }, 200

    @app.errorhandler(404)
    def not_found(error):
        """Custom 404 handler"""
        return {
            'error': 'API endpoint not found',
            'message': f'The endpoint {request.path} does not exist.'
        }, 404

    @app.errorhandler(500)
    def internal_error(error):
        """Custom 500 handler"""
        db.session.rollback()
        return {
            'error': 'Internal server error',
            'message': 'Something went wrong on the server.',
            'suggestion': 'Check server logs for details.'
        }, 500

    return app
