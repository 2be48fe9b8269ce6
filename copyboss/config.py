import os
from decimal import Decimal
from dotenv import load_dotenv

if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()


def _database_url():
    url = os.environ.get('DATABASE_URL')
    if not url:
        # relative sqlite paths land in the Flask instance folder
        url = "sqlite:///affiliate.db"
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key'
    FLASK_ENV = os.environ.get('FLASK_ENV', 'development')

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'dev-jwt-secret-key-change-me-please'

    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET')
    STRIPE_PRICE_PRO = os.environ.get('STRIPE_PRICE_PRO')
    STRIPE_PRICE_2REPORTS = os.environ.get('STRIPE_PRICE_2REPORTS')
    STRIPE_PRICE_15REPORTS = os.environ.get('STRIPE_PRICE_15REPORTS')
    STRIPE_TIMEOUT_SECONDS = int(os.environ.get('STRIPE_TIMEOUT_SECONDS', 30))

    DOMAIN = os.environ.get('DOMAIN', 'http://localhost:3000')
    BASE_URL = os.environ.get('BASE_URL', 'http://localhost:3000')
    REFERRAL_BASE_URL = os.environ.get('REFERRAL_BASE_URL', 'https://copyboss.com')

    # Affiliate programme
    COMMISSION_RATE = Decimal(os.environ.get('COMMISSION_RATE', '0.40'))
    PAYOUT_THRESHOLD = Decimal(os.environ.get('PAYOUT_THRESHOLD', '50.00'))
    PAYOUT_CURRENCY = os.environ.get('PAYOUT_CURRENCY', 'gbp')
    SUBSCRIPTION_COMMISSION_MONTHS = int(os.environ.get('SUBSCRIPTION_COMMISSION_MONTHS', 3))
    CONNECT_ACCOUNT_COUNTRY = os.environ.get('CONNECT_ACCOUNT_COUNTRY', 'GB')

    # Payout scheduler: fires at PAYOUT_HOUR on days 28-31, pays out on the last day
    PAYOUT_TIMEZONE = os.environ.get('PAYOUT_TIMEZONE', 'Europe/London')
    PAYOUT_HOUR = int(os.environ.get('PAYOUT_HOUR', 2))
    PAYOUT_SCHEDULER_ENABLED = os.environ.get('PAYOUT_SCHEDULER_ENABLED', 'False').lower() in ('true', '1', 't')
    PAYOUT_SCHEDULER_POLL_SECONDS = int(os.environ.get('PAYOUT_SCHEDULER_POLL_SECONDS', 60))

    LOG_DIR = os.environ.get('LOG_DIR', 'logs')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    ADMIN_EMAILS = [e.strip() for e in os.environ.get('ADMIN_EMAILS', '').split(',') if e.strip()]

    SEED_DEFAULT_USER = os.environ.get('SEED_DEFAULT_USER', 'True').lower() in ('true', '1', 't')


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length'
    STRIPE_SECRET_KEY = 'sk_test_dummy'
    STRIPE_WEBHOOK_SECRET = 'whsec_test'
    STRIPE_PRICE_PRO = 'price_pro'
    STRIPE_PRICE_2REPORTS = 'price_2reports'
    STRIPE_PRICE_15REPORTS = 'price_15reports'
    PAYOUT_SCHEDULER_ENABLED = False
    LOG_DIR = None
    ADMIN_EMAILS = ['admin@copyboss.com']
    SEED_DEFAULT_USER = False
