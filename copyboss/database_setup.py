import sys
import click
from flask import current_app
from sqlalchemy import inspect as sql_inspect, text

from copyboss import db, bcrypt
from copyboss.logger import app_logger as logger


def check_database_connection():
    """Check if database connection is working"""
    try:
        db.session.execute(text('SELECT 1'))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False


def get_existing_tables():
    """Get list of existing tables in the database"""
    try:
        return sql_inspect(db.engine).get_table_names()
    except Exception as e:
        logger.error(f"Error getting existing tables: {e}")
        return []


def initialize_database():
    """Create any missing tables and seed an empty database."""
    logger.info("Initializing database setup...")

    if not check_database_connection():
        logger.error("Database connection failed. Check DATABASE_URL.")
        return False

    existing_tables = get_existing_tables()
    missing = [name for name in db.metadata.tables if name not in existing_tables]
    if missing:
        logger.info(f"Creating {len(missing)} missing tables: {', '.join(sorted(missing))}")
        db.create_all()

    if current_app.config.get('SEED_DEFAULT_USER'):
        seed_default_user()

    logger.info("Database setup complete")
    return True


def seed_default_user():
    """Create the test affiliate only if the users table is empty."""
    from copyboss.models import User

    try:
        if User.query.first():
            logger.info("Users table not empty, skipping seed")
            return True

        user = User(
            email='testaffiliate@example.com',
            username='testaffiliate',
            password_hash=bcrypt.generate_password_hash('testpass123').decode('utf-8'),
            stripe_account_id=None,
        )
        db.session.add(user)
        db.session.commit()
        logger.info("Seeded default test affiliate user")
        return True

    except Exception as e:
        logger.warning(f"Could not create sample data. Error: {e}")
        db.session.rollback()
        return False


# Flask CLI commands registration
def register_db_commands(app):
    """Register database and payout commands with Flask CLI"""

    @app.cli.command('init_db')
    def init_db_command():
        """Initializes the database with tables and sample data."""
        initialize_database()

    @app.cli.command('reset_db')
    def reset_db_command():
        """Drops all tables and re-initializes the database."""
        print("WARNING: This will delete all data!")
        confirm = input("Are you sure you want to reset the database? (yes/no): ")
        if confirm.lower() == 'yes':
            db.drop_all()
            initialize_database()
            print("Database has been reset.")
        else:
            print("Database reset cancelled.")

    @app.cli.command('run-payouts')
    def run_payouts_command():
        """Runs the affiliate payout batch now, regardless of the date."""
        from copyboss.tasks import trigger_manual_payout

        sys.exit(0 if trigger_manual_payout() else 1)

    @app.cli.command('reconcile-payouts')
    def reconcile_payouts_command():
        """Lists payouts that need an operator's attention."""
        from copyboss.tasks import reconcile_payouts

        issues = reconcile_payouts()
        if not issues:
            print("All payouts reconcile.")
            return
        for issue in issues:
            print(f"{issue['payout_id']} user={issue['user_id']} status={issue['status']} "
                  f"amount={issue['amount']}: {issue['issue']}")
        sys.exit(1)

    @app.cli.command('resolve-payout')
    @click.argument('payout_id')
    @click.option('--action', type=click.Choice(['confirm', 'release']), required=True,
                  help='confirm: the transfer went through. release: no money moved.')
    @click.option('--transfer-id', default=None, help='Stripe transfer id, if the payout has none recorded.')
    @click.option('--note', default=None, help='Reason recorded on a released payout.')
    def resolve_payout_command(payout_id, action, transfer_id, note):
        """Confirms or releases a payout stuck in flight or awaiting reconciliation."""
        from copyboss.tasks import resolve_payout, PayoutError

        try:
            payout = resolve_payout(payout_id, action, transfer_id=transfer_id, note=note)
        except PayoutError as e:
            print(f"Could not resolve payout: {e}")
            sys.exit(1)
        print(f"Payout {payout.id} is now {payout.status}.")
