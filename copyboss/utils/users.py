"""Account store accessors used by the affiliate ledger and the webhooks."""
from datetime import datetime
import uuid

from dateutil.relativedelta import relativedelta

from copyboss import db, bcrypt
from copyboss.models import User


def get_user_by_id(user_id):
    if not user_id:
        return None
    return db.session.get(User, str(user_id))


def get_user_by_email(email):
    return User.query.filter_by(email=email).first()


def create_user(email, username, password=None, referrer_id=None):
    """Create a user, optionally attached to a referrer. Caller commits."""
    user_id = str(uuid.uuid4())
    if referrer_id is not None:
        if str(referrer_id) == user_id or get_user_by_id(referrer_id) is None:
            raise ValueError(f'Invalid referrer: {referrer_id}')

    password_hash = bcrypt.generate_password_hash(password).decode('utf-8') if password else None
    user = User(
        id=user_id,
        email=email,
        username=username,
        password_hash=password_hash,
        referrer_id=str(referrer_id) if referrer_id is not None else None,
    )
    db.session.add(user)
    return user


def get_referrals(user_id):
    return User.query.filter_by(referrer_id=user_id).order_by(User.created_at.desc()).all()


def update_user_plan(user, plan, expires_at):
    user.plan = plan
    user.subscription_expires = expires_at


def extend_pro_plan(user, now=None):
    """Give the user one month of pro from now."""
    expires_at = (now or datetime.utcnow()) + relativedelta(months=1)
    update_user_plan(user, 'pro', expires_at)
    return expires_at


def add_report_credits(user, credits):
    user.report_credits = (user.report_credits or 0) + credits


def use_report_credit(user_id):
    """Atomically spend one report credit. Returns False when none are left."""
    changed = User.query.filter(
        User.id == user_id,
        User.report_credits > 0
    ).update({User.report_credits: User.report_credits - 1}, synchronize_session=False)
    db.session.commit()
    return changed > 0
