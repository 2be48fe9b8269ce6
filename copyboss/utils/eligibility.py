from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from copyboss import db
from copyboss.models import User, Commission, AffiliatePayout
from copyboss.models.commission import COMMISSION_PENDING
from copyboss.models.payout import PAYOUT_OPEN_STATUSES

ZERO = Decimal('0.00')


def get_pending_commissions(user_id):
    return Commission.query.filter_by(
        referrer_id=user_id, status=COMMISSION_PENDING
    ).order_by(Commission.created_at.desc()).all()


def get_paid_commissions(user_id):
    return Commission.query.filter_by(
        referrer_id=user_id, status='paid'
    ).order_by(Commission.paid_at.desc()).all()


def get_total_pending_commissions(user_id):
    total = db.session.query(func.sum(Commission.commission_amount)).filter(
        Commission.referrer_id == user_id,
        Commission.status == COMMISSION_PENDING
    ).scalar()
    return Decimal(str(total)).quantize(ZERO) if total is not None else ZERO


def get_eligible_users(threshold=None):
    """
    All referrers due a payout this cycle, as (user, total_pending) pairs,
    largest balance first. A referrer qualifies with a Connect account, a
    pending balance at or above the threshold, and no payout still in
    flight or awaiting reconciliation.
    """
    if threshold is None:
        threshold = current_app.config['PAYOUT_THRESHOLD']

    total_pending = func.sum(Commission.commission_amount).label('total_pending')
    in_doubt = db.select(AffiliatePayout.user_id).where(
        AffiliatePayout.status.in_(PAYOUT_OPEN_STATUSES)
    )

    rows = db.session.query(User, total_pending).join(
        Commission, Commission.referrer_id == User.id
    ).filter(
        Commission.status == COMMISSION_PENDING,
        User.stripe_account_id.isnot(None),
        User.stripe_account_id != '',
        User.id.notin_(in_doubt)
    ).group_by(User.id).having(
        total_pending >= threshold
    ).order_by(total_pending.desc()).all()

    return [(user, Decimal(str(total)).quantize(ZERO)) for user, total in rows]


def is_eligible(user, threshold=None):
    if threshold is None:
        threshold = current_app.config['PAYOUT_THRESHOLD']
    if not user.stripe_account_id:
        return False
    return get_total_pending_commissions(user.id) >= threshold
