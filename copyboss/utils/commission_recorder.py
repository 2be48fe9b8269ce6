from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from copyboss import db
from copyboss.logger import payouts_logger as logger
from copyboss.models import Commission
from copyboss.models.commission import COMMISSION_PENDING
from copyboss.utils.users import get_user_by_id

CENT = Decimal('0.01')


def calculate_commission(purchase_amount, rate=None):
    """Commission owed on a purchase, rounded half-up to the penny."""
    if rate is None:
        rate = current_app.config['COMMISSION_RATE']
    return (Decimal(str(purchase_amount)) * Decimal(str(rate))).quantize(CENT, rounding=ROUND_HALF_UP)


def months_between(start, end):
    """
    Calendar month-number difference, e.g. Jan 15 -> Apr 10 is 3 and
    Jan 31 -> Mar 1 is 2. Days within the month are ignored.
    """
    return (end.year - start.year) * 12 + (end.month - start.month)


def record_commission(referrer_id, referred_user_id, purchase_amount, external_ref=None):
    """
    Insert a pending commission for a referred user's purchase.

    A purchase already recorded under the same payment reference returns the
    existing row instead of a second one. Persistence errors propagate.
    """
    if not referrer_id:
        raise ValueError('A commission needs a referrer')
    if str(referrer_id) == str(referred_user_id):
        raise ValueError('A user cannot earn commission on their own purchase')

    if external_ref:
        existing = Commission.query.filter_by(stripe_payment_intent_id=external_ref).first()
        if existing:
            logger.info(f"Commission for payment {external_ref} already recorded ({existing.id})")
            return existing

    purchase_amount = Decimal(str(purchase_amount)).quantize(CENT, rounding=ROUND_HALF_UP)
    commission = Commission(
        referrer_id=str(referrer_id),
        referred_user_id=str(referred_user_id),
        purchase_amount=purchase_amount,
        commission_amount=calculate_commission(purchase_amount),
        status=COMMISSION_PENDING,
        stripe_payment_intent_id=external_ref,
    )
    try:
        db.session.add(commission)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        f"Commission recorded: £{commission.commission_amount} for referrer {referrer_id} "
        f"(purchase £{purchase_amount} by {referred_user_id})"
    )
    return commission


def record_purchase_commission(event):
    """Commission for a one-time checkout. Returns None when there is no referral."""
    if not event.user_id:
        logger.info("No user ID found in checkout session")
        return None

    user = get_user_by_id(event.user_id)
    if not user or not user.referrer_id:
        logger.info(f"No referral found for user: {event.user_id}")
        return None

    return record_commission(user.referrer_id, user.id, event.amount_total, event.payment_intent)


def record_subscription_commission(event):
    """
    Commission for a subscription invoice, paid only while the referred
    account is younger than SUBSCRIPTION_COMMISSION_MONTHS calendar months.
    """
    if not event.user_id:
        logger.info("No user ID found in invoice")
        return None

    user = get_user_by_id(event.user_id)
    if not user or not user.referrer_id:
        logger.info(f"No referral found for user: {event.user_id}")
        return None

    # TODO: month-number arithmetic counts Jan 31 -> Mar 1 as two months; confirm intent with product
    age_in_months = months_between(user.created_at, event.created)
    if age_in_months >= current_app.config['SUBSCRIPTION_COMMISSION_MONTHS']:
        logger.info(f"Subscription commission period expired for user: {user.id}")
        return None

    return record_commission(user.referrer_id, user.id, event.amount_paid, event.payment_intent)
