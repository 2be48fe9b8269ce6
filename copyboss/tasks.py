# copyboss/tasks.py

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
import hashlib
import sys
import threading

from flask import current_app
from sqlalchemy.exc import IntegrityError

from . import db
from .logger import payouts_logger as logger
from .models import User, Commission, AffiliatePayout
from .models.commission import COMMISSION_PENDING, COMMISSION_PAID
from .models.payout import (
    PAYOUT_PENDING, PAYOUT_PAID, PAYOUT_FAILED, PAYOUT_RECONCILIATION_NEEDED,
    PAYOUT_OPEN_STATUSES
)
from .utils.eligibility import get_eligible_users
from .utils.payment_rail import StripeTransferRail, TransferTimeout

ZERO = Decimal('0.00')

OUTCOME_PAID = 'paid'
OUTCOME_FAILED = 'failed'
OUTCOME_SKIPPED = 'skipped'
OUTCOME_RECONCILIATION_NEEDED = 'reconciliation_needed'

# At most one payout batch per process; scheduled and manual runs share it.
_run_lock = threading.Lock()


class PayoutError(Exception):
    pass


class ReconciliationNeeded(PayoutError):
    """Money moved but the local ledger could not be settled to match."""


class PayoutNotFound(PayoutError):
    pass


@dataclass
class PayoutOutcome:
    user_id: str
    status: str
    amount: Decimal = ZERO
    payout_id: Optional[str] = None
    transfer_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PayoutRunResult:
    started_at: datetime
    outcomes: List[PayoutOutcome] = field(default_factory=list)
    skipped: bool = False

    def _with_status(self, status):
        return [o for o in self.outcomes if o.status == status]

    @property
    def paid(self):
        return self._with_status(OUTCOME_PAID)

    @property
    def failed(self):
        return self._with_status(OUTCOME_FAILED)

    @property
    def reconciliation_needed(self):
        return self._with_status(OUTCOME_RECONCILIATION_NEEDED)

    def summary(self):
        return {
            'started_at': self.started_at.isoformat(),
            'skipped': self.skipped,
            'processed': len(self.outcomes),
            'paid': len(self.paid),
            'failed': len(self.failed),
            'reconciliation_needed': len(self.reconciliation_needed),
            'total_paid': str(sum((o.amount for o in self.paid), ZERO)),
        }


def to_minor_units(amount):
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def payout_idempotency_key(user_id, commission_ids, now):
    """Same user, same month and same commissions always give the same key."""
    digest = hashlib.sha256(','.join(sorted(commission_ids)).encode('utf-8')).hexdigest()[:16]
    return f"affiliate-payout-{user_id}-{now:%Y-%m}-{digest}"


def _release_commissions(payout_id):
    """Free the still-pending commissions a payout claimed."""
    return Commission.query.filter(
        Commission.payout_id == payout_id,
        Commission.status == COMMISSION_PENDING
    ).update({Commission.payout_id: None}, synchronize_session=False)


def _mark_payout(payout_id, status, transfer_id=None, reason=None, release=False):
    payout = db.session.get(AffiliatePayout, payout_id)
    payout.status = status
    if transfer_id:
        payout.stripe_transfer_id = transfer_id
    if reason:
        payout.failure_reason = reason[:1000]
    if release:
        _release_commissions(payout_id)
    db.session.commit()
    return payout


def process_user_payout(user_id, rail, now=None):
    """
    Pay one referrer everything they are owed, if they still qualify.

    The pending balance is re-read under a row lock because it may have
    changed since the eligibility scan. Settlement of the payout row and of
    the commissions happens in a single commit.
    """
    now = now or datetime.utcnow()
    threshold = current_app.config['PAYOUT_THRESHOLD']
    currency = current_app.config['PAYOUT_CURRENCY']

    user = User.query.filter_by(id=user_id).with_for_update().first()
    if not user or not user.stripe_account_id:
        db.session.rollback()
        logger.info(f"User {user_id} has no payout destination, skipping")
        return PayoutOutcome(user_id=user_id, status=OUTCOME_SKIPPED)

    in_flight = AffiliatePayout.query.filter(
        AffiliatePayout.user_id == user.id,
        AffiliatePayout.status.in_(PAYOUT_OPEN_STATUSES)
    ).first()
    if in_flight:
        open_id, open_status = in_flight.id, in_flight.status
        db.session.rollback()
        logger.warning(f"User {user_id} has payout {open_id} still {open_status}, skipping")
        return PayoutOutcome(user_id=user_id, status=OUTCOME_SKIPPED, payout_id=open_id)

    pending = Commission.query.filter_by(
        referrer_id=user.id, status=COMMISSION_PENDING
    ).with_for_update().all()
    total = sum((Decimal(str(c.commission_amount)) for c in pending), ZERO)

    if total < threshold:
        db.session.rollback()
        logger.info(f"User {user_id} below threshold (£{total})")
        return PayoutOutcome(user_id=user_id, status=OUTCOME_SKIPPED, amount=total)

    logger.info(f"Processing payout for user {user.id} ({user.email}): £{total}")

    commission_ids = [c.id for c in pending]
    destination = user.stripe_account_id
    payout = AffiliatePayout(
        user_id=user.id,
        amount=total,
        status=PAYOUT_PENDING,
        idempotency_key=payout_idempotency_key(user.id, commission_ids, now),
    )
    try:
        db.session.add(payout)
        db.session.flush()
        # Claim the commissions so an operator can settle or free exactly these later
        Commission.query.filter(Commission.id.in_(commission_ids)).update(
            {Commission.payout_id: payout.id}, synchronize_session=False
        )
        db.session.commit()
    except IntegrityError:
        # Another run already attempted exactly this settlement this month
        db.session.rollback()
        logger.warning(f"Payout for user {user_id} already attempted this cycle, skipping")
        return PayoutOutcome(user_id=user_id, status=OUTCOME_SKIPPED, amount=total)

    payout_id = payout.id
    idempotency_key = payout.idempotency_key

    try:
        transfer_id = rail.create_transfer(
            to_minor_units(total),
            currency,
            destination,
            metadata={
                'user_id': str(user_id),
                'payout_id': payout_id,
                'affiliate_payout': 'true',
            },
            idempotency_key=idempotency_key,
            description=f"CopyBoss Affiliate Payout - {now:%d/%m/%Y}",
        )
    except TransferTimeout as e:
        _mark_payout(payout_id, PAYOUT_RECONCILIATION_NEEDED, reason=f"Transfer outcome unknown: {e}")
        logger.error(f"Payout {payout_id} for user {user_id} timed out; needs manual reconciliation")
        return PayoutOutcome(user_id=user_id, status=OUTCOME_RECONCILIATION_NEEDED, amount=total,
                             payout_id=payout_id, error=str(e))
    except Exception as e:
        _mark_payout(payout_id, PAYOUT_FAILED, reason=str(e) or e.__class__.__name__, release=True)
        logger.error(f"Payout failed for user {user_id}: {e}")
        return PayoutOutcome(user_id=user_id, status=OUTCOME_FAILED, amount=total,
                             payout_id=payout_id, error=str(e))

    try:
        payout = db.session.get(AffiliatePayout, payout_id)
        payout.status = PAYOUT_PAID
        payout.stripe_transfer_id = transfer_id
        payout.paid_at = now

        settled = Commission.query.filter(
            Commission.id.in_(commission_ids),
            Commission.status == COMMISSION_PENDING
        ).update({
            Commission.status: COMMISSION_PAID,
            Commission.paid_at: now,
            Commission.payout_id: payout_id,
        }, synchronize_session=False)

        if settled != len(commission_ids):
            raise ReconciliationNeeded(
                f"Expected to settle {len(commission_ids)} commissions, settled {settled}"
            )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        _mark_payout(payout_id, PAYOUT_RECONCILIATION_NEEDED, transfer_id=transfer_id,
                      reason=f"Settlement failed after transfer: {e}")
        logger.error(f"Payout {payout_id} transferred ({transfer_id}) but commissions were not settled: {e}")
        return PayoutOutcome(user_id=user_id, status=OUTCOME_RECONCILIATION_NEEDED, amount=total,
                             payout_id=payout_id, transfer_id=transfer_id, error=str(e))

    logger.info(f"Payout processed for user {user_id}: £{total} ({transfer_id})")
    return PayoutOutcome(user_id=user_id, status=OUTCOME_PAID, amount=total,
                         payout_id=payout_id, transfer_id=transfer_id)


def _run_batch(rail, now):
    result = PayoutRunResult(started_at=now or datetime.utcnow())
    logger.info("Processing monthly affiliate payouts...")

    eligible = get_eligible_users()
    if not eligible:
        logger.info("No eligible users for payout")
        return result

    logger.info(f"Processing payouts for {len(eligible)} affiliates")
    user_ids = [user.id for user, _ in eligible]

    for user_id in user_ids:
        try:
            outcome = process_user_payout(user_id, rail, now=now)
        except Exception as e:
            db.session.rollback()
            logger.exception(f"Failed to process payout for user {user_id}")
            outcome = PayoutOutcome(user_id=user_id, status=OUTCOME_FAILED, error=str(e))
        result.outcomes.append(outcome)

    logger.info(f"Monthly payout process completed: {result.summary()}")
    return result


def process_monthly_payouts(rail=None, now=None):
    """
    Pay every eligible referrer. One user's failure never stops the batch.
    A second call while a batch is running returns at once with skipped=True.
    """
    if not _run_lock.acquire(blocking=False):
        logger.warning("Payout batch already running, refusing to start another")
        return PayoutRunResult(started_at=now or datetime.utcnow(), skipped=True)

    try:
        if rail is None:
            rail = current_app.extensions.get('payment_rail') or StripeTransferRail.from_config(current_app.config)
        return _run_batch(rail, now)
    finally:
        _run_lock.release()


def is_payout_running():
    return _run_lock.locked()


def trigger_manual_payout(rail=None):
    """Run the payout batch now, ignoring the calendar. True if a batch ran."""
    logger.info("Triggering manual payout process...")
    try:
        result = process_monthly_payouts(rail=rail)
    except Exception:
        logger.exception("Manual payout process failed")
        return False
    return not result.skipped


def reconcile_payouts(stale_after=timedelta(hours=1), now=None):
    """
    List payouts an operator must look at: transfers in doubt, in-flight
    payouts that never finished, and paid payouts whose amount does not
    match the commissions they settled.
    """
    now = now or datetime.utcnow()
    issues = []

    def _issue(payout, problem, settled_amount=None):
        issues.append({
            'payout_id': payout.id,
            'user_id': payout.user_id,
            'status': payout.status,
            'amount': str(payout.amount),
            'settled_amount': str(settled_amount) if settled_amount is not None else None,
            'stripe_transfer_id': payout.stripe_transfer_id,
            'issue': problem,
        })

    for payout in AffiliatePayout.query.filter_by(status=PAYOUT_RECONCILIATION_NEEDED).all():
        _issue(payout, payout.failure_reason or 'reconciliation needed')

    stale = AffiliatePayout.query.filter(
        AffiliatePayout.status == PAYOUT_PENDING,
        AffiliatePayout.created_at < now - stale_after
    ).all()
    for payout in stale:
        _issue(payout, 'payout stuck in flight')

    for payout in AffiliatePayout.query.filter_by(status=PAYOUT_PAID).all():
        settled = sum((Decimal(str(c.commission_amount)) for c in payout.commissions), ZERO)
        if settled != Decimal(str(payout.amount)).quantize(ZERO):
            _issue(payout, 'paid amount does not match settled commissions', settled)

    for issue in issues:
        logger.warning(f"Payout {issue['payout_id']} needs attention: {issue['issue']}")
    return issues


RESOLVE_CONFIRM = 'confirm'
RESOLVE_RELEASE = 'release'


def resolve_payout(payout_id, action, transfer_id=None, note=None, now=None):
    """
    Close out a payout an operator has checked against Stripe.

    ``confirm``: the transfer went through. The payout becomes paid and the
    commissions it claimed are settled against it in one commit.
    ``release``: no money moved. The payout becomes failed and its
    commissions go back to the pending pool for the next run.
    """
    if action not in (RESOLVE_CONFIRM, RESOLVE_RELEASE):
        raise PayoutError(f"Unknown action '{action}', expected confirm or release")

    now = now or datetime.utcnow()
    payout = AffiliatePayout.query.filter_by(id=payout_id).with_for_update().first()
    if payout is None:
        db.session.rollback()
        raise PayoutNotFound(f"Payout {payout_id} not found")
    if payout.status not in PAYOUT_OPEN_STATUSES:
        db.session.rollback()
        raise PayoutError(f"Payout {payout_id} is {payout.status}, nothing to resolve")

    try:
        if action == RESOLVE_CONFIRM:
            transfer_id = transfer_id or payout.stripe_transfer_id
            if not transfer_id:
                raise PayoutError("A Stripe transfer id is required to confirm a payout")

            settled = Commission.query.filter(
                Commission.payout_id == payout.id,
                Commission.status == COMMISSION_PENDING
            ).update({
                Commission.status: COMMISSION_PAID,
                Commission.paid_at: now,
            }, synchronize_session=False)
            payout.status = PAYOUT_PAID
            payout.stripe_transfer_id = transfer_id
            payout.paid_at = now
            logger.info(f"Payout {payout.id} confirmed by operator ({transfer_id}), settled {settled} commissions")
        else:
            released = _release_commissions(payout.id)
            payout.status = PAYOUT_FAILED
            payout.failure_reason = f"Released by operator: {note}" if note else "Released by operator"
            logger.info(f"Payout {payout.id} released by operator, {released} commissions back to pending")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return payout


def run_monthly_payouts_job():
    """Entry point for an external cron: builds the app and runs the batch."""
    from . import create_app

    app = create_app()
    with app.app_context():
        return trigger_manual_payout()


if __name__ == '__main__':
    sys.exit(0 if run_monthly_payouts_job() else 1)
