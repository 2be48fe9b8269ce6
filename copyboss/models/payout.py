from copyboss import db
from datetime import datetime
import uuid

PAYOUT_PENDING = 'pending'
PAYOUT_PAID = 'paid'
PAYOUT_FAILED = 'failed'
PAYOUT_RECONCILIATION_NEEDED = 'reconciliation_needed'

# A user with a payout in one of these states must not be paid again until it is resolved
PAYOUT_OPEN_STATUSES = (PAYOUT_PENDING, PAYOUT_RECONCILIATION_NEEDED)


class AffiliatePayout(db.Model):
    """One attempt to transfer a referrer's pending commissions to their Connect account."""
    __tablename__ = 'affiliate_payouts'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(30), default=PAYOUT_PENDING, nullable=False)  # pending/paid/failed/reconciliation_needed
    stripe_transfer_id = db.Column(db.String(255))
    idempotency_key = db.Column(db.String(255), unique=True)
    failure_reason = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    paid_at = db.Column(db.DateTime)

    # Relationships
    user = db.relationship('User', backref='payouts')

    def __repr__(self):
        return f'<AffiliatePayout {self.id} {self.amount} {self.status}>'
