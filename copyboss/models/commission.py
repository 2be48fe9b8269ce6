from copyboss import db
from datetime import datetime
import uuid

COMMISSION_PENDING = 'pending'
COMMISSION_PAID = 'paid'


class Commission(db.Model):
    __tablename__ = 'commissions'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    referrer_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    referred_user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False)
    purchase_amount = db.Column(db.Numeric(10, 2), nullable=False)
    commission_amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(20), default=COMMISSION_PENDING, nullable=False, index=True)  # pending/paid
    # Payment intent of the purchase; unique so redelivered webhooks don't double count
    stripe_payment_intent_id = db.Column(db.String(255), unique=True)
    payout_id = db.Column(db.String(36), db.ForeignKey('affiliate_payouts.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    paid_at = db.Column(db.DateTime)

    # Relationships
    referrer = db.relationship('User', foreign_keys=[referrer_id], backref='commissions')
    referred_user = db.relationship('User', foreign_keys=[referred_user_id])
    payout = db.relationship('AffiliatePayout', backref='commissions')

    def __repr__(self):
        return f'<Commission {self.id} {self.commission_amount} {self.status}>'
