from copyboss import db
from datetime import datetime
from sqlalchemy.orm import validates
import uuid


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = db.Column(db.String(255), unique=True, nullable=False)
    username = db.Column(db.String(255))
    password_hash = db.Column(db.String(255))
    referrer_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=True)
    stripe_account_id = db.Column(db.String(255))
    plan = db.Column(db.String(20), default='free', nullable=False)  # free/pro
    subscription_expires = db.Column(db.DateTime)
    report_credits = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    referrer = db.relationship('User', remote_side=[id], backref='referrals')

    @validates('referrer_id')
    def validate_referrer(self, key, referrer_id):
        if referrer_id is not None and self.id is not None and referrer_id == self.id:
            raise ValueError('A user cannot refer themselves')
        return referrer_id

    def is_subscription_active(self, now=None):
        if self.plan != 'pro' or not self.subscription_expires:
            return False
        return self.subscription_expires > (now or datetime.utcnow())

    def status(self):
        return {
            'plan': self.plan,
            'subscription_expires': self.subscription_expires.isoformat() if self.subscription_expires else None,
            'report_credits': self.report_credits,
        }

    def __repr__(self):
        return f'<User {self.email}>'
