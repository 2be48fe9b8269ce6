import json
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from copyboss import create_app, db
from copyboss.config import TestingConfig
from copyboss.models import User, Commission
from copyboss.utils.payment_rail import TransferError, TransferTimeout


class FakeRail:
    """Records transfers instead of calling Stripe."""

    def __init__(self):
        self.transfers = []
        self.failing_destinations = set()
        self.timeout_destinations = set()
        self.on_transfer = None

    def create_transfer(self, amount_minor_units, currency, destination, metadata=None,
                        idempotency_key=None, description=None):
        if destination in self.timeout_destinations:
            raise TransferTimeout('Read timed out')
        if destination in self.failing_destinations:
            raise TransferError('Insufficient funds in platform balance')
        if self.on_transfer:
            self.on_transfer(destination)
        self.transfers.append({
            'amount': amount_minor_units,
            'currency': currency,
            'destination': destination,
            'metadata': metadata,
            'idempotency_key': idempotency_key,
        })
        return f"tr_{len(self.transfers):04d}"

    def create_connect_account(self, email, country='GB'):
        return 'acct_onboarded'

    def create_onboarding_link(self, account_id, refresh_url, return_url):
        return f"https://connect.stripe.com/setup/e/{account_id}"


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    app.extensions['payment_rail'] = FakeRail()
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def rail(app):
    return app.extensions['payment_rail']


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make_user(email=None, referrer=None, stripe_account_id=None, created_at=None, **kwargs):
        counter['n'] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            username=f"user{counter['n']}",
            referrer_id=referrer.id if referrer else None,
            stripe_account_id=stripe_account_id,
            **kwargs
        )
        if created_at is not None:
            user.created_at = created_at
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def add_commission(app):
    def _add_commission(referrer, referred, commission_amount, status='pending'):
        amount = Decimal(commission_amount)
        commission = Commission(
            referrer_id=referrer.id,
            referred_user_id=referred.id,
            purchase_amount=amount / Decimal('0.40'),
            commission_amount=amount,
            status=status,
        )
        db.session.add(commission)
        db.session.commit()
        return commission

    return _add_commission


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user, role='user'):
        token = create_access_token(identity=user.id, additional_claims={'role': role})
        return {'Authorization': f'Bearer {token}'}

    return _auth_headers


@pytest.fixture
def post_webhook(client, monkeypatch):
    """Posts a Stripe event to the webhook with signature checks stubbed out."""
    import stripe

    monkeypatch.setattr(stripe.Webhook, 'construct_event',
                        lambda payload, sig_header, secret: json.loads(payload))

    def _post(event):
        return client.post(
            '/api/billing/stripe-webhook',
            data=json.dumps(event),
            headers={'Stripe-Signature': 't=1,v1=test', 'Content-Type': 'application/json'},
        )

    return _post
