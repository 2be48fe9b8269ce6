"""Typed views over the Stripe webhook events the billing endpoint acts on."""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union


@dataclass(frozen=True)
class CheckoutSessionCompleted:
    """A one-time purchase or the first payment of a subscription."""
    user_id: Optional[str]
    plan: Optional[str]
    credits: int
    amount_total: Decimal
    payment_intent: Optional[str]


@dataclass(frozen=True)
class InvoicePaymentSucceeded:
    """A recurring subscription invoice was paid."""
    user_id: Optional[str]
    amount_paid: Decimal
    payment_intent: Optional[str]
    created: datetime


@dataclass(frozen=True)
class UnhandledEvent:
    type: str


WebhookEvent = Union[CheckoutSessionCompleted, InvoicePaymentSucceeded, UnhandledEvent]


def _minor_to_major(value) -> Decimal:
    return (Decimal(int(value or 0)) / 100).quantize(Decimal('0.01'))


def _metadata(obj) -> dict:
    return obj.get('metadata') or {}


def parse_event(event) -> WebhookEvent:
    """Turn a raw Stripe event (dict-like) into one of the known event kinds."""
    event_type = event.get('type', '')
    obj = (event.get('data') or {}).get('object') or {}

    if event_type == 'checkout.session.completed':
        metadata = _metadata(obj)
        credits = metadata.get('credits')
        return CheckoutSessionCompleted(
            user_id=metadata.get('userId') or obj.get('customer'),
            plan=metadata.get('plan'),
            credits=int(credits) if credits else 0,
            amount_total=_minor_to_major(obj.get('amount_total')),
            payment_intent=obj.get('payment_intent'),
        )

    if event_type == 'invoice.payment_succeeded':
        created = obj.get('created')
        return InvoicePaymentSucceeded(
            user_id=_metadata(obj).get('userId') or obj.get('customer'),
            amount_paid=_minor_to_major(obj.get('amount_paid')),
            payment_intent=obj.get('payment_intent'),
            created=(datetime.fromtimestamp(created, tz=timezone.utc).replace(tzinfo=None)
                     if created else datetime.utcnow()),
        )

    return UnhandledEvent(type=event_type)
