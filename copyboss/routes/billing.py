# copyboss/routes/billing.py

from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import get_jwt_identity
import json
import stripe

from copyboss import db
from copyboss.logger import app_logger as logger
from copyboss.utils.auth import jwt_required_custom
from copyboss.utils.commission_recorder import (
    record_purchase_commission, record_subscription_commission
)
from copyboss.utils.users import (
    get_user_by_id, extend_pro_plan, add_report_credits, use_report_credit
)
from copyboss.utils.webhook_events import (
    parse_event, CheckoutSessionCompleted, InvoicePaymentSucceeded, UnhandledEvent
)

billing_bp = Blueprint('billing', __name__)

PLAN_PRICE_KEYS = {
    'pro': 'STRIPE_PRICE_PRO',
    '2reports': 'STRIPE_PRICE_2REPORTS',
    '15reports': 'STRIPE_PRICE_15REPORTS',
}

PLAN_CREDITS = {
    '2reports': 2,
    '15reports': 15,
}


# ---------------- CHECKOUT ----------------
@billing_bp.route('/create-checkout-session', methods=['POST'])
def create_checkout_session():
    data = request.get_json(silent=True) or {}
    plan = data.get('plan')
    user_id = data.get('userId')

    price_key = PLAN_PRICE_KEYS.get(plan)
    if not price_key or not current_app.config.get(price_key):
        return jsonify({'message': f'Unknown plan: {plan}'}), 400

    metadata = {'userId': user_id, 'plan': plan}
    if plan in PLAN_CREDITS:
        metadata['credits'] = str(PLAN_CREDITS[plan])

    stripe.api_key = current_app.config['STRIPE_SECRET_KEY']
    domain = current_app.config['DOMAIN']
    try:
        session = stripe.checkout.Session.create(
            payment_method_types=['card'],
            mode='subscription' if plan == 'pro' else 'payment',
            line_items=[{'price': current_app.config[price_key], 'quantity': 1}],
            success_url=f"{domain}/success.html?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{domain}/cancel.html",
            metadata=metadata,
        )
    except Exception as e:
        logger.error(f"Error creating checkout session: {e}")
        return jsonify({'message': str(e)}), 500

    logger.info(f"Checkout session created: {session.id}")
    return jsonify({'url': session.url}), 200


@billing_bp.route('/session-details', methods=['POST'])
def session_details():
    data = request.get_json(silent=True) or {}
    session_id = data.get('sessionId')
    if not session_id:
        return jsonify({'message': 'Session ID required'}), 400

    stripe.api_key = current_app.config['STRIPE_SECRET_KEY']
    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except Exception as e:
        logger.error(f"Error retrieving session details: {e}")
        return jsonify({'message': 'Failed to retrieve session details'}), 500
    return jsonify(session.to_dict()), 200


# ---------------- PLAN / CREDITS ----------------
@billing_bp.route('/user/status/<user_id>', methods=['GET'])
def user_status(user_id):
    user = get_user_by_id(user_id)
    if not user:
        return jsonify({'message': 'User not found'}), 404
    return jsonify({**user.status(), 'subscription_active': user.is_subscription_active()}), 200


@billing_bp.route('/use-credit', methods=['POST'])
@jwt_required_custom
def spend_report_credit():
    if not use_report_credit(get_jwt_identity()):
        return jsonify({'message': 'No report credits left'}), 402
    return jsonify({'message': 'Report credit used'}), 200


# ---------------- STRIPE WEBHOOK ----------------
def handle_checkout_completed(event):
    user = get_user_by_id(event.user_id)
    if user:
        if event.plan == 'pro':
            expires_at = extend_pro_plan(user)
            logger.info(f"Upgraded user {user.id} to PRO until {expires_at}")
        else:
            credits = event.credits or PLAN_CREDITS.get(event.plan, 0)
            if credits > 0:
                add_report_credits(user, credits)
                logger.info(f"Added {credits} report credits to user {user.id}")
        db.session.commit()

    try:
        record_purchase_commission(event)
    except Exception as e:
        logger.error(f"Failed to process affiliate commission: {e}")


def handle_invoice_paid(event):
    user = get_user_by_id(event.user_id)
    if user:
        expires_at = extend_pro_plan(user)
        db.session.commit()
        logger.info(f"Renewed PRO for user {user.id} until {expires_at}")

    try:
        record_subscription_commission(event)
    except Exception as e:
        logger.error(f"Failed to process subscription commission: {e}")


@billing_bp.route('/stripe-webhook', methods=['POST'])
def stripe_webhook():
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get('Stripe-Signature')
    endpoint_secret = current_app.config['STRIPE_WEBHOOK_SECRET']

    try:
        stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return 'Invalid payload or signature', 400

    event = parse_event(json.loads(payload))
    try:
        if isinstance(event, CheckoutSessionCompleted):
            handle_checkout_completed(event)
        elif isinstance(event, InvoicePaymentSucceeded):
            handle_invoice_paid(event)
        elif isinstance(event, UnhandledEvent):
            logger.info(f"Unhandled event type {event.type}")
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error handling webhook: {e}")
        return 'Internal Server Error', 500

    return jsonify({'received': True}), 200
