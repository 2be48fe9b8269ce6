# copyboss/routes/affiliate.py

from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import get_jwt_identity
from dateutil.relativedelta import relativedelta
from datetime import date
from decimal import Decimal, InvalidOperation

from copyboss import db
from copyboss.logger import app_logger as logger
from copyboss.schemas import commissions_schema, commission_schema, referrals_schema
from copyboss.utils.auth import jwt_required_custom, admin_required, owns_resource
from copyboss.utils.commission_recorder import record_commission
from copyboss.utils.eligibility import (
    get_pending_commissions, get_paid_commissions, get_total_pending_commissions
)
from copyboss.utils.payment_rail import StripeTransferRail
from copyboss.utils.users import create_user, get_user_by_email, get_user_by_id, get_referrals

affiliate_bp = Blueprint('affiliate', __name__)


def _payment_rail():
    return current_app.extensions.get('payment_rail') or StripeTransferRail.from_config(current_app.config)


def referral_link(user_id):
    return f"{current_app.config['REFERRAL_BASE_URL']}/?ref={user_id}"


def next_payout_date(today=None):
    """Last day of the current month."""
    today = today or date.today()
    return today + relativedelta(day=31)


# ---------------- CONNECT ONBOARDING ----------------
@affiliate_bp.route('/onboard', methods=['GET'])
@jwt_required_custom
def onboard():
    user = get_user_by_id(get_jwt_identity())
    if not user:
        return jsonify({'message': 'User not found'}), 404

    base_url = current_app.config['BASE_URL']
    rail = _payment_rail()
    try:
        if not user.stripe_account_id:
            user.stripe_account_id = rail.create_connect_account(
                user.email, country=current_app.config['CONNECT_ACCOUNT_COUNTRY']
            )
            db.session.commit()

        url = rail.create_onboarding_link(
            user.stripe_account_id,
            refresh_url=f"{base_url}/affiliate/onboard/refresh",
            return_url=f"{base_url}/affiliate-dashboard.html",
        )
    except Exception as e:
        db.session.rollback()
        logger.error(f"Affiliate onboarding error: {e}")
        return jsonify({'message': 'Failed to start onboarding'}), 500

    return jsonify({'url': url, 'stripeAccountId': user.stripe_account_id}), 200


# ---------------- DASHBOARD ----------------
@affiliate_bp.route('/dashboard', methods=['GET'])
@jwt_required_custom
def dashboard():
    user = get_user_by_id(get_jwt_identity())
    if not user:
        return jsonify({'message': 'User not found'}), 404

    pending = get_pending_commissions(user.id)
    paid = get_paid_commissions(user.id)
    referrals = get_referrals(user.id)
    paid_total = sum((Decimal(str(c.commission_amount)) for c in paid), Decimal('0.00'))

    return jsonify({
        'user': {
            'id': user.id,
            'email': user.email,
            'username': user.username,
            'stripeAccountId': user.stripe_account_id,
            'referralLink': referral_link(user.id),
        },
        'stats': {
            'totalReferrals': len(referrals),
            'pendingCommissions': str(get_total_pending_commissions(user.id)),
            'paidCommissions': str(paid_total),
            'payoutThreshold': str(current_app.config['PAYOUT_THRESHOLD']),
            'nextPayoutDate': next_payout_date().isoformat(),
        },
        'commissions': {
            'pending': commissions_schema.dump(pending),
            'paid': commissions_schema.dump(paid),
        },
        'referrals': referrals_schema.dump(referrals),
    }), 200


@affiliate_bp.route('/referral-link/<user_id>', methods=['GET'])
@jwt_required_custom
def get_referral_link(user_id):
    if not owns_resource(user_id):
        return jsonify({'message': 'Unauthorized'}), 403
    return jsonify({'referralLink': referral_link(user_id)}), 200


# ---------------- REFERRAL SIGNUP ----------------
@affiliate_bp.route('/process-referral', methods=['POST'])
def process_referral():
    data = request.get_json(silent=True) or {}
    email = data.get('email')
    username = data.get('username')
    password = data.get('password')
    referrer_id = data.get('referrerId')

    if not email or not username or not password or not referrer_id:
        return jsonify({'message': 'All fields required'}), 400

    if not get_user_by_id(referrer_id):
        return jsonify({'message': 'Invalid referrer'}), 400

    if get_user_by_email(email):
        return jsonify({'message': 'User already exists'}), 400

    try:
        user = create_user(email, username, password, referrer_id)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Process referral error: {e}")
        return jsonify({'message': 'Failed to process referral'}), 500

    return jsonify({
        'success': True,
        'userId': user.id,
        'message': 'User created with referral'
    }), 201


# ---------------- MANUAL COMMISSION ----------------
@affiliate_bp.route('/process-commission', methods=['POST'])
@admin_required
def process_commission():
    data = request.get_json(silent=True) or {}
    referrer_id = data.get('referrerId')
    referred_user_id = data.get('referredUserId')
    purchase_amount = data.get('purchaseAmount')

    if not referrer_id or not referred_user_id or not purchase_amount:
        return jsonify({'message': 'Missing required fields'}), 400

    try:
        purchase_amount = Decimal(str(purchase_amount))
    except InvalidOperation:
        return jsonify({'message': 'purchaseAmount must be a number'}), 400
    if purchase_amount <= 0:
        return jsonify({'message': 'purchaseAmount must be positive'}), 400

    if not get_user_by_id(referrer_id) or not get_user_by_id(referred_user_id):
        return jsonify({'message': 'Unknown referrer or referred user'}), 404

    try:
        commission = record_commission(
            referrer_id, referred_user_id, purchase_amount, data.get('paymentIntentId')
        )
    except ValueError as e:
        return jsonify({'message': str(e)}), 400
    except Exception as e:
        logger.error(f"Process commission error: {e}")
        return jsonify({'message': 'Failed to process commission'}), 500

    return jsonify({
        'success': True,
        'commissionId': commission.id,
        'commissionAmount': str(commission.commission_amount),
        'commission': commission_schema.dump(commission),
    }), 201


# ---------------- OWN DATA ----------------
@affiliate_bp.route('/commissions/<user_id>', methods=['GET'])
@jwt_required_custom
def list_commissions(user_id):
    if not owns_resource(user_id):
        return jsonify({'message': 'Unauthorized'}), 403

    return jsonify({
        'pending': commissions_schema.dump(get_pending_commissions(user_id)),
        'paid': commissions_schema.dump(get_paid_commissions(user_id)),
    }), 200


@affiliate_bp.route('/referrals/<user_id>', methods=['GET'])
@jwt_required_custom
def list_referrals(user_id):
    if not owns_resource(user_id):
        return jsonify({'message': 'Unauthorized'}), 403

    return jsonify({'referrals': referrals_schema.dump(get_referrals(user_id))}), 200
