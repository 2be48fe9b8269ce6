from flask import Blueprint, jsonify, request, current_app
from copyboss.logger import payouts_logger as logger
from copyboss.models import AffiliatePayout
from copyboss.schemas import payout_schema, payouts_schema
from copyboss.tasks import (
    process_monthly_payouts, reconcile_payouts, is_payout_running, resolve_payout,
    PayoutError, PayoutNotFound
)
from copyboss.utils.auth import admin_required
from copyboss.utils.eligibility import get_eligible_users

admin_bp = Blueprint('admin', __name__)


@admin_bp.route('/payouts/run', methods=['POST'])
@admin_required
def run_payouts():
    """Manual payout trigger; ignores the calendar, respects the run lock."""
    logger.info("Triggering manual payout process via admin API...")
    try:
        result = process_monthly_payouts()
    except Exception as e:
        logger.exception("Manual payout process failed")
        return jsonify({'message': f'Payout run failed: {str(e)}'}), 500

    if result.skipped:
        return jsonify({'message': 'A payout run is already in progress', **result.summary()}), 409
    return jsonify({'message': 'Payout run completed', **result.summary()}), 200


@admin_bp.route('/payouts', methods=['GET'])
@admin_required
def list_payouts():
    query = AffiliatePayout.query
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)
    payouts = query.order_by(AffiliatePayout.created_at.desc()).limit(200).all()
    return jsonify({'payouts': payouts_schema.dump(payouts)}), 200


@admin_bp.route('/payouts/eligible', methods=['GET'])
@admin_required
def list_eligible():
    eligible = get_eligible_users()
    return jsonify({
        'threshold': str(current_app.config['PAYOUT_THRESHOLD']),
        'users': [
            {'id': user.id, 'email': user.email, 'totalPending': str(total)}
            for user, total in eligible
        ]
    }), 200


@admin_bp.route('/payouts/reconciliation', methods=['GET'])
@admin_required
def payout_reconciliation():
    issues = reconcile_payouts()
    return jsonify({'issues': issues, 'count': len(issues)}), 200


@admin_bp.route('/payouts/<payout_id>/resolve', methods=['POST'])
@admin_required
def resolve_payout_route(payout_id):
    """Confirm or release a payout left pending or awaiting reconciliation."""
    data = request.get_json(silent=True) or {}
    try:
        payout = resolve_payout(
            payout_id,
            data.get('action'),
            transfer_id=data.get('transferId'),
            note=data.get('note'),
        )
    except PayoutNotFound as e:
        return jsonify({'message': str(e)}), 404
    except PayoutError as e:
        return jsonify({'message': str(e)}), 400

    return jsonify({'message': f"Payout {payout.status}", 'payout': payout_schema.dump(payout)}), 200


@admin_bp.route('/payouts/scheduler', methods=['GET'])
@admin_required
def scheduler_status():
    scheduler = current_app.extensions.get('payout_scheduler')
    if scheduler is None:
        return jsonify({'scheduled': False, 'state': 'running' if is_payout_running() else 'idle'}), 200
    return jsonify(scheduler.status()), 200
