from datetime import datetime, timedelta

import pytest

from copyboss import db
from copyboss import tasks
from copyboss.models import AffiliatePayout, Commission, User
from copyboss.utils.users import create_user, use_report_credit


def _signup(client, email, referrer_id=None):
    return client.post('/api/auth/signup', json={
        'email': email, 'username': email.split('@')[0],
        'password': 'hunter22', 'referrerId': referrer_id,
    })


class TestAccounts:
    def test_signup_and_login(self, app, client):
        assert _signup(client, 'someone@example.com').status_code == 201

        response = client.post('/api/auth/login', json={'email': 'someone@example.com', 'password': 'hunter22'})

        assert response.status_code == 200
        body = response.get_json()
        assert body['user']['role'] == 'user'
        me = client.get('/api/auth/me', headers={'Authorization': f"Bearer {body['access_token']}"})
        assert me.get_json()['plan'] == 'free'

    def test_admin_email_gets_admin_role(self, app, client):
        _signup(client, 'admin@copyboss.com')
        response = client.post('/api/auth/login', json={'email': 'admin@copyboss.com', 'password': 'hunter22'})
        assert response.get_json()['user']['role'] == 'admin'

    def test_wrong_password(self, app, client):
        _signup(client, 'someone@example.com')
        response = client.post('/api/auth/login', json={'email': 'someone@example.com', 'password': 'nope'})
        assert response.status_code == 401

    def test_signup_with_referrer(self, app, client, make_user):
        referrer = make_user()
        response = _signup(client, 'referred@example.com', referrer.id)
        user = db.session.get(User, response.get_json()['userId'])
        assert user.referrer_id == referrer.id

    def test_user_cannot_refer_themselves(self, app):
        with pytest.raises(ValueError):
            User(id='same-id', email='loop@example.com', referrer_id='same-id')

    def test_create_user_rejects_unknown_referrer(self, app):
        with pytest.raises(ValueError):
            create_user('x@example.com', 'x', 'pw', referrer_id='ghost')

    def test_report_credits(self, app, make_user):
        user = make_user(report_credits=1)
        assert use_report_credit(user.id) is True
        assert use_report_credit(user.id) is False
        db.session.expire_all()
        assert db.session.get(User, user.id).report_credits == 0

    def test_subscription_expiry(self, app, make_user):
        now = datetime(2026, 5, 1)
        user = make_user(plan='pro', subscription_expires=now + timedelta(days=3))
        assert user.is_subscription_active(now)
        assert not user.is_subscription_active(now + timedelta(days=4))


class TestAdminPayouts:
    def test_requires_admin(self, app, client, make_user, auth_headers):
        response = client.post('/api/admin/payouts/run', headers=auth_headers(make_user()))
        assert response.status_code == 403

    def test_manual_run(self, app, client, rail, make_user, add_commission, auth_headers):
        admin = make_user()
        referrer = make_user(stripe_account_id='acct_1')
        add_commission(referrer, make_user(referrer=referrer), '64.00')

        response = client.post('/api/admin/payouts/run', headers=auth_headers(admin, role='admin'))

        assert response.status_code == 200
        body = response.get_json()
        assert body['paid'] == 1
        assert body['total_paid'] == '64.00'

        listing = client.get('/api/admin/payouts?status=paid', headers=auth_headers(admin, role='admin'))
        payouts = listing.get_json()['payouts']
        assert len(payouts) == 1
        assert payouts[0]['amount'] == '64.00'
        assert payouts[0]['stripe_transfer_id'] == 'tr_0001'

    def test_run_while_running_conflicts(self, app, client, make_user, auth_headers):
        admin = make_user()
        assert tasks._run_lock.acquire(blocking=False)
        try:
            response = client.post('/api/admin/payouts/run', headers=auth_headers(admin, role='admin'))
        finally:
            tasks._run_lock.release()
        assert response.status_code == 409

    def test_eligible_and_reconciliation(self, app, client, make_user, add_commission, auth_headers):
        admin = make_user()
        referrer = make_user(stripe_account_id='acct_1')
        add_commission(referrer, make_user(), '51.00')
        headers = auth_headers(admin, role='admin')

        eligible = client.get('/api/admin/payouts/eligible', headers=headers).get_json()
        assert eligible['users'] == [{'id': referrer.id, 'email': referrer.email, 'totalPending': '51.00'}]

        reconciliation = client.get('/api/admin/payouts/reconciliation', headers=headers).get_json()
        assert reconciliation == {'issues': [], 'count': 0}

        scheduler = client.get('/api/admin/payouts/scheduler', headers=headers).get_json()
        assert scheduler == {'scheduled': False, 'state': 'idle'}


def test_health(app, client):
    assert client.get('/api/health').get_json()['status'] == 'healthy'
    assert client.get('/api/db-info').get_json()['database_status'] == 'connected'


class TestResolvePayoutSurfaces:
    @pytest.fixture
    def in_doubt(self, rail, make_user, add_commission):
        referrer = make_user(stripe_account_id='acct_slow')
        add_commission(referrer, make_user(), '70.00')
        rail.timeout_destinations.add('acct_slow')
        outcome = tasks.process_user_payout(referrer.id, rail, now=datetime(2026, 1, 31, 2, 0))
        rail.timeout_destinations.clear()
        return outcome.payout_id

    def test_admin_can_confirm(self, app, client, make_user, auth_headers, in_doubt):
        response = client.post(f'/api/admin/payouts/{in_doubt}/resolve',
                               headers=auth_headers(make_user(), role='admin'),
                               json={'action': 'confirm', 'transferId': 'tr_late'})

        assert response.status_code == 200
        payout = response.get_json()['payout']
        assert payout['status'] == 'paid'
        assert payout['stripe_transfer_id'] == 'tr_late'
        db.session.expire_all()
        assert Commission.query.one().status == 'paid'

    def test_admin_can_release(self, app, client, make_user, auth_headers, in_doubt):
        response = client.post(f'/api/admin/payouts/{in_doubt}/resolve',
                               headers=auth_headers(make_user(), role='admin'),
                               json={'action': 'release'})

        assert response.status_code == 200
        assert response.get_json()['payout']['status'] == 'failed'
        db.session.expire_all()
        assert Commission.query.one().payout_id is None

    def test_bad_requests(self, app, client, make_user, auth_headers, in_doubt):
        headers = auth_headers(make_user(), role='admin')

        assert client.post('/api/admin/payouts/missing/resolve', headers=headers,
                           json={'action': 'release'}).status_code == 404
        assert client.post(f'/api/admin/payouts/{in_doubt}/resolve', headers=headers,
                           json={'action': 'undo'}).status_code == 400
        assert client.post(f'/api/admin/payouts/{in_doubt}/resolve', headers=auth_headers(make_user()),
                           json={'action': 'release'}).status_code == 403

    def test_cli_release(self, app, in_doubt):
        result = app.test_cli_runner().invoke(args=['resolve-payout', in_doubt, '--action', 'release',
                                                   '--note', 'not in Stripe'])

        assert result.exit_code == 0
        assert 'failed' in result.output
        db.session.expire_all()
        assert db.session.get(AffiliatePayout, in_doubt).failure_reason == 'Released by operator: not in Stripe'

    def test_cli_confirm_without_transfer_id_fails(self, app, in_doubt):
        result = app.test_cli_runner().invoke(args=['resolve-payout', in_doubt, '--action', 'confirm'])

        assert result.exit_code == 1
        assert 'transfer id is required' in result.output
