from datetime import date
from decimal import Decimal

from copyboss import db
from copyboss.models import Commission, User
from copyboss.routes.affiliate import next_payout_date


def test_next_payout_date_is_month_end():
    assert next_payout_date(date(2026, 2, 10)) == date(2026, 2, 28)
    assert next_payout_date(date(2026, 12, 31)) == date(2026, 12, 31)


class TestReferralSignup:
    def test_creates_user_linked_to_referrer(self, app, client, make_user):
        referrer = make_user()

        response = client.post('/affiliate/process-referral', json={
            'email': 'new@example.com', 'username': 'newbie',
            'password': 's3cret!', 'referrerId': referrer.id,
        })

        assert response.status_code == 201
        user = db.session.get(User, response.get_json()['userId'])
        assert user.referrer_id == referrer.id
        assert user.password_hash != 's3cret!'

    def test_unknown_referrer(self, app, client):
        response = client.post('/affiliate/process-referral', json={
            'email': 'new@example.com', 'username': 'newbie',
            'password': 's3cret!', 'referrerId': 'nobody',
        })
        assert response.status_code == 400
        assert response.get_json()['message'] == 'Invalid referrer'

    def test_missing_fields(self, app, client):
        response = client.post('/affiliate/process-referral', json={'email': 'x@example.com'})
        assert response.status_code == 400

    def test_duplicate_email(self, app, client, make_user):
        referrer = make_user()
        make_user(email='taken@example.com')

        response = client.post('/affiliate/process-referral', json={
            'email': 'taken@example.com', 'username': 'x',
            'password': 'pw', 'referrerId': referrer.id,
        })
        assert response.status_code == 400


class TestDashboard:
    def test_requires_token(self, app, client):
        assert client.get('/affiliate/dashboard').status_code == 401

    def test_stats(self, app, client, make_user, add_commission, auth_headers):
        referrer = make_user(stripe_account_id='acct_1')
        buyer = make_user(referrer=referrer)
        add_commission(referrer, buyer, '30.00')
        add_commission(referrer, buyer, '20.00', status='paid')

        response = client.get('/affiliate/dashboard', headers=auth_headers(referrer))

        assert response.status_code == 200
        body = response.get_json()
        assert body['stats']['totalReferrals'] == 1
        assert body['stats']['pendingCommissions'] == '30.00'
        assert body['stats']['paidCommissions'] == '20.00'
        assert body['stats']['payoutThreshold'] == '50.00'
        assert body['user']['referralLink'].endswith(f'?ref={referrer.id}')
        assert len(body['commissions']['pending']) == 1
        assert body['commissions']['pending'][0]['commission_amount'] == '30.00'
        assert body['referrals'][0]['id'] == buyer.id


class TestOwnData:
    def test_own_commissions(self, app, client, make_user, add_commission, auth_headers):
        referrer = make_user()
        add_commission(referrer, make_user(referrer=referrer), '12.00')

        response = client.get(f'/affiliate/commissions/{referrer.id}', headers=auth_headers(referrer))

        assert response.status_code == 200
        assert len(response.get_json()['pending']) == 1
        assert response.get_json()['paid'] == []

    def test_other_users_data_is_forbidden(self, app, client, make_user, auth_headers):
        me = make_user()
        other = make_user()

        for path in ('commissions', 'referrals', 'referral-link'):
            response = client.get(f'/affiliate/{path}/{other.id}', headers=auth_headers(me))
            assert response.status_code == 403

    def test_referral_link(self, app, client, make_user, auth_headers):
        me = make_user()
        response = client.get(f'/affiliate/referral-link/{me.id}', headers=auth_headers(me))
        assert response.get_json() == {'referralLink': f'https://copyboss.com/?ref={me.id}'}


def test_onboarding_creates_connect_account_once(app, client, make_user, auth_headers):
    user = make_user()

    response = client.get('/affiliate/onboard', headers=auth_headers(user))

    assert response.status_code == 200
    assert response.get_json()['url'] == 'https://connect.stripe.com/setup/e/acct_onboarded'
    db.session.expire_all()
    assert db.session.get(User, user.id).stripe_account_id == 'acct_onboarded'


class TestManualCommission:
    def test_admin_only(self, app, client, make_user, auth_headers):
        referrer = make_user()
        buyer = make_user(referrer=referrer)

        response = client.post('/affiliate/process-commission', headers=auth_headers(referrer), json={
            'referrerId': referrer.id, 'referredUserId': buyer.id, 'purchaseAmount': 200,
        })

        assert response.status_code == 403
        assert Commission.query.count() == 0

    def test_records_forty_percent(self, app, client, make_user, auth_headers):
        admin = make_user(email='admin@copyboss.com')
        referrer = make_user()
        buyer = make_user(referrer=referrer)

        response = client.post('/affiliate/process-commission', headers=auth_headers(admin, role='admin'), json={
            'referrerId': referrer.id, 'referredUserId': buyer.id,
            'purchaseAmount': '200.00', 'paymentIntentId': 'pi_manual',
        })

        assert response.status_code == 201
        assert response.get_json()['commissionAmount'] == '80.00'
        assert Commission.query.one().commission_amount == Decimal('80.00')

    def test_rejects_bad_amount(self, app, client, make_user, auth_headers):
        admin = make_user()
        response = client.post('/affiliate/process-commission', headers=auth_headers(admin, role='admin'), json={
            'referrerId': 'a', 'referredUserId': 'b', 'purchaseAmount': 'lots',
        })
        assert response.status_code == 400
