from marshmallow import fields
from copyboss import ma


class CommissionSchema(ma.Schema):
    id = fields.String()
    referrer_id = fields.String()
    referred_user_id = fields.String()
    purchase_amount = fields.Decimal(as_string=True)
    commission_amount = fields.Decimal(as_string=True)
    status = fields.String()
    stripe_payment_intent_id = fields.String(allow_none=True)
    payout_id = fields.String(allow_none=True)
    created_at = fields.DateTime()
    paid_at = fields.DateTime(allow_none=True)


class PayoutSchema(ma.Schema):
    id = fields.String()
    user_id = fields.String()
    amount = fields.Decimal(as_string=True)
    status = fields.String()
    stripe_transfer_id = fields.String(allow_none=True)
    failure_reason = fields.String(allow_none=True)
    created_at = fields.DateTime()
    paid_at = fields.DateTime(allow_none=True)


class ReferralSchema(ma.Schema):
    id = fields.String()
    email = fields.String()
    username = fields.String(allow_none=True)
    plan = fields.String()
    created_at = fields.DateTime()


commission_schema = CommissionSchema()
commissions_schema = CommissionSchema(many=True)
payout_schema = PayoutSchema()
payouts_schema = PayoutSchema(many=True)
referrals_schema = ReferralSchema(many=True)
