from .user import User
from .payout import AffiliatePayout
from .commission import Commission

__all__ = [
    'User', 'Commission', 'AffiliatePayout'
]
