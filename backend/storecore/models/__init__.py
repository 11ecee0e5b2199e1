from .accounts import User, Influencer, SessionToken
from .catalog import Product, ProductVariant
from .policy import PolicySetting
from .coupons import Coupon, CouponRedemption
from .orders import Order, OrderLine
from .referrals import Referral
from .wallets import Wallet, WalletTransaction
from .payouts import Payout
from .returns import ReturnRequest, ReturnLine
from .events import AuditEvent, ProcessedEvent, DocumentSequence

__all__ = [
    'User', 'Influencer', 'SessionToken',
    'Product', 'ProductVariant',
    'PolicySetting',
    'Coupon', 'CouponRedemption',
    'Order', 'OrderLine',
    'Referral',
    'Wallet', 'WalletTransaction',
    'Payout',
    'ReturnRequest', 'ReturnLine',
    'AuditEvent', 'ProcessedEvent', 'DocumentSequence',
]
