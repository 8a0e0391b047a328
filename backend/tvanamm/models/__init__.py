from .auth import User, SessionToken
from .catalog import Product
from .documents import DocumentSequence
from .loyalty import LoyaltyAccount, LoyaltyGift, LoyaltyTransaction
from .orders import Order, OrderItem, PackingItem, OrderStatusEvent
from .invoices import Invoice

__all__ = [
    'User', 'SessionToken',
    'Product',
    'DocumentSequence',
    'LoyaltyAccount', 'LoyaltyGift', 'LoyaltyTransaction',
    'Order', 'OrderItem', 'PackingItem', 'OrderStatusEvent',
    'Invoice',
]
