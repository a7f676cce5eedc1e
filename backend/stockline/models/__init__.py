from .tenancy import Store, Subscription
from .auth import User, SessionToken, public_user
from .inventory import Product
from .customers import Customer, StoreCredit
from .sales import Sale, SaleItem, Payment
from .returns import Return, ReturnItem
from .notifications import Notification

__all__ = [
    'Store', 'Subscription',
    'User', 'SessionToken', 'public_user',
    'Product',
    'Customer', 'StoreCredit',
    'Sale', 'SaleItem', 'Payment',
    'Return', 'ReturnItem',
    'Notification',
]
