from .tenancy import Merchant, Warehouse
from .auth import User, SessionToken
from .inventory import Product, StockItem, StockMovement
from .orders import Order, OrderItem, OrderStatusHistory
from .documents import Return, ReturnItem, DocumentSequence
from .audit import AuditLog

__all__ = [
    'Merchant', 'Warehouse',
    'User', 'SessionToken',
    'Product', 'StockItem', 'StockMovement',
    'Order', 'OrderItem', 'OrderStatusHistory',
    'Return', 'ReturnItem', 'DocumentSequence',
    'AuditLog',
]
