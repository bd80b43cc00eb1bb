from .catalog import Category, Product
from .accounts import User, ROLES, ROLE_MEMBER, ROLE_ADMIN, ROLE_SUPER_ADMIN, STATUS_ACTIVE
from .orders import Order, ORDER_STATUS_COMPLETED, ORDER_STATUS_PENDING
from .system import Setting, LogEntry

__all__ = [
    'Category', 'Product',
    'User', 'ROLES', 'ROLE_MEMBER', 'ROLE_ADMIN', 'ROLE_SUPER_ADMIN', 'STATUS_ACTIVE',
    'Order', 'ORDER_STATUS_COMPLETED', 'ORDER_STATUS_PENDING',
    'Setting', 'LogEntry',
]
