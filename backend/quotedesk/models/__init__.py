from .orders import (
    Order,
    OrderItem,
    OrderNumberSequence,
    ORDER_STATUSES,
    TERMINAL_STATUSES,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
)
from .audit import OrderAuditLog, AUDIT_ACTIONS
from .auth import Resource, ResourcePermission, UserRole, ROLES, CLIENT_ACCESS_TYPES
from .customers import Profile
from .catalog import Product
from .documents import QuoteDocument
from .communications import NotificationLog
from .drafts import DraftOrder

__all__ = [
    'Order', 'OrderItem', 'OrderNumberSequence', 'ORDER_STATUSES', 'TERMINAL_STATUSES',
    'STATUS_PENDING', 'STATUS_PROCESSING', 'STATUS_COMPLETED', 'STATUS_CANCELLED',
    'OrderAuditLog', 'AUDIT_ACTIONS',
    'Resource', 'ResourcePermission', 'UserRole', 'ROLES', 'CLIENT_ACCESS_TYPES',
    'Profile',
    'Product',
    'QuoteDocument',
    'NotificationLog',
    'DraftOrder',
]
