from .tenancy import Store
from .auth import SessionToken
from .inventory import Product, StockMovement
from .sales import Transaction, TransactionItem, SaleIdempotencyKey
from .purchasing import Purchase, PurchaseItem
from .documents import DocumentSequence
from .audit import AuditLog

__all__ = [
    'Store', 'SessionToken',
    'Product', 'StockMovement',
    'Transaction', 'TransactionItem', 'SaleIdempotencyKey',
    'Purchase', 'PurchaseItem',
    'DocumentSequence',
    'AuditLog',
]
