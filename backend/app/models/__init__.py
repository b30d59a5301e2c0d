from .tenancy import Organization, Store
from .registers import Register, CashSession, CashMovement
from .sales import Product, Sale, SaleLine
from .audit import AuditLog
from .sync import SyncOperation
from .outbox import OutboxEvent
from .auth import DeviceSession

__all__ = [
    'Organization', 'Store',
    'Register', 'CashSession', 'CashMovement',
    'Product', 'Sale', 'SaleLine',
    'AuditLog',
    'SyncOperation',
    'OutboxEvent',
    'DeviceSession',
]
