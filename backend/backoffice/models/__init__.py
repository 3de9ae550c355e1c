from .tenancy import Company, Store
from .auth import User, SessionToken
from .security import SecurityEvent
from .inventory import CatalogItem, StockMovement
from .customers import Customer
from .sales import Sale, SaleLine

__all__ = [
    'Company', 'Store',
    'User', 'SessionToken', 'SecurityEvent',
    'CatalogItem', 'StockMovement',
    'Customer',
    'Sale', 'SaleLine',
]
