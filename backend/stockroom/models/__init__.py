from .inventory import Product, ProductSearchEntry, InventoryCount
from .sales import Sale, SaleItem, PAYMENT_METHODS
from .ledger import LedgerEvent

__all__ = [
    'Product', 'ProductSearchEntry', 'InventoryCount',
    'Sale', 'SaleItem', 'PAYMENT_METHODS',
    'LedgerEvent',
]
