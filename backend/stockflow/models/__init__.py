from .inventory import Product, StockAddition, DamagedProduct, StockCorrection, StockMovement
from .sales import Sale, SaleAudit

__all__ = [
    'Product', 'StockAddition', 'DamagedProduct', 'StockCorrection', 'StockMovement',
    'Sale', 'SaleAudit',
]
