from .inventory import Product, StockMovement
from .sales import SaleLine, InvoiceSequence
from .audit import UndoLogEntry, InvoiceEditLog
from .customers import Customer

__all__ = [
    'Product', 'StockMovement',
    'SaleLine', 'InvoiceSequence',
    'UndoLogEntry', 'InvoiceEditLog',
    'Customer',
]
