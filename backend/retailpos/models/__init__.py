from .catalog import Product, InventoryLog, GoodsReceipt, GoodsReceiptLine
from .customers import Customer
from .settings import AppSettings
from .invoices import Invoice, InvoiceLine
from .exchanges import Exchange, ExchangeReturnLine, ExchangeNewLine, Refund
from .offers import Offer
from .offline import OfflineOperation

__all__ = [
    'Product', 'InventoryLog', 'GoodsReceipt', 'GoodsReceiptLine',
    'Customer',
    'AppSettings',
    'Invoice', 'InvoiceLine',
    'Exchange', 'ExchangeReturnLine', 'ExchangeNewLine', 'Refund',
    'Offer',
    'OfflineOperation',
]
