from .auth import User, SessionToken
from .catalog import Category, Product
from .sales import Sale, SaleItem
from .invoices import Invoice, InvoiceItem, InvoicePayment
from .documents import DocumentSequence
from .imports import ImportBatch

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product',
    'Sale', 'SaleItem',
    'Invoice', 'InvoiceItem', 'InvoicePayment',
    'DocumentSequence',
    'ImportBatch',
]
