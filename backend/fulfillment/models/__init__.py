from .inventory import Product, StockReservation, StockReservationLine
from .customers import Customer
from .orders import Order, OrderLine, InvoiceSequence

__all__ = [
    'Product', 'StockReservation', 'StockReservationLine',
    'Customer',
    'Order', 'OrderLine', 'InvoiceSequence',
]
