from .customers import Customer, CustomerCredit, CreditApplication
from .inventory import StockItem, StockItemEvent
from .sales import Order, OrderLine, LedgerTransaction, OrderStatus, NON_RESERVING_STATUSES
from .documents import Return, ReturnLine, AuditEvent

__all__ = [
    'Customer', 'CustomerCredit', 'CreditApplication',
    'StockItem', 'StockItemEvent',
    'Order', 'OrderLine', 'LedgerTransaction', 'OrderStatus', 'NON_RESERVING_STATUSES',
    'Return', 'ReturnLine', 'AuditEvent',
]
