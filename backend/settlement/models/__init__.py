from .directory import Company, User
from .catalog import Product
from .orders import Order, OrderLine
from .inventory import StockRecord, StockMovement
from .mileage import MileageAccount, MileageEntry
from .statements import (
    ReturnStatement,
    ReturnStatementLine,
    DeductionStatement,
    DeductionStatementLine,
    DocumentSequence,
)

__all__ = [
    'Company', 'User',
    'Product',
    'Order', 'OrderLine',
    'StockRecord', 'StockMovement',
    'MileageAccount', 'MileageEntry',
    'ReturnStatement', 'ReturnStatementLine',
    'DeductionStatement', 'DeductionStatementLine',
    'DocumentSequence',
]
