from .orders import Order, LineItem
from .editions import EditionEvent, ProductEditionLock
from .warehouse import WarehouseRecord

__all__ = [
    'Order', 'LineItem',
    'EditionEvent', 'ProductEditionLock',
    'WarehouseRecord',
]
