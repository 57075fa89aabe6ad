from .locations import Warehouse, Location, LOCATION_TYPES
from .stock import StockItem, StockMove, Reservation, MOVE_REASONS
from .orders import PurchaseOrder, PurchaseOrderLine, SalesOrder, SalesOrderLine
from .adjustments import InventoryAdjustment, InventoryAdjustmentLine
from .alerts import StockThreshold, StockAlert
from .documents import LedgerEvent, DocumentSequence

__all__ = [
    'Warehouse', 'Location', 'LOCATION_TYPES',
    'StockItem', 'StockMove', 'Reservation', 'MOVE_REASONS',
    'PurchaseOrder', 'PurchaseOrderLine', 'SalesOrder', 'SalesOrderLine',
    'InventoryAdjustment', 'InventoryAdjustmentLine',
    'StockThreshold', 'StockAlert',
    'LedgerEvent', 'DocumentSequence',
]
