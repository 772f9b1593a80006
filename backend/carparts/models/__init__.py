from .auth import User, SessionToken
from .parts import Part, StockMovement
from .billing import Bill, BillItem, Refund, RefundItem
from .reservations import Reservation, ReservationItem
from .audit import AuditLogEntry

__all__ = [
    'User', 'SessionToken',
    'Part', 'StockMovement',
    'Bill', 'BillItem', 'Refund', 'RefundItem',
    'Reservation', 'ReservationItem',
    'AuditLogEntry',
]
