"""Database models for the AWB sync backend"""

from app.models.company import Company

from app.models.order import (
    Order,
    OrderLineItem,
    OrderStatus,
    Store,
    TERMINAL_ORDER_STATUSES
)

from app.models.awb import (
    AWB,
    AWBStatusHistory,
    UnknownAWBStatus
)

from app.models.sync_log import (
    SyncLog,
    SyncLogEntry,
    SyncType,
    SyncStatus,
    LogLevel
)
