"""Courier connectors"""

from app.connectors.base_connector import BaseConnector
from app.connectors.fancourier_connector import (
    CourierCredentials,
    FanCourierConnector,
    SenderProfile,
    ShipmentRequest,
    TrackingEvent,
    TrackingResult,
)

__all__ = [
    "BaseConnector",
    "CourierCredentials",
    "FanCourierConnector",
    "SenderProfile",
    "ShipmentRequest",
    "TrackingEvent",
    "TrackingResult",
]
