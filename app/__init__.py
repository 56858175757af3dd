"""AWB Sync - courier shipment backend"""

__version__ = "1.0.0"
