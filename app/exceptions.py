"""
Domain exceptions for AWB creation, tracking and postal code lookup.
"""
from typing import List, Optional


class AWBSyncError(Exception):
    """Base class for all errors raised by this backend"""


class ConfigurationError(AWBSyncError):
    """Tenant missing or incomplete courier credentials. Never retried."""


class ValidationError(AWBSyncError):
    """Local pre-flight validation failed before any remote call"""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("LOCAL VALIDATION FAILED:\n" + "\n".join(errors))


class CourierAPIError(AWBSyncError):
    """The courier rejected a request or returned an unusable payload"""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class CourierAuthError(CourierAPIError):
    """Login / token exchange failed"""
