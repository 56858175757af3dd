"""
Base class for courier connectors
"""
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional
from datetime import datetime
from app.utils.logger import log
from app.utils.retry import is_retryable_error, calculate_backoff
import asyncio


class BaseConnector(ABC):
    """Request bookkeeping and a retry loop shared by courier connectors"""

    # Applies to idempotent reads only; subclasses and tests may override
    RETRY_MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY = 1.0  # seconds
    RETRY_MAX_DELAY = 10.0  # seconds

    def __init__(self, name: str):
        self.name = name
        self.last_request: Optional[datetime] = None
        self.request_count = 0
        self.error_count = 0
        self.retry_count = 0

    @abstractmethod
    async def connect(self) -> bool:
        """Authenticate against the courier"""

    @abstractmethod
    async def validate_connection(self) -> Dict[str, Any]:
        """Check that credentials and account are usable"""

    def _record_call(self, success: bool) -> None:
        self.last_request = datetime.utcnow()
        self.request_count += 1
        if not success:
            self.error_count += 1

    async def _retry_operation(
        self,
        operation: Callable[[], Awaitable[Any]],
        operation_name: str = "operation",
    ) -> Any:
        """
        Await operation(), retrying transient failures with backoff.

        Non-transient errors (see is_retryable_error) propagate on the first
        failure; the last transient error propagates once attempts run out.
        """
        attempt = 1
        while True:
            try:
                result = await operation()
            except Exception as e:
                if attempt >= self.RETRY_MAX_ATTEMPTS or not is_retryable_error(e):
                    raise
                delay = calculate_backoff(
                    attempt,
                    base_delay=self.RETRY_BASE_DELAY,
                    max_delay=self.RETRY_MAX_DELAY
                )
                log.warning(
                    f"{self.name} {operation_name} attempt {attempt} failed: "
                    f"{type(e).__name__}: {e}. Retrying in {delay:.1f}s"
                )
                self.retry_count += 1
                attempt += 1
                await asyncio.sleep(delay)
            else:
                return result

    def get_status(self) -> Dict[str, Any]:
        """Request counters and retry settings"""
        return {
            "name": self.name,
            "last_request": self.last_request,
            "request_count": self.request_count,
            "error_count": self.error_count,
            "retry_count": self.retry_count,
            "error_rate": self.error_count / max(self.request_count, 1),
            "retry_config": {
                "max_attempts": self.RETRY_MAX_ATTEMPTS,
                "base_delay": self.RETRY_BASE_DELAY,
                "max_delay": self.RETRY_MAX_DELAY
            }
        }
