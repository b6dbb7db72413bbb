"""
Exception types raised across the gateway
"""
from typing import Optional


class GatewayError(Exception):
    """Base class for gateway errors"""


class NotReachable(GatewayError):
    """Every candidate URL for a resolution failed"""

    def __init__(self, target: str, attempts: int = 0, last_error: Optional[str] = None):
        self.target = target
        self.attempts = attempts
        self.last_error = last_error
        message = f"{target} not reachable after {attempts} attempts"
        if last_error:
            message += f" ({last_error})"
        super().__init__(message)


class StorageError(GatewayError):
    """Durable mirror read or write failed"""


class InvalidRange(GatewayError, ValueError):
    """Batch range parameters cannot be satisfied"""
