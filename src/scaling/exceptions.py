"""Autoscaler exception classes."""

from typing import Optional


class AutoScalerError(Exception):
    """Base exception for autoscaler errors."""
    pass


class ConfigurationError(AutoScalerError, ValueError):
    """Raised when the autoscaler configuration is invalid."""
    pass


class TransientStoreError(AutoScalerError):
    """Raised by collaborators for failures that are worth retrying."""
    pass


class PermissionCheckError(AutoScalerError):
    """Raised when access to one of the configured pools cannot be verified."""
    def __init__(self, message: str = "Insufficient permissions to access the configured pools"):
        super().__init__(message)


class MetricsUnavailableError(AutoScalerError):
    """Raised when a usage sample for the whole batch could not be taken."""
    def __init__(self, server: str):
        self.server = server
        super().__init__(f"Usage sampling returned nothing for server {server}")


class MutationError(AutoScalerError):
    """Raised when the control plane rejects a capacity change."""
    def __init__(self, pool_id: str, message: str, status_code: Optional[int] = None):
        self.pool_id = pool_id
        self.status_code = status_code
        msg = f"{pool_id}: {message}"
        if status_code is not None:
            msg += f" (status: {status_code})"
        super().__init__(msg)
