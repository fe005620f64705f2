"""
Operator errors.

NotFoundError and the trigger gate are absorbed by the reconciler. Every other
error propagates to the controller, which requeues the key with backoff.
"""

from typing import Optional


class OperatorError(Exception):
    """Base class for errors raised by the operator."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(OperatorError):
    """Raised when a requested cluster object does not exist."""


class DecodeError(OperatorError):
    """Raised when a serialized object cannot be parsed into its typed form."""


class TransportError(OperatorError):
    """Raised when a call to the cluster store or the repository host fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class WebhookSyncError(OperatorError):
    """Raised when listing or creating repository webhooks fails."""
