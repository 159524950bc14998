from __future__ import annotations

from typing import Any, Optional


class LeadSyncError(Exception):
    """Base error. `status_code` is the HTTP-equivalent used by the API layer."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(LeadSyncError):
    status_code = 400


class NotFoundError(LeadSyncError):
    status_code = 404


class PersistenceError(LeadSyncError):
    status_code = 500


class TransientTransportError(LeadSyncError):
    """Feed hiccup; retried by the subscriber, never surfaced."""

    status_code = 503


class SubscriptionError(LeadSyncError):
    """Subscription could not be established after retries."""

    status_code = 503
