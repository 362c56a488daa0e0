"""Error taxonomy shared by the bridge services and the HTTP layer."""

from __future__ import annotations


class BridgeError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BridgeError):
    """Missing or malformed required fields."""

    status_code = 400


class AuthError(BridgeError):
    """Shared-secret mismatch on a push endpoint."""

    status_code = 401


class NotFoundError(BridgeError):
    status_code = 404


class UpstreamError(BridgeError):
    """Broker API or network failure; the message is passed through to the caller."""

    status_code = 500


__all__ = ["AuthError", "BridgeError", "NotFoundError", "UpstreamError", "ValidationError"]
