from __future__ import annotations

from typing import Any


class HubError(Exception):
    """Base for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> Any:
        return self.message


class ValidationError(HubError):
    """User input outside policy bounds. Never retried."""

    status_code = 400


class NotFoundError(HubError):
    status_code = 404


class ConflictError(HubError):
    status_code = 409


class ConfigurationError(HubError):
    """Panel URL or API key missing/unusable."""

    status_code = 503


class InsufficientResourceError(HubError):
    """Not enough coins, slots, or purchased capacity for the request."""

    status_code = 400

    def __init__(self, resource: str, have: int, need: int, message: str | None = None):
        super().__init__(message or f"Insufficient {resource}: have {have}, need {need}")
        self.resource = resource
        self.have = have
        self.need = need

    @property
    def shortfall(self) -> int:
        return max(0, self.need - self.have)

    def to_detail(self) -> Any:
        return {
            "message": self.message,
            "resource": self.resource,
            "have": self.have,
            "need": self.need,
            "shortfall": self.shortfall,
        }


class RemoteAPIError(HubError):
    """Panel answered with a non-2xx status or an unusable body."""

    status_code = 502
    retryable = False

    def __init__(self, detail: str, payload: Any = None, status: int | None = None):
        super().__init__(detail)
        self.payload = payload
        self.status = status

    def to_detail(self) -> Any:
        out: dict[str, Any] = {"message": self.message}
        if self.status is not None:
            out["panel_status"] = self.status
        if self.payload is not None:
            out["panel_error"] = self.payload
        return out


class PanelTimeoutError(RemoteAPIError):
    """Panel did not answer in time or could not be reached. Safe to retry later."""

    status_code = 504
    retryable = True


class PanelIntegrityError(HubError):
    """Panel data is internally inconsistent (e.g. primary allocation missing)."""

    status_code = 502


class CooldownError(HubError):
    status_code = 429

    def __init__(self, remaining_seconds: int):
        plural = "s" if remaining_seconds != 1 else ""
        super().__init__(f"Please wait {remaining_seconds} more second{plural} before completing this link again.")
        self.remaining_seconds = remaining_seconds

    def to_detail(self) -> Any:
        return {"message": self.message, "cooldown_remaining": self.remaining_seconds}
