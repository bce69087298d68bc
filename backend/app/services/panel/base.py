from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.services.errors import RemoteAPIError


def error_message(error: Any) -> str:
    """Best human-readable line out of a panel error body."""
    if error is None:
        return "Unknown panel error"
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        errors = error.get("errors")
        if isinstance(errors, list):
            for e in errors:
                if isinstance(e, dict) and e.get("detail"):
                    return str(e["detail"])
        for key in ("detail", "message"):
            if error.get(key):
                return str(error[key])
    return str(error)[:300]


@dataclass
class ApiResult:
    """Uniform outcome of one panel call. Non-2xx answers are failures, not exceptions."""

    success: bool
    data: Any = None
    error: Any = None
    status: int | None = None

    @property
    def message(self) -> str:
        return error_message(self.error)

    def unwrap(self, action: str) -> Any:
        if not self.success:
            raise RemoteAPIError(f"Panel request failed ({action}): {self.message}", payload=self.error, status=self.status)
        return self.data


@dataclass
class TestConnectionResult:
    ok: bool
    detail: str
    meta: dict[str, Any] | None = None


@dataclass(frozen=True)
class PanelCredentials:
    url: str
    api_key: str

    @property
    def is_complete(self) -> bool:
        return bool(self.url and self.api_key)


@dataclass(frozen=True)
class PrimaryAllocation:
    id: int
    alias: str | None
    ip: str | None
    port: int | None


@dataclass
class BuildOutcome:
    data: Any
    retried_with_allocation: bool = False
    payload: dict[str, Any] = field(default_factory=dict)
