"""Error types raised between the export components."""

from __future__ import annotations

from typing import Any


class ExportJobValidationError(ValueError):
    """Inbound job payload is malformed or missing required fields."""

    def __init__(self, error: str, fields: list[str] | None = None) -> None:
        super().__init__(error)
        self.error = error
        self.fields = list(fields or [])

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error}
        if self.fields:
            payload["fields"] = self.fields
        return payload


class UpstreamError(RuntimeError):
    def __init__(self, message: str, reason_code: str = "github_unreachable") -> None:
        super().__init__(message)
        self.reason_code = reason_code


class UpstreamTimeout(UpstreamError):
    def __init__(self, message: str, timeout_s: float) -> None:
        super().__init__(message, reason_code="github_timeout")
        self.timeout_s = timeout_s


class UpstreamRejection(UpstreamError):
    """A hosting-API step answered with a non-2xx status that is not a known conflict."""

    def __init__(self, step: str, status_code: int, body: str) -> None:
        super().__init__(f"{step}: {status_code} {body}", reason_code=f"github_{status_code}")
        self.step = step
        self.status_code = status_code
        self.body = body
