"""
Error taxonomy for calls against the school API.

The web adapter catches these at the page/middleware seam:
- `UnauthenticatedError` → the bearer token is missing, expired or revoked.
- `ApiUnavailableError` → transport failure or timeout (nothing was answered).
- `MalformedResponseError` → the API answered, but not with the expected shape.
- `ApiError` → any other non-success answer; carries the API's message and
  field errors for display.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ApiError(Exception):
    def __init__(
        self,
        message: str = "api_error",
        *,
        status_code: Optional[int] = None,
        errors: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors or {}

    def field_messages(self) -> List[str]:
        """Flatten `{"field": ["msg", ...]}` validation errors into a list."""
        out: List[str] = []
        for value in self.errors.values():
            if isinstance(value, (list, tuple)):
                out.extend(str(v) for v in value)
            elif value:
                out.append(str(value))
        return out


class UnauthenticatedError(ApiError):
    def __init__(self, message: str = "unauthenticated") -> None:
        super().__init__(message, status_code=401)


class ApiUnavailableError(ApiError):
    pass


class MalformedResponseError(ApiError):
    pass


__all__ = ["ApiError", "UnauthenticatedError", "ApiUnavailableError", "MalformedResponseError"]
