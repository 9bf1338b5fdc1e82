from typing import Any, Optional


class ShelfkeeperError(Exception):
    pass


class ConfigError(ShelfkeeperError):
    pass


class AuthError(ShelfkeeperError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StoreError(ShelfkeeperError):
    """A rejected or failed request against the table API.

    Mirrors the PostgREST error payload so callers can log the same
    fields the backend reports.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details
        self.hint = hint

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.append(f"(code {self.code})")
        if self.details:
            parts.append(f"details: {self.details}")
        if self.hint:
            parts.append(f"hint: {self.hint}")
        return " ".join(parts)
