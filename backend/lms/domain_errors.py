"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class NotFoundError(DomainError):
    """Referenced entity (department, role, user, module, enrollment) does not exist."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code=code, http_status=404, message=message, details=details)


class ConflictError(DomainError):
    """Duplicate enrollment, role assignment or permission grant."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code=code, http_status=409, message=message, details=details)


class InvalidOperationError(DomainError):
    """Business rule violation: bad transition, inactive role, unmet prerequisites, cyclic move."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code=code, http_status=422, message=message, details=details)
