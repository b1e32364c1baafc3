from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StorageUnavailable(Exception):
    """Raised when a backing store cannot be reached within its timeout."""

    def __init__(self, message: str, *, backend: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.backend = backend
        self.cause = cause


__all__ = ["ConstraintViolation", "StorageUnavailable"]
