"""
Unified base exception classes for all services.

Each service extends ServiceError with its own base (e.g. OrderServiceError)
so that routers can catch one class per service and translate it into an
HTTPException.
"""
from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base exception for all service-layer errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        code: Optional[str] = None,
        **extra: Any,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.extra = extra
        super().__init__(self.message)

    def to_detail(self):
        """HTTPException detail: plain message, or a dict when the error carries a code or payload."""
        if not self.code and not self.extra:
            return self.message
        detail: Dict[str, Any] = {"message": self.message}
        if self.code:
            detail["code"] = self.code
        detail.update(self.extra)
        return detail
