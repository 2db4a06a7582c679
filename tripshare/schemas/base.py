from pydantic import BaseModel
from typing import Any, Dict, Generic, Optional, TypeVar

from tripshare.core.exceptions import ErrorCategory, ErrorCode, TripShareException

T = TypeVar('T')


class Envelope(BaseModel, Generic[T]):
    status: str
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class Message(BaseModel):
    message: str


class ErrorInfo(BaseModel):
    code: ErrorCode
    category: ErrorCategory
    message: str
    details: Dict[str, Any] = {}
    status_code: int = 500
    retryable: bool = False

    @classmethod
    def from_exception(cls, exc: TripShareException) -> "ErrorInfo":
        return cls(
            code=exc.error_code,
            category=exc.category,
            message=exc.message,
            details=exc.details,
            status_code=exc.status_code,
            retryable=exc.retryable,
        )


class ServiceResult(BaseModel, Generic[T]):
    """Typed outcome of a trip service operation.

    Business conditions (denied, not found, conflicts, bad input) come back as
    ``ok=False`` with an ``ErrorInfo``; only infrastructure failures raise.
    """
    ok: bool
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def success(cls, data: Any = None) -> "ServiceResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, exc: TripShareException) -> "ServiceResult":
        return cls(ok=False, error=ErrorInfo.from_exception(exc))

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None

    def to_envelope(self) -> Envelope:
        if self.ok:
            return Envelope(status="ok", data=self.data)
        return Envelope(
            status="error",
            error=self.error.message,
            error_code=self.error.code.value,
        )
