"""Result values returned across use-case boundaries."""
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class ErrorCode:
    """Error code constants."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_USE_CASE = "UNKNOWN_USE_CASE"
    NOT_FOUND = "NOT_FOUND"
    UNSUPPORTED_PLATFORM = "UNSUPPORTED_PLATFORM"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    TRANSITION_CONFLICT = "TRANSITION_CONFLICT"
    PUBLISHING_FAILED = "PUBLISHING_FAILED"
    GENERATION_FAILED = "GENERATION_FAILED"
    IMAGE_FAILED = "IMAGE_FAILED"
    IDEMPOTENCY_IN_PROGRESS = "IDEMPOTENCY_IN_PROGRESS"
    EXECUTION_FAILED = "EXECUTION_FAILED"

    # Reported by publishing platforms
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    AUTHORIZATION_FAILED = "AUTHORIZATION_FAILED"
    EXTERNAL_ID_NOT_FOUND = "EXTERNAL_ID_NOT_FOUND"
    CONTENT_TOO_LARGE = "CONTENT_TOO_LARGE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    NETWORK_ERROR = "NETWORK_ERROR"


@dataclass
class OperationError:
    """Structured error carried by a failed result."""
    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


@dataclass
class Result(Generic[T]):
    """Success or failure of an operation."""
    success: bool
    value: Optional[T] = None
    error: Optional[OperationError] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(
        cls,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False
    ) -> "Result[T]":
        return cls(
            success=False,
            error=OperationError(code=code, message=message, details=details or {}, retryable=retryable)
        )


def field_errors(exc: Any) -> List[Dict[str, str]]:
    """Flatten a pydantic ValidationError into field-level messages."""
    errors = []
    for err in exc.errors():
        field_path = ".".join(str(part) for part in err.get("loc", ()))
        errors.append({"field": field_path or "__root__", "message": err.get("msg", "Invalid value")})
    return errors
