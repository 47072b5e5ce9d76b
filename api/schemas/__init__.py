# Schemas module
from .requests import ExecuteRequest, ExecutionOptions
from .responses import (
    ErrorResponse,
    ExecutionResult,
    UseCaseListResponse,
    ValidationResult
)

__all__ = [
    "ExecuteRequest",
    "ExecutionOptions",
    "ErrorResponse",
    "ExecutionResult",
    "UseCaseListResponse",
    "ValidationResult"
]
