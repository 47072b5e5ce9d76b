"""Response schemas for admin endpoints."""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ValidationResult(BaseModel):
    """Outcome of validating use case input."""
    is_valid: bool = Field(..., description="Whether the input can be executed")
    errors: List[Dict[str, str]] = Field(default_factory=list, description="Field-level errors")
    warnings: List[str] = Field(default_factory=list, description="Non-blocking concerns")
    normalized_input: Optional[Dict[str, Any]] = Field(None, description="Input after defaults and coercion")


class ExecutionResult(BaseModel):
    """Structured result of every facade execution, success or not."""
    success: bool
    module: str
    use_case: str
    request_id: str
    dry_run: bool = False
    data: Optional[Any] = None
    error: Optional[Dict[str, Any]] = Field(None, description="{code, message, details} on failure")
    warnings: List[str] = Field(default_factory=list)
    duration_ms: int = 0
    replayed: bool = Field(default=False, description="True when served from an idempotency record")


class UseCaseListResponse(BaseModel):
    """Use cases exposed by a module."""
    module: str
    use_cases: List[Dict[str, Any]]


class ErrorResponse(BaseModel):
    """Schema for error responses."""
    error: str
    detail: Optional[str] = None
