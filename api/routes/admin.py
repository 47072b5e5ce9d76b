"""Admin routes: list, validate and execute module use cases."""
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from api.admin.base import AdminFacade
from api.schemas.requests import ExecuteRequest
from api.schemas.responses import ExecutionResult, UseCaseListResponse, ValidationResult
from shared.result import ErrorCode


router = APIRouter(prefix="/admin", tags=["admin"])

# HTTP status for each failure code; anything unlisted is a business rule rejection
ERROR_STATUS_CODES = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.UNKNOWN_USE_CASE: status.HTTP_404_NOT_FOUND,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.TRANSITION_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.IDEMPOTENCY_IN_PROGRESS: status.HTTP_409_CONFLICT,
    ErrorCode.PUBLISHING_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.GENERATION_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.IMAGE_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.AUTHENTICATION_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.AUTHORIZATION_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.EXTERNAL_ID_NOT_FOUND: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.CONTENT_TOO_LARGE: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.RATE_LIMIT_EXCEEDED: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.NETWORK_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.EXECUTION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_facades(request: Request) -> Dict[str, AdminFacade]:
    """Facades built at startup."""
    return request.app.state.facades


def _get_facade(module: str, facades: Dict[str, AdminFacade]) -> AdminFacade:
    facade = facades.get(module)
    if facade is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Module {module} not found"
        )
    return facade


def status_code_for(result: ExecutionResult) -> int:
    if result.success:
        return status.HTTP_200_OK
    return ERROR_STATUS_CODES.get(result.error["code"], status.HTTP_400_BAD_REQUEST)


@router.get("/{module}/use-cases", response_model=UseCaseListResponse)
async def list_use_cases(
    module: str,
    facades: Dict[str, AdminFacade] = Depends(get_facades)
):
    """Use cases a module exposes, with their input schemas."""
    facade = _get_facade(module, facades)
    return UseCaseListResponse(module=module, use_cases=facade.list_use_cases())


@router.post("/{module}/{use_case}/validate", response_model=ValidationResult)
async def validate_use_case(
    module: str,
    use_case: str,
    payload: Dict[str, Any],
    facades: Dict[str, AdminFacade] = Depends(get_facades)
):
    """Validate input without executing; always 200 for a known module."""
    facade = _get_facade(module, facades)
    return facade.validate(use_case, payload)


@router.post("/{module}/{use_case}/execute", response_model=ExecutionResult)
async def execute_use_case(
    module: str,
    use_case: str,
    request: ExecuteRequest,
    facades: Dict[str, AdminFacade] = Depends(get_facades)
):
    """
    Execute a use case.

    - Input is validated first; nothing runs on invalid input
    - options.dryRun runs against staged writes and simulated collaborators
    - options.idempotencyKey replays the first result for repeated calls
    """
    facade = _get_facade(module, facades)
    result = await facade.execute(use_case, request.input, request.options)
    return JSONResponse(status_code=status_code_for(result), content=result.model_dump(mode="json"))
