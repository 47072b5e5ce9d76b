"""Uniform validate -> (dry-run | execute) -> structured-result contract.

Every module exposes its use cases through an ``AdminFacade``. ``execute``
always validates first. A dry run executes the same handler against a
simulated service container (staged writes, no-op collaborators, private
event bus), so dry and real runs share one code path. Every execution is
logged with use case, request id, user id and timing.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from api.admin.idempotency import COMPLETED, IdempotencyStore
from api.schemas.requests import ExecutionOptions
from api.schemas.responses import ExecutionResult, ValidationResult
from shared.result import ErrorCode, Result, field_errors
from shared.utils import generate_request_id

logger = logging.getLogger(__name__)

Handler = Callable[[Any, Any, ExecutionOptions], Awaitable[Result]]


@dataclass
class UseCase:
    """A named operation exposed by a facade."""
    name: str
    description: str
    input_model: Type[BaseModel]
    handler: Handler
    side_effects: List[str] = field(default_factory=list)
    idempotent: bool = False
    risk_level: str = "low"
    warnings: Optional[Callable[[Any], List[str]]] = None

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "side_effects": self.side_effects,
            "idempotent": self.idempotent,
            "risk_level": self.risk_level,
            "input_schema": self.input_model.model_json_schema()
        }


class AdminFacade:
    """Base class for module facades."""

    module: str = ""

    def __init__(self, container: Any, idempotency_store: Optional[IdempotencyStore] = None):
        self.container = container
        self.idempotency_store = idempotency_store
        self._use_cases: Dict[str, UseCase] = {}
        self.register_use_cases()

    def register_use_cases(self):
        """Subclasses register their use cases here."""

    def register(self, use_case: UseCase):
        self._use_cases[use_case.name] = use_case

    def list_use_cases(self) -> List[Dict[str, Any]]:
        return [use_case.describe() for use_case in self._use_cases.values()]

    def _validate(self, use_case_name: str, payload: Any) -> Tuple[ValidationResult, Optional[BaseModel]]:
        use_case = self._use_cases.get(use_case_name)
        if use_case is None:
            return ValidationResult(
                is_valid=False,
                errors=[{"field": "use_case", "message": f"Unknown use case '{use_case_name}'"}]
            ), None

        try:
            model = use_case.input_model.model_validate(payload if payload is not None else {})
        except ValidationError as e:
            return ValidationResult(is_valid=False, errors=field_errors(e)), None

        warnings = use_case.warnings(model) if use_case.warnings else []
        return ValidationResult(
            is_valid=True,
            warnings=warnings,
            normalized_input=model.model_dump(mode="json")
        ), model

    def validate(self, use_case_name: str, payload: Any) -> ValidationResult:
        """Check input without running anything."""
        validation, _ = self._validate(use_case_name, payload)
        return validation

    async def execute(
        self,
        use_case_name: str,
        payload: Any,
        options: Optional[ExecutionOptions] = None
    ) -> ExecutionResult:
        """Validate, then run for real or as a dry run; never raises."""
        options = options or ExecutionOptions()
        request_id = options.request_id or generate_request_id()
        started = time.monotonic()
        scope = f"{self.module}.{use_case_name}"

        logger.info(
            f"[{scope}] started request_id={request_id} user_id={options.user_id} dry_run={options.dry_run}"
        )

        use_case = self._use_cases.get(use_case_name)
        if use_case is None:
            outcome = Result.fail(ErrorCode.UNKNOWN_USE_CASE, f"Unknown use case '{use_case_name}'", {"module": self.module})
            return self._finish(scope, use_case_name, request_id, options, outcome, [], started)

        validation, model = self._validate(use_case_name, payload)
        if not validation.is_valid:
            outcome = Result.fail(ErrorCode.VALIDATION_ERROR, "Input validation failed", {"errors": validation.errors})
            return self._finish(scope, use_case_name, request_id, options, outcome, validation.warnings, started)

        use_idempotency = bool(options.idempotency_key and not options.dry_run and self.idempotency_store)
        if use_idempotency:
            claimed, record = await self.idempotency_store.claim(scope, options.idempotency_key)
            if not claimed:
                if record and record.get("state") == COMPLETED:
                    replay = ExecutionResult.model_validate(record["result"])
                    replay.replayed = True
                    logger.info(f"[{scope}] replayed request_id={request_id} idempotency_key={options.idempotency_key}")
                    return replay
                outcome = Result.fail(
                    ErrorCode.IDEMPOTENCY_IN_PROGRESS,
                    "A request with this idempotency key is already in progress",
                    {"idempotency_key": options.idempotency_key}
                )
                return self._finish(scope, use_case_name, request_id, options, outcome, validation.warnings, started)

        container = self.container.simulated() if options.dry_run else self.container
        try:
            outcome = await use_case.handler(container, model, options)
        except Exception as e:
            logger.error(f"[{scope}] raised request_id={request_id}: {e}")
            outcome = Result.fail(ErrorCode.EXECUTION_FAILED, f"Unexpected error: {e}")

        result = self._finish(scope, use_case_name, request_id, options, outcome, validation.warnings, started)

        if use_idempotency:
            if outcome.success or outcome.error.code != ErrorCode.EXECUTION_FAILED:
                await self.idempotency_store.complete(scope, options.idempotency_key, result.model_dump(mode="json"))
            else:
                await self.idempotency_store.release(scope, options.idempotency_key)
        return result

    def _finish(
        self,
        scope: str,
        use_case_name: str,
        request_id: str,
        options: ExecutionOptions,
        outcome: Result,
        warnings: List[str],
        started: float
    ) -> ExecutionResult:
        duration_ms = int((time.monotonic() - started) * 1000)
        result = ExecutionResult(
            success=outcome.success,
            module=self.module,
            use_case=use_case_name,
            request_id=request_id,
            dry_run=options.dry_run,
            data=outcome.value if outcome.success else None,
            error=outcome.error.to_dict() if outcome.error else None,
            warnings=warnings,
            duration_ms=duration_ms
        )

        if outcome.success:
            logger.info(
                f"[{scope}] succeeded request_id={request_id} user_id={options.user_id} "
                f"dry_run={options.dry_run} duration_ms={duration_ms}"
            )
        else:
            logger.warning(
                f"[{scope}] failed request_id={request_id} user_id={options.user_id} "
                f"dry_run={options.dry_run} duration_ms={duration_ms} code={outcome.error.code}"
            )
        return result
