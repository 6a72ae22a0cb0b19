"""
docvault Operation Executor — The gated handler chain every request runs through.

Pipeline (per request):
    1. Start timer
    2. Rate limit (sensitive or general bucket, keyed by client IP)
    3. Authenticate bearer token → live identity → ExecutionContext
       (skipped for public operations; rate limit falls back to the actor
       id when no client IP was supplied)
    4. Validate payload against the operation's pydantic schema
    5. Role check through the Authorization Gate
    6. Handler, inside one database session (commit on success; on failure
       rollback, then the handler's rollback hooks)
    7. Build the response
    8. Enqueue the audit entry (duration, outcome, error message)
    9. Operational log entry

Any exception that is not a DocVaultError becomes an opaque
InfrastructureError; its detail only reaches the operational log.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from docvault.audit.actions import AuditAction, Outcome
from docvault.audit.service import AuditLog
from docvault.db.session import Database
from docvault.engine.context import (
    ExecutionContext,
    RequestMeta,
    clear_execution_context,
    set_execution_context,
)
from docvault.engine.errors import (
    DocVaultError,
    InfrastructureError,
    NotFoundError,
    ThrottledError,
    ValidationError,
)
from docvault.engine.gate import AuthorizationGate
from docvault.engine.logging import (
    log,
    log_infrastructure_error,
    log_operation_executed,
    log_security_event,
)
from docvault.engine.ratelimit import GENERAL, SENSITIVE, RateLimiter
from docvault.engine.registry import OperationRegistry, OperationSpec, operation_registry
from docvault.engine.security import Authenticator

logger = logging.getLogger("docvault.engine.executor")


# ---------------------------------------------------------------------------
# Request / Response Models
# ---------------------------------------------------------------------------

class OperationRequest(BaseModel):
    """Normalized inbound operation descriptor."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    token: Optional[str] = None
    resource_id: Optional[int] = None
    payload: Dict[str, Any] = {}
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def meta(self) -> RequestMeta:
        return RequestMeta(
            client_ip=self.client_ip,
            user_agent=self.user_agent,
            session_id=self.session_id,
        )


class OperationResponse(BaseModel):
    """Normalized outbound response."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool = True
    status_code: int = 200
    data: Any = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def failure(cls, error: DocVaultError) -> "OperationResponse":
        body: Dict[str, Any] = {"kind": error.kind, "message": error.message}
        if isinstance(error, ValidationError) and error.field_errors:
            body["field_errors"] = [
                {"field": f, "problem": p} for f, p in error.field_errors
            ]
        if isinstance(error, ThrottledError):
            body["retry_after"] = error.retry_after
        return cls(success=False, status_code=error.status_code, error=body)


# ---------------------------------------------------------------------------
# Handler call
# ---------------------------------------------------------------------------

@dataclass
class AuditHints:
    """What the handler learned that the audit entry should carry."""

    resource_id: Optional[int] = None
    actor_id: Optional[int] = None
    action: Optional[AuditAction] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class OperationCall:
    """Everything a handler receives."""

    name: str
    session: Session
    ctx: ExecutionContext
    request: OperationRequest
    params: Any
    services: Any
    audit: AuditHints = field(default_factory=AuditHints)
    _rollback_hooks: List[Callable[[], None]] = field(default_factory=list)

    @property
    def resource_id(self) -> Optional[int]:
        return self.request.resource_id

    def require_resource_id(self) -> int:
        if self.request.resource_id is None:
            raise ValidationError(
                "Resource id is required",
                field_errors=[("id", "is required")],
            )
        return self.request.resource_id

    def on_rollback(self, hook: Callable[[], None]) -> None:
        """Register cleanup to run if the transaction does not commit."""
        self._rollback_hooks.append(hook)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class OperationExecutor:
    """
    Runs registered operations.

    Collaborators are injected so tests can swap the rate limiter and run
    the audit log synchronously.
    """

    def __init__(
        self,
        db: Database,
        authenticator: Authenticator,
        gate: AuthorizationGate,
        rate_limiter: RateLimiter,
        audit: AuditLog,
        services: Any = None,
        registry: Optional[OperationRegistry] = None,
    ):
        self._db = db
        self._authenticator = authenticator
        self._gate = gate
        self._rate_limiter = rate_limiter
        self._audit = audit
        self._services = services
        self._registry = registry or operation_registry

    @property
    def registry(self) -> OperationRegistry:
        return self._registry

    def execute(self, name: str, request: Optional[OperationRequest] = None) -> OperationResponse:
        """Full pipeline for one operation."""
        request = request or OperationRequest()
        start_time = time.monotonic()
        spec = self._registry.get(name)
        if spec is None:
            return OperationResponse.failure(NotFoundError(f"Unknown operation: {name}"))

        meta = request.meta
        ctx = ExecutionContext.anonymous(meta)
        call: Optional[OperationCall] = None
        error: Optional[DocVaultError] = None
        response: OperationResponse

        try:
            # ── Step 2: Rate limit by IP ──
            bucket = SENSITIVE if spec.sensitive else GENERAL
            if request.client_ip:
                self._rate_limit(spec, bucket, request.client_ip, ctx)

            try:
                with self._db.session_scope() as session:
                    # ── Step 3: Authenticate ──
                    if not spec.public:
                        ctx = self._authenticator.authenticate(session, request.token, meta)
                    set_execution_context(ctx)

                    if not request.client_ip:
                        requester = f"user:{ctx.user_id}" if ctx.user_id is not None else "anonymous"
                        self._rate_limit(spec, bucket, requester, ctx)

                    # ── Step 4: Validate ──
                    params = self._validate(spec, request.payload)

                    # ── Step 5: Role check ──
                    self._gate.check_roles(ctx, spec.required_roles, spec.name)

                    # ── Step 6: Handler ──
                    call = OperationCall(
                        name=spec.name,
                        session=session,
                        ctx=ctx,
                        request=request,
                        params=params,
                        services=self._services,
                    )
                    data = spec.handler(call)
                    session.flush()
            except Exception:
                # Commit failures land here too
                self._run_rollback_hooks(call)
                raise

            # ── Step 7: Response ──
            response = OperationResponse(success=True, status_code=spec.success_status, data=data)

        except DocVaultError as e:
            error = e
            if isinstance(e, InfrastructureError):
                logger.error(f"Infrastructure error in {name}: {e.detail or e.message}")
                log(log_infrastructure_error(
                    name, e, execution_id=ctx.execution_id, user_id=ctx.user_id, area=spec.area,
                ))
            response = OperationResponse.failure(e)

        except Exception as e:
            logger.exception(f"Unhandled error in operation {name}: {e}")
            log(log_infrastructure_error(
                name, e, execution_id=ctx.execution_id, user_id=ctx.user_id, area=spec.area,
            ))
            error = InfrastructureError(detail=f"{type(e).__name__}: {e}")
            response = OperationResponse.failure(error)

        finally:
            clear_execution_context()

        duration_ms = (time.monotonic() - start_time) * 1000
        self._record_audit(spec, request, ctx, call, response, error, duration_ms)
        log(log_operation_executed(
            operation_name=name,
            execution_id=ctx.execution_id,
            user_id=ctx.user_id,
            duration_ms=round(duration_ms, 2),
            success=response.success,
            status_code=response.status_code,
            resource_id=request.resource_id,
            error_kind=error.kind if error else None,
        ))
        return response

    # -----------------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------------

    def _rate_limit(self, spec: OperationSpec, bucket: str, requester: str, ctx: ExecutionContext) -> None:
        try:
            self._rate_limiter.check(bucket, requester)
        except ThrottledError as e:
            log(log_security_event(
                event="throttled",
                operation_name=spec.name,
                reason=f"{bucket} limit exceeded",
                user_id=ctx.user_id,
                client_ip=ctx.meta.client_ip,
                execution_id=ctx.execution_id,
            ))
            raise e

    @staticmethod
    def _validate(spec: OperationSpec, payload: Dict[str, Any]) -> Any:
        if spec.schema is None:
            return None
        try:
            return spec.schema.model_validate(payload or {})
        except PydanticValidationError as e:
            field_errors = [
                (".".join(str(part) for part in err["loc"]) or "payload", err["msg"])
                for err in e.errors()
            ]
            raise ValidationError("Validation failed", field_errors=field_errors)

    @staticmethod
    def _run_rollback_hooks(call: Optional[OperationCall]) -> None:
        if call is None:
            return
        for hook in reversed(call._rollback_hooks):
            try:
                hook()
            except Exception as e:
                logger.error(f"Rollback hook failed in {call.name}: {e}")

    def _record_audit(
        self,
        spec: OperationSpec,
        request: OperationRequest,
        ctx: ExecutionContext,
        call: Optional[OperationCall],
        response: OperationResponse,
        error: Optional[DocVaultError],
        duration_ms: float,
    ) -> None:
        hints = call.audit if call is not None else AuditHints()
        action = hints.action or spec.action
        if action is None:
            return

        actor_id = hints.actor_id if hints.actor_id is not None else ctx.user_id
        resource_id = hints.resource_id if hints.resource_id is not None else request.resource_id
        details = dict(hints.details)
        details.setdefault("operation", spec.name)
        details["status_code"] = response.status_code

        self._audit.record(
            action=action,
            resource_type=spec.resource,
            user_id=actor_id,
            resource_id=resource_id,
            details=details,
            ip_address=request.client_ip,
            user_agent=request.user_agent,
            session_id=request.session_id,
            outcome=Outcome.SUCCESS if response.success else Outcome.FAILURE,
            error_message=error.message if error else None,
            duration_ms=duration_ms,
        )
