"""
docvault Authorization Gate — The single decision table for who may do what.

Decisions, in order of evaluation:
    1. Role check       — operation's required-role set (empty = any authenticated)
    2. Ownership check  — resource-scoped document operations:
                            admin/manager      → ALLOW
                            declared uploader  → ALLOW
                            in capability list → ALLOW
                            otherwise          → DENY
    3. Listing filter   — not ALLOW/DENY but a query constraint for "user" role

Callers resolve the resource first and raise NotFoundError for a missing or
soft-deleted id, so absence is always reported before any ownership verdict.
Every denial is written to the operational security log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import and_, exists, or_

from docvault.db.models import Document, DocumentPermission, User
from docvault.engine.context import PRIVILEGED_ROLES, ExecutionContext
from docvault.engine.errors import AuthorizationError
from docvault.engine.logging import log, log_security_event

logger = logging.getLogger("docvault.engine.gate")


class Capability(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


ALLOW_PRIVILEGED = GateDecision(True, "privileged_role")
ALLOW_OWNER = GateDecision(True, "owner")
ALLOW_PERMISSION = GateDecision(True, "permission_list")


class AuthorizationGate:
    """
    Stateless evaluator. One instance is shared by every operation.
    """

    # -------------------------------------------------------------------
    # Role checks
    # -------------------------------------------------------------------

    def decide_roles(self, ctx: ExecutionContext, required_roles: Iterable[str]) -> GateDecision:
        roles = frozenset(required_roles or ())
        if not roles:
            return GateDecision(True, "no_role_required")
        if ctx.role in roles:
            return GateDecision(True, "role")
        return GateDecision(False, f"role '{ctx.role}' not in {sorted(roles)}")

    def check_roles(
        self,
        ctx: ExecutionContext,
        required_roles: Iterable[str],
        operation_name: str = "",
    ) -> None:
        decision = self.decide_roles(ctx, required_roles)
        if not decision:
            self._deny(
                ctx,
                operation_name,
                decision.reason,
                f"User role {ctx.role} is not authorized to access this operation",
                required=sorted(required_roles),
            )

    # -------------------------------------------------------------------
    # Document ownership
    # -------------------------------------------------------------------

    def decide_document(
        self,
        ctx: ExecutionContext,
        document: Document,
        capability: Capability = Capability.READ,
    ) -> GateDecision:
        if ctx.is_privileged:
            return ALLOW_PRIVILEGED
        if ctx.user_id is not None and document.uploaded_by == ctx.user_id:
            return ALLOW_OWNER
        if ctx.user_id in document.permission_ids(Capability(capability).value):
            return ALLOW_PERMISSION
        return GateDecision(False, f"no {Capability(capability).value} access")

    def require_document(
        self,
        ctx: ExecutionContext,
        document: Document,
        capability: Capability = Capability.READ,
        operation_name: str = "",
    ) -> GateDecision:
        decision = self.decide_document(ctx, document, capability)
        if not decision:
            self._deny(
                ctx,
                operation_name,
                decision.reason,
                "Not authorized to access this resource",
                resource="document",
                resource_id=document.id,
            )
        return decision

    def require_document_owner(
        self,
        ctx: ExecutionContext,
        document: Document,
        operation_name: str = "",
    ) -> None:
        """Owner or admin/manager only. Permission lists do not count."""
        if ctx.is_privileged or document.uploaded_by == ctx.user_id:
            return
        self._deny(
            ctx,
            operation_name,
            "not owner",
            "Only the owner or a manager can change sharing",
            resource="document",
            resource_id=document.id,
        )

    # -------------------------------------------------------------------
    # Identity administration
    # -------------------------------------------------------------------

    def require_self_or_roles(
        self,
        ctx: ExecutionContext,
        target_user_id: int,
        roles: Iterable[str] = PRIVILEGED_ROLES,
        operation_name: str = "",
    ) -> None:
        if ctx.user_id == target_user_id or ctx.role in frozenset(roles):
            return
        self._deny(
            ctx,
            operation_name,
            "not self and role insufficient",
            "Not authorized to access this user",
            resource="user",
            resource_id=target_user_id,
        )

    def require_user_update(
        self,
        ctx: ExecutionContext,
        target: User,
        operation_name: str = "",
    ) -> None:
        """Admin: anyone. Manager: role=user targets and self. User: self only."""
        if ctx.is_admin or ctx.user_id == target.id:
            return
        if ctx.role == "manager" and target.role == "user":
            return
        self._deny(
            ctx,
            operation_name,
            f"{ctx.role} cannot update {target.role}",
            "Not authorized to update this user",
            resource="user",
            resource_id=target.id,
        )

    def can_include_inactive(self, ctx: ExecutionContext) -> bool:
        return ctx.is_privileged

    # -------------------------------------------------------------------
    # Listing filter
    # -------------------------------------------------------------------

    def filter_documents(self, query, ctx: ExecutionContext, explicit_status: bool = False):
        """
        Constrain a Document query to what ``ctx`` may list.

        For the "user" role the row is visible when ANY of these hold:
        uploader is the actor, actor is on the read list, the document is
        public, or (only when the caller gave no status filter) it is approved.
        """
        if ctx.is_privileged:
            return query

        on_read_list = exists().where(
            and_(
                DocumentPermission.document_id == Document.id,
                DocumentPermission.user_id == ctx.user_id,
                DocumentPermission.capability == Capability.READ.value,
            )
        )
        clauses = [
            Document.uploaded_by == ctx.user_id,
            on_read_list,
            Document.is_public.is_(True),
        ]
        if not explicit_status:
            clauses.append(Document.status == "approved")
        return query.filter(or_(*clauses))

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _deny(
        self,
        ctx: ExecutionContext,
        operation_name: str,
        reason: str,
        message: str,
        resource: Optional[str] = None,
        resource_id: Optional[int] = None,
        required=None,
    ) -> None:
        logger.info(
            f"Access denied: user={ctx.user_id} role={ctx.role} "
            f"op={operation_name or '?'} reason={reason}"
        )
        log(log_security_event(
            event="access_denied",
            operation_name=operation_name or "system",
            reason=reason,
            user_id=ctx.user_id,
            role=ctx.role,
            client_ip=ctx.meta.client_ip,
            execution_id=ctx.execution_id,
        ))
        raise AuthorizationError(
            message,
            user_id=ctx.user_id,
            role=ctx.role,
            required=required,
            resource=resource,
            resource_id=resource_id,
        )
