"""
docvault Operation Registry — Declared, gated operations by name.

Operations are plain functions decorated with ``@operation``. The decorator
attaches the gating metadata and registers the function in the global
registry; the executor looks operations up by name.

    @operation(
        "documents.approval",
        action=AuditAction.DOCUMENT_APPROVE,
        resource=ResourceKind.DOCUMENT,
        roles=("admin", "manager"),
        schema=ApprovalInput,
    )
    def approval(call):
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Type

from pydantic import BaseModel

from docvault.audit.actions import AuditAction, ResourceKind

logger = logging.getLogger("docvault.engine.registry")


@dataclass
class OperationSpec:
    """Metadata for a registered operation."""

    name: str                                 # e.g. "documents.upload"
    handler: Callable[..., Any]
    resource: ResourceKind
    action: Optional[AuditAction] = None      # None = not audited
    required_roles: FrozenSet[str] = frozenset()
    public: bool = False                      # no credential required
    sensitive: bool = False                   # sensitive rate-limit bucket
    schema: Optional[Type[BaseModel]] = None
    success_status: int = 200
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def area(self) -> str:
        return self.name.split(".", 1)[0]


class OperationRegistry:
    """In-memory registry keyed by operation name."""

    def __init__(self):
        self._operations: Dict[str, OperationSpec] = {}

    def register(self, spec: OperationSpec) -> None:
        existing = self._operations.get(spec.name)
        if existing is not None and existing.handler is not spec.handler:
            logger.warning(f"Operation '{spec.name}' re-registered, replacing previous handler")
        self._operations[spec.name] = spec
        logger.debug(f"Registered operation: {spec.name}")

    def get(self, name: str) -> Optional[OperationSpec]:
        return self._operations.get(name)

    def names(self, area: Optional[str] = None) -> List[str]:
        return sorted(
            name for name, spec in self._operations.items()
            if area is None or spec.area == area
        )

    def __contains__(self, name: str) -> bool:
        return name in self._operations

    def __len__(self) -> int:
        return len(self._operations)

    def clear(self) -> None:
        self._operations.clear()


# Global registry singleton
operation_registry = OperationRegistry()


def operation(
    name: str,
    *,
    resource: ResourceKind,
    action: Optional[AuditAction] = None,
    roles: Iterable[str] = (),
    public: bool = False,
    sensitive: bool = False,
    schema: Optional[Type[BaseModel]] = None,
    success_status: int = 200,
    registry: Optional[OperationRegistry] = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator declaring a gated operation."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        spec = OperationSpec(
            name=name,
            handler=fn,
            resource=resource,
            action=action,
            required_roles=frozenset(roles),
            public=public,
            sensitive=sensitive,
            schema=schema,
            success_status=success_status,
            description=(fn.__doc__ or "").strip().splitlines()[0] if fn.__doc__ else "",
        )
        fn._docvault_operation = spec
        (registry or operation_registry).register(spec)
        return fn

    return decorator
