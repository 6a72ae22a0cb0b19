"""
Audit trail query operations.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from docvault.audit.actions import ResourceKind
from docvault.engine.executor import OperationCall
from docvault.engine.registry import operation


class ResourceActivityInput(BaseModel):
    resource_type: ResourceKind
    resource_id: int = Field(ge=1)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = Field(default=50, ge=1, le=1000)


class StatsInput(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@operation(
    "audit.resource_activity",
    resource=ResourceKind.SYSTEM,
    roles=("admin", "manager"),
    schema=ResourceActivityInput,
)
def resource_activity(call: OperationCall):
    """Entries for one resource, newest first."""
    p = call.params
    return call.services.audit.get_resource_activity(
        call.session,
        p.resource_type.value,
        p.resource_id,
        start=p.start,
        end=p.end,
        limit=p.limit,
    )


@operation("audit.stats", resource=ResourceKind.SYSTEM, roles=("admin",), schema=StatsInput)
def stats(call: OperationCall):
    """Per-action totals and average duration."""
    return call.services.audit.get_system_stats(call.session, start=call.params.start, end=call.params.end)
