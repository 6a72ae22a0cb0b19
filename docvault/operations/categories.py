"""
Category Tree operations.
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from docvault.audit.actions import AuditAction, ResourceKind
from docvault.engine.executor import OperationCall
from docvault.engine.registry import operation
from docvault.operations.documents import DocumentStatusValue

COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"

PermissionLists = Dict[Literal["upload", "view", "manage"], List[int]]


class CategoryListInput(BaseModel):
    flat: bool = False
    include_inactive: bool = False
    root_id: Optional[int] = Field(default=None, ge=1)


class CategoryCreateInput(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    parent_id: Optional[int] = Field(default=None, ge=1)
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)
    allowed_file_types: Optional[List[str]] = None
    max_file_size: Optional[int] = Field(default=None, ge=1)
    requires_approval: Optional[bool] = None
    permissions: Optional[PermissionLists] = None


class CategoryUpdateInput(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    parent_id: Optional[int] = Field(default=None, ge=1)
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)
    allowed_file_types: Optional[List[str]] = None
    max_file_size: Optional[int] = Field(default=None, ge=1)
    requires_approval: Optional[bool] = None
    is_active: Optional[bool] = None
    permissions: Optional[PermissionLists] = None


class CategoryDocumentsInput(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    status: Optional[DocumentStatusValue] = None


@operation("categories.list", resource=ResourceKind.CATEGORY, schema=CategoryListInput)
def list_categories(call: OperationCall):
    """The tree (default) or a flat list ordered by path."""
    p = call.params
    include_inactive = p.include_inactive and call.services.gate.can_include_inactive(call.ctx)
    categories = call.services.categories
    if p.flat:
        return categories.list_flat(call.session, include_inactive=include_inactive)
    return {
        "categories": categories.build_tree(
            call.session,
            root_id=p.root_id,
            include_inactive=include_inactive,
        )
    }


@operation("categories.get", resource=ResourceKind.CATEGORY)
def get_category(call: OperationCall):
    """One node with its full display path and active children."""
    return call.services.categories.detail(call.session, call.ctx, call.require_resource_id())


@operation(
    "categories.create",
    action=AuditAction.CATEGORY_CREATE,
    resource=ResourceKind.CATEGORY,
    roles=("admin", "manager"),
    schema=CategoryCreateInput,
    success_status=201,
)
def create_category(call: OperationCall):
    p = call.params
    category = call.services.categories.create(
        call.session,
        call.ctx,
        name=p.name,
        description=p.description,
        parent_id=p.parent_id,
        icon=p.icon,
        color=p.color,
        allowed_file_types=p.allowed_file_types,
        max_file_size=p.max_file_size,
        requires_approval=p.requires_approval,
        permissions=p.permissions,
    )
    call.audit.resource_id = category.id
    call.audit.details.update({"name": category.name, "slug": category.slug, "parent_id": category.parent_id})
    return category.to_dict()


@operation(
    "categories.update",
    action=AuditAction.CATEGORY_UPDATE,
    resource=ResourceKind.CATEGORY,
    roles=("admin", "manager"),
    schema=CategoryUpdateInput,
)
def update_category(call: OperationCall):
    changes = call.params.model_dump(exclude_unset=True)
    call.audit.details["fields"] = sorted(changes)
    category = call.services.categories.update(call.session, call.ctx, call.require_resource_id(), changes)
    return category.to_dict()


@operation(
    "categories.delete",
    action=AuditAction.CATEGORY_DELETE,
    resource=ResourceKind.CATEGORY,
    roles=("admin",),
)
def delete_category(call: OperationCall):
    """Soft delete; blocked by live documents or active children."""
    category = call.services.categories.delete(call.session, call.ctx, call.require_resource_id())
    return {"message": "Category deleted successfully", "id": category.id}


@operation("categories.documents", resource=ResourceKind.CATEGORY, schema=CategoryDocumentsInput)
def category_documents(call: OperationCall):
    p = call.params
    return call.services.categories.documents(
        call.session,
        call.ctx,
        call.require_resource_id(),
        page=p.page,
        limit=p.limit,
        status=p.status,
    )
