"""
docvault Category Tree — Hierarchical classification with upload constraints.

Handles:
- Slug derivation with numeric disambiguation ("finance", "finance-1", ...)
- level / path derivation from the parent, recomputed for the whole
  subtree when a node's slug or parent changes
- Cycle rejection (a node may not become its own ancestor)
- Soft delete guarded by live documents and active children
- Tree assembly from a single bulk fetch
- Full display path ("Finance > Invoices > 2024")

Each node's constraints are independent: a child never inherits
allowed_file_types or max_file_size from its parent.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from docvault.db.models import (
    CATEGORY_CAPABILITIES,
    DEFAULT_MAX_FILE_SIZE,
    Category,
    Document,
    User,
)
from docvault.db.query import paginate
from docvault.engine.context import ExecutionContext
from docvault.engine.errors import ConflictError, NotFoundError, ValidationError
from docvault.engine.gate import AuthorizationGate

logger = logging.getLogger("docvault.categories.service")

PATH_SEPARATOR = "/"
FULL_PATH_SEPARATOR = " > "

_NON_SLUG = re.compile(r"[^a-z0-9]")
_DASHES = re.compile(r"-+")


def slugify(name: str) -> str:
    """Lowercase, non-alphanumerics to "-", runs collapsed, ends trimmed."""
    slug = _DASHES.sub("-", _NON_SLUG.sub("-", (name or "").lower())).strip("-")
    return slug or "category"


def normalize_extensions(extensions: Optional[Iterable[str]]) -> List[str]:
    """Lower-case, strip a leading dot, drop blanks and duplicates. Order kept."""
    out: List[str] = []
    for ext in extensions or []:
        value = str(ext).strip().lower().lstrip(".")
        if value and value not in out:
            out.append(value)
    return out


class CategoryService:
    """
    Category Tree operations.

    Every method takes the caller's session; the executor owns the
    transaction.
    """

    def __init__(
        self,
        gate: AuthorizationGate,
        default_max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    ):
        self._gate = gate
        self._default_max_file_size = default_max_file_size

    # -------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------

    def get(self, session: Session, category_id: int) -> Category:
        category = session.get(Category, category_id)
        if category is None:
            raise NotFoundError("Category not found", resource="category", resource_id=category_id)
        return category

    def get_active(self, session: Session, category_id: int) -> Category:
        """Inactive (soft-deleted) categories resolve as not found."""
        category = self.get(session, category_id)
        if not category.is_active:
            raise NotFoundError("Category not found", resource="category", resource_id=category_id)
        return category

    def children(self, session: Session, category: Category) -> List[Category]:
        return (
            session.query(Category)
            .filter(Category.parent_id == category.id, Category.is_active.is_(True))
            .order_by(Category.name)
            .all()
        )

    def full_path(self, session: Session, category: Category) -> str:
        """Names from the root down to ``category``, for display."""
        names: List[str] = []
        seen = set()
        current: Optional[Category] = category
        while current is not None and current.id not in seen:
            seen.add(current.id)
            names.append(current.name)
            current = session.get(Category, current.parent_id) if current.parent_id else None
        return FULL_PATH_SEPARATOR.join(reversed(names))

    def detail(self, session: Session, ctx: ExecutionContext, category_id: int) -> Dict[str, Any]:
        """Inactive nodes are visible only to callers who may list them."""
        if self._gate.can_include_inactive(ctx):
            category = self.get(session, category_id)
        else:
            category = self.get_active(session, category_id)
        data = category.to_dict()
        data["full_path"] = self.full_path(session, category)
        data["children"] = [child.to_dict() for child in self.children(session, category)]
        return data

    # -------------------------------------------------------------------
    # Derivation
    # -------------------------------------------------------------------

    def _unique_slug(self, session: Session, name: str, exclude_id: Optional[int] = None) -> str:
        base = slugify(name)
        query = session.query(Category.slug).filter(
            (Category.slug == base) | Category.slug.like(f"{base}-%")
        )
        if exclude_id is not None:
            query = query.filter(Category.id != exclude_id)
        taken = {row.slug for row in query}

        slug = base
        counter = 1
        while slug in taken:
            slug = f"{base}-{counter}"
            counter += 1
        return slug

    @staticmethod
    def _place(category: Category, parent: Optional[Category]) -> None:
        if parent is not None:
            category.level = parent.level + 1
            category.path = f"{parent.path}{PATH_SEPARATOR}{category.slug}" if parent.path else category.slug
        else:
            category.level = 0
            category.path = category.slug

    def _resolve_parent(self, session: Session, parent_id: Optional[int]) -> Optional[Category]:
        if parent_id is None:
            return None
        parent = session.get(Category, parent_id)
        if parent is None:
            raise ValidationError(
                "Parent category not found",
                field_errors=[("parent_id", "Parent category not found")],
            )
        return parent

    def _ancestor_ids(self, session: Session, category: Category) -> List[int]:
        ids: List[int] = []
        current = category
        while current is not None and current.parent_id is not None:
            if current.parent_id in ids:
                break
            ids.append(current.parent_id)
            current = session.get(Category, current.parent_id)
        return ids

    def _replace_subtree(self, session: Session, root: Category) -> int:
        """Recompute level/path for every descendant of ``root``. Returns count."""
        updated = 0
        frontier = [root]
        while frontier:
            parent = frontier.pop()
            for child in session.query(Category).filter(Category.parent_id == parent.id).all():
                self._place(child, parent)
                frontier.append(child)
                updated += 1
        return updated

    def _validate_permission_users(self, session: Session, permissions: Dict[str, List[int]]) -> None:
        ids = {uid for users in permissions.values() for uid in users}
        if not ids:
            return
        found = {row.id for row in session.query(User.id).filter(User.id.in_(ids))}
        missing = sorted(ids - found)
        if missing:
            raise ValidationError(
                "Unknown users in permissions",
                field_errors=[("permissions", f"unknown user ids: {missing}")],
            )

    def _apply_permissions(self, session: Session, category: Category, permissions: Optional[Dict[str, List[int]]]) -> None:
        if not permissions:
            return
        self._validate_permission_users(session, permissions)
        for capability in CATEGORY_CAPABILITIES:
            if capability in permissions:
                category.set_permission_ids(capability, permissions[capability])

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    def create(
        self,
        session: Session,
        ctx: ExecutionContext,
        name: str,
        description: Optional[str] = None,
        parent_id: Optional[int] = None,
        icon: Optional[str] = None,
        color: Optional[str] = None,
        allowed_file_types: Optional[Iterable[str]] = None,
        max_file_size: Optional[int] = None,
        requires_approval: Optional[bool] = None,
        permissions: Optional[Dict[str, List[int]]] = None,
    ) -> Category:
        parent = self._resolve_parent(session, parent_id)
        category = Category(
            name=name.strip(),
            description=description,
            parent_id=parent.id if parent else None,
            icon=icon or "folder",
            color=color or "#007bff",
            allowed_file_types=normalize_extensions(allowed_file_types),
            max_file_size=max_file_size or self._default_max_file_size,
            requires_approval=True if requires_approval is None else requires_approval,
            document_count=0,
            is_active=True,
            created_by=ctx.user_id,
        )
        category.slug = self._unique_slug(session, category.name)
        self._place(category, parent)
        self._apply_permissions(session, category, permissions)

        session.add(category)
        session.flush()
        logger.info(f"Category created: id={category.id} slug={category.slug} path={category.path}")
        return category

    def update(
        self,
        session: Session,
        ctx: ExecutionContext,
        category_id: int,
        changes: Dict[str, Any],
    ) -> Category:
        """
        Apply a partial update. Only keys present in ``changes`` are touched;
        ``parent_id: None`` moves the node to the root.
        """
        category = self.get(session, category_id)
        moved = False
        renamed = False

        if "parent_id" in changes:
            new_parent_id = changes["parent_id"]
            if new_parent_id == category.id:
                raise ValidationError(
                    "Category cannot be its own parent",
                    field_errors=[("parent_id", "Category cannot be its own parent")],
                )
            parent = self._resolve_parent(session, new_parent_id)
            if parent is not None and category.id in self._ancestor_ids(session, parent):
                raise ValidationError(
                    "Category cannot be moved under its own descendant",
                    field_errors=[("parent_id", "Category cannot be its own ancestor")],
                )
            if new_parent_id != category.parent_id:
                category.parent_id = new_parent_id
                moved = True

        if "name" in changes and changes["name"] is not None:
            new_name = changes["name"].strip()
            if new_name != category.name:
                category.name = new_name
                category.slug = self._unique_slug(session, new_name, exclude_id=category.id)
                renamed = True

        for key in ("description", "icon", "color", "max_file_size", "requires_approval"):
            if key in changes and changes[key] is not None:
                setattr(category, key, changes[key])
        if "allowed_file_types" in changes and changes["allowed_file_types"] is not None:
            category.allowed_file_types = normalize_extensions(changes["allowed_file_types"])
        if "permissions" in changes:
            self._apply_permissions(session, category, changes["permissions"])
        if changes.get("is_active") is not None:
            self._set_active(session, ctx, category, changes["is_active"])

        if moved or renamed:
            parent = session.get(Category, category.parent_id) if category.parent_id else None
            self._place(category, parent)
            descendants = self._replace_subtree(session, category)
            logger.info(
                f"Category {category.id} re-pathed to {category.path} "
                f"({descendants} descendant(s) updated)"
            )

        session.flush()
        return category

    def _set_active(self, session: Session, ctx: ExecutionContext, category: Category, active: bool) -> None:
        """Toggling the flag is a delete or restore, so it needs the admin role."""
        if active == category.is_active:
            return
        self._gate.check_roles(ctx, ("admin",), "categories.update")
        if not active:
            self._ensure_deletable(session, category)
        category.is_active = active
        logger.info(f"Category {'restored' if active else 'soft-deleted'}: id={category.id} slug={category.slug}")

    def delete(self, session: Session, ctx: ExecutionContext, category_id: int) -> Category:
        """Soft delete. Blocked by live documents or active children."""
        category = self.get_active(session, category_id)
        self._ensure_deletable(session, category)
        category.is_active = False
        session.flush()
        logger.info(f"Category soft-deleted: id={category.id} slug={category.slug}")
        return category

    def _ensure_deletable(self, session: Session, category: Category) -> None:
        document_count = (
            session.query(func.count(Document.id))
            .filter(Document.category_id == category.id, Document.is_deleted.is_(False))
            .scalar()
        ) or 0
        children_count = (
            session.query(func.count(Category.id))
            .filter(Category.parent_id == category.id, Category.is_active.is_(True))
            .scalar()
        ) or 0

        if document_count or children_count:
            blockers = []
            if document_count:
                blockers.append(f"It contains {document_count} documents.")
            if children_count:
                blockers.append(f"It has {children_count} subcategories.")
            raise ConflictError(
                "Cannot delete category. " + " ".join(blockers),
                resource="category",
                resource_id=category.id,
                documents=document_count,
                children=children_count,
            )

    def adjust_document_count(self, category: Category, delta: int) -> None:
        """Best-effort counter; never below zero."""
        category.document_count = max(0, (category.document_count or 0) + delta)

    # -------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------

    def build_tree(
        self,
        session: Session,
        root_id: Optional[int] = None,
        include_inactive: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Assemble the tree from one query.

        ``root_id=None`` returns the forest of all roots; otherwise a
        one-element list holding that node and its subtree. Siblings are
        ordered by name.
        """
        query = session.query(Category)
        if not include_inactive:
            query = query.filter(Category.is_active.is_(True))
        nodes = query.order_by(Category.name, Category.id).all()

        by_parent: Dict[Optional[int], List[Category]] = defaultdict(list)
        by_id: Dict[int, Category] = {}
        for node in nodes:
            by_parent[node.parent_id].append(node)
            by_id[node.id] = node

        def assemble(node: Category, seen: frozenset) -> Dict[str, Any]:
            data = node.to_dict()
            data["children"] = [
                assemble(child, seen | {child.id})
                for child in by_parent.get(node.id, [])
                if child.id not in seen
            ]
            return data

        if root_id is None:
            return [assemble(node, frozenset({node.id})) for node in by_parent.get(None, [])]
        root = by_id.get(root_id)
        if root is None:
            raise NotFoundError("Category not found", resource="category", resource_id=root_id)
        return [assemble(root, frozenset({root.id}))]

    def list_flat(self, session: Session, include_inactive: bool = False) -> List[Dict[str, Any]]:
        query = session.query(Category)
        if not include_inactive:
            query = query.filter(Category.is_active.is_(True))
        return [c.to_dict() for c in query.order_by(Category.path).all()]

    def documents(
        self,
        session: Session,
        ctx: ExecutionContext,
        category_id: int,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Live documents in one category, newest first, gate-filtered."""
        self.get(session, category_id)
        query = session.query(Document).filter(
            Document.category_id == category_id,
            Document.is_deleted.is_(False),
        )
        if status:
            query = query.filter(Document.status == status)
        query = self._gate.filter_documents(query, ctx, explicit_status=bool(status))
        query = query.order_by(Document.created_at.desc(), Document.id.desc())

        result = paginate(query, page, limit)
        return {
            "documents": [d.to_dict() for d in result.items],
            "pagination": result.pagination(),
        }
