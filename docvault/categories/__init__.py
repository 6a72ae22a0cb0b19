"""docvault Category Tree."""

from docvault.categories.service import CategoryService, normalize_extensions, slugify  # noqa: F401

__all__ = ["CategoryService", "normalize_extensions", "slugify"]
