"""docvault — Document management with category constraints, versioning, approval and audit."""

__version__ = "0.1.0"
