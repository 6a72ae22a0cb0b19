"""docvault persistence — declarative base, models and session management."""
