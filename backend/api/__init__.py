"""API route handlers."""
from . import admin, connections, reference, webhooks

__all__ = ["admin", "connections", "reference", "webhooks"]
