"""Expose API routers."""
from . import admin, analysis, billing, webhooks

__all__ = ["admin", "analysis", "billing", "webhooks"]
