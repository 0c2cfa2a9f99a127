"""API routes package initialization."""
from athwatch.api.routes import admin, cron, health, webhooks

__all__ = ["admin", "cron", "health", "webhooks"]
