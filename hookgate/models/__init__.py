"""
Database models - import all models here so Alembic can discover them.
"""
from hookgate.models.webhook_secret import WebhookSecret
from hookgate.models.webhook_event import WebhookEvent
from hookgate.models.webhook_job import WebhookJob

__all__ = [
    "WebhookSecret",
    "WebhookEvent",
    "WebhookJob",
]
