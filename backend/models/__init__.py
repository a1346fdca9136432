"""SQLAlchemy ORM models."""

from .connection import Connection
from .external_account import ExternalAccount
from .job_lock import JobLock
from .sync_run import SyncRun
from .user_credential import UserProviderCredential
from .utils import generate_uuid
from .webhook_event import WebhookEvent

__all__ = [
    "Connection",
    "ExternalAccount",
    "JobLock",
    "SyncRun",
    "UserProviderCredential",
    "WebhookEvent",
    "generate_uuid",
]
