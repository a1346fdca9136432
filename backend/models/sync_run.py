"""SyncRun model - one execution of the account refresh batch."""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from database import Base
from models.utils import as_utc, generate_uuid, utcnow


class SyncRun(Base):
    """Summary of a refresh run.

    ``failures`` holds one ``{"user_id", "provider", "kind", "message"}``
    dict per failed (user, provider) credential.
    """

    __tablename__ = "sync_runs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    trigger = Column(String, nullable=False)  # "scheduled" | "manual" | "manual_user"
    status = Column(String, nullable=False, default="running")  # "running" | "completed" | "cancelled" | "failed"
    started_at = Column(DateTime, nullable=False, default=utcnow)
    finished_at = Column(DateTime, nullable=True)
    users_succeeded = Column(Integer, nullable=False, default=0)
    users_failed = Column(Integer, nullable=False, default=0)
    users_skipped = Column(Integer, nullable=False, default=0)
    accounts_refreshed = Column(Integer, nullable=False, default=0)
    accounts_failed = Column(Integer, nullable=False, default=0)
    failures = Column(JSON, nullable=False, default=list)
    error_message = Column(Text, nullable=True)

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None or self.started_at is None:
            return None
        return (as_utc(self.finished_at) - as_utc(self.started_at)).total_seconds()
