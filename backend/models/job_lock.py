"""JobLock model - lease preventing overlapping runs of a background job."""

from sqlalchemy import Column, DateTime, String

from database import Base
from models.utils import utcnow


class JobLock(Base):
    """A time-bounded lease held by whichever process is running ``job_name``."""

    __tablename__ = "job_locks"

    job_name = Column(String, primary_key=True)
    holder = Column(String, nullable=False)
    acquired_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
