"""Subreddit and Scan database models"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
import enum

from ideascan.database import Base
from ideascan.utils.clock import utcnow


class ScanStatus(str, enum.Enum):
    """Pipeline state machine: pending -> fetching -> classifying -> extracting -> completed.

    ``failed`` is reachable from every non-terminal state.
    """
    PENDING = "pending"
    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    FAILED = "failed"


class ScanType(str, enum.Enum):
    INITIAL = "initial"
    RESCAN = "rescan"


IN_PROGRESS_STATUSES = (
    ScanStatus.PENDING,
    ScanStatus.FETCHING,
    ScanStatus.CLASSIFYING,
    ScanStatus.EXTRACTING,
)

_PROGRESS_PERCENT = {
    ScanStatus.PENDING: 0,
    ScanStatus.FETCHING: 25,
    ScanStatus.CLASSIFYING: 50,
    ScanStatus.EXTRACTING: 75,
    ScanStatus.COMPLETED: 100,
    ScanStatus.FAILED: 0,
}


class Subreddit(Base):
    """A subreddit that can be scanned"""
    __tablename__ = "subreddits"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, index=True, nullable=False)
    last_scanned_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    scans = relationship("Scan", back_populates="subreddit")


class Scan(Base):
    """One pipeline run over a subreddit"""
    __tablename__ = "scans"

    id = Column(Integer, primary_key=True, index=True)
    subreddit_id = Column(Integer, ForeignKey("subreddits.id", ondelete="CASCADE"), nullable=False, index=True)
    scan_type = Column(Enum(ScanType), default=ScanType.INITIAL, nullable=False)
    status = Column(Enum(ScanStatus), default=ScanStatus.PENDING, nullable=False, index=True)
    error_message = Column(Text, nullable=True)

    date_from = Column(DateTime, nullable=True)
    date_to = Column(DateTime, nullable=True)

    # Progress counters; only ever incremented, except when a finalize step
    # reconciles them against the actual row counts.
    posts_fetched = Column(Integer, default=0, nullable=False)
    posts_classified = Column(Integer, default=0, nullable=False)
    posts_extracted = Column(Integer, default=0, nullable=False)
    ideas_found = Column(Integer, default=0, nullable=False)

    # Fetch completion tracking. NULL until the fetcher registers how many jobs it queued.
    fetch_jobs_total = Column(Integer, nullable=True)
    fetch_jobs_done = Column(Integer, default=0, nullable=False)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    subreddit = relationship("Subreddit", back_populates="scans")
    posts = relationship("Post", back_populates="scan")

    @property
    def is_in_progress(self) -> bool:
        return self.status in IN_PROGRESS_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == ScanStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == ScanStatus.FAILED

    @property
    def is_finished(self) -> bool:
        return self.is_completed or self.is_failed

    @property
    def progress_percent(self) -> int:
        return _PROGRESS_PERCENT.get(self.status, 0)

    @property
    def status_message(self) -> str:
        """Human-readable progress line"""
        if self.status == ScanStatus.PENDING:
            return "Waiting to start..."
        if self.status == ScanStatus.FETCHING:
            return f"Fetching posts... ({self.posts_fetched} found)"
        if self.status == ScanStatus.CLASSIFYING:
            return f"Classifying posts... ({self.posts_classified}/{self.posts_fetched})"
        if self.status == ScanStatus.EXTRACTING:
            return f"Extracting ideas... ({self.ideas_found} found)"
        if self.status == ScanStatus.COMPLETED:
            return f"Completed - {self.ideas_found} ideas found"
        if self.status == ScanStatus.FAILED:
            return f"Failed: {self.error_message}"
        return "Unknown status"
