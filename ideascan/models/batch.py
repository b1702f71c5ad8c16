"""Job Batch model"""
import enum
from sqlalchemy import Column, Integer, String, JSON, DateTime, ForeignKey, Enum as SAEnum

from ideascan.database import Base
from ideascan.utils.clock import utcnow


class BatchStatus(str, enum.Enum):
    RUNNING    = "RUNNING"
    COMPLETED  = "COMPLETED"
    PARTIAL    = "PARTIAL"    # Some chunks failed
    FAILED     = "FAILED"


class JobBatch(Base):
    """A named group of chunk jobs for one scan + stage (name: ``<stage>-scan-<id>``).

    The last chunk to report in sets ``finished_at`` and fires the stage's
    finalize job; ``finished_chunks`` makes that accounting safe against
    redelivered chunk jobs.
    """
    __tablename__ = "job_batches"

    id             = Column(String(36), primary_key=True)  # UUID
    name           = Column(String(100), index=True, nullable=False)
    scan_id        = Column(Integer, ForeignKey("scans.id", ondelete="CASCADE"), nullable=False, index=True)
    stage          = Column(String(20), nullable=False)
    status         = Column(SAEnum(BatchStatus), default=BatchStatus.RUNNING, nullable=False)
    total_jobs     = Column(Integer, nullable=False, default=0)
    pending_jobs   = Column(Integer, nullable=False, default=0)
    failed_jobs    = Column(Integer, nullable=False, default=0)
    finished_chunks = Column(JSON, nullable=True)   # chunk indexes already accounted for
    created_at     = Column(DateTime, default=utcnow, index=True)
    finished_at    = Column(DateTime, nullable=True)

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None
