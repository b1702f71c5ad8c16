"""Scan Pydantic schemas"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ideascan.models.scan import ScanStatus, ScanType


class ScanCreate(BaseModel):
    subreddit: str = Field(..., min_length=1, max_length=100, description="Subreddit name, with or without r/")
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    model_config = {
        "json_schema_extra": {
            "example": {"subreddit": "r/SaaS"}
        }
    }

    @model_validator(mode="after")
    def check_range(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


class ScanResponse(BaseModel):
    id: int
    subreddit: str
    scan_type: ScanType
    status: ScanStatus
    status_message: str
    progress_percent: int
    error_message: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    posts_fetched: int
    posts_classified: int
    posts_extracted: int
    ideas_found: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    is_in_progress: bool

    class Config:
        from_attributes = True

    @classmethod
    def from_scan(cls, scan) -> "ScanResponse":
        return cls(
            id=scan.id,
            subreddit=scan.subreddit.name,
            scan_type=scan.scan_type,
            status=scan.status,
            status_message=scan.status_message,
            progress_percent=scan.progress_percent,
            error_message=scan.error_message,
            date_from=scan.date_from,
            date_to=scan.date_to,
            posts_fetched=scan.posts_fetched,
            posts_classified=scan.posts_classified,
            posts_extracted=scan.posts_extracted,
            ideas_found=scan.ideas_found,
            started_at=scan.started_at,
            completed_at=scan.completed_at,
            created_at=scan.created_at,
            is_in_progress=scan.is_in_progress,
        )


class ScanHistoryItem(BaseModel):
    id: int
    scan_type: ScanType
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    posts_fetched: int
    ideas_found: int
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ScanHistory(BaseModel):
    subreddit: str
    scans: List[ScanHistoryItem]
