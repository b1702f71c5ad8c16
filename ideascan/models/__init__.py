"""Database models"""
from ideascan.models.scan import Subreddit, Scan, ScanStatus, ScanType
from ideascan.models.post import Post, Comment
from ideascan.models.classification import Classification, Decision, ProviderKind
from ideascan.models.idea import Idea
from ideascan.models.batch import JobBatch, BatchStatus

__all__ = [
    "Subreddit", "Scan", "ScanStatus", "ScanType",
    "Post", "Comment",
    "Classification", "Decision", "ProviderKind",
    "Idea",
    "JobBatch", "BatchStatus",
]
