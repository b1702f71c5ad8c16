"""
Fetch ingestion
===============
The Reddit fetcher lives outside this package.  It reports progress for a
scan through three calls, which feed the fetch completion poller:

    register_fetch_jobs(db, scan_id, total)     # once, after queuing its jobs
    record_fetched_posts(db, scan_id, posts)    # any number of times
    mark_fetch_job_done(db, scan_id)            # once per finished fetch job

``posts`` are plain dicts::

    {"reddit_id": "abc123", "title": "...", "body": "...", "author": "...",
     "permalink": "...", "upvotes": 10, "num_comments": 4, "upvote_ratio": 0.9,
     "created_utc": 1700000000,
     "comments": [{"reddit_id": "c1", "author": "...", "body": "...", "upvotes": 3}]}
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ideascan.core.counters import increment
from ideascan.models.post import Comment, Post
from ideascan.models.scan import Scan, ScanStatus

logger = logging.getLogger(__name__)


class IngestError(ValueError):
    pass


def _fetching_scan(db: Session, scan_id: int) -> Optional[Scan]:
    scan = db.query(Scan).filter(Scan.id == scan_id).first()
    if scan is None:
        raise IngestError(f"Scan {scan_id} not found")
    if scan.status != ScanStatus.FETCHING:
        logger.info(f"ingest: scan {scan_id} is {scan.status.value}, ignoring fetch report")
        return None
    return scan


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).replace(tzinfo=None) if value.tzinfo else value
    return datetime.fromtimestamp(float(value), tz=timezone.utc).replace(tzinfo=None)


def register_fetch_jobs(db: Session, scan_id: int, total: int) -> bool:
    if total < 0:
        raise IngestError("total must not be negative")
    if _fetching_scan(db, scan_id) is None:
        return False
    updated = (
        db.query(Scan)
        .filter(Scan.id == scan_id, Scan.fetch_jobs_total.is_(None))
        .update({"fetch_jobs_total": total}, synchronize_session=False)
    )
    db.commit()
    if not updated:
        logger.warning(f"ingest: scan {scan_id} already registered its fetch jobs")
    return updated == 1


def mark_fetch_job_done(db: Session, scan_id: int) -> bool:
    if _fetching_scan(db, scan_id) is None:
        return False
    increment(db, scan_id, fetch_jobs_done=1)
    db.commit()
    return True


def record_fetched_posts(db: Session, scan_id: int, posts: Iterable[Dict[str, Any]]) -> int:
    """Insert new posts (and their comments) for a scan. Returns how many were new."""
    scan = _fetching_scan(db, scan_id)
    if scan is None:
        return 0

    inserted = 0
    seen = set()
    for data in posts:
        reddit_id = data.get("reddit_id")
        if not reddit_id or not data.get("title"):
            logger.warning(f"ingest: scan {scan_id} skipping post without id/title")
            continue
        if reddit_id in seen or db.query(Post.id).filter(Post.reddit_id == reddit_id).first() is not None:
            continue

        post = Post(
            subreddit_id=scan.subreddit_id,
            scan_id=scan_id,
            reddit_id=reddit_id,
            title=str(data["title"])[:500],
            body=data.get("body"),
            author=data.get("author"),
            permalink=data.get("permalink"),
            upvotes=int(data.get("upvotes") or 0),
            num_comments=int(data.get("num_comments") or 0),
            upvote_ratio=data.get("upvote_ratio"),
            reddit_created_at=_timestamp(data.get("created_utc")),
        )
        post.comments = [
            Comment(
                reddit_id=c.get("reddit_id"),
                author=c.get("author"),
                body=c.get("body") or "",
                upvotes=int(c.get("upvotes") or 0),
            )
            for c in data.get("comments") or []
        ]
        db.add(post)
        seen.add(reddit_id)
        inserted += 1

    increment(db, scan_id, posts_fetched=inserted)
    db.commit()
    logger.info(f"ingest: scan {scan_id} stored {inserted} new posts")
    return inserted
