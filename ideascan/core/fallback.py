"""
Give-up records for posts the pipeline could not process.

Both helpers serialize on the Post row (``SELECT ... FOR UPDATE``) and
re-check after taking the lock, so a concurrent success is never clobbered
and the scan counter moves only for the call that completes the post. A scan
that has left the stage (cancelled or failed) gets no writes.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ideascan.core.counters import increment, lock_post
from ideascan.models.classification import Classification
from ideascan.models.scan import Scan, ScanStatus
from ideascan.utils.clock import utcnow

logger = logging.getLogger(__name__)

CATEGORY_RETRIES_EXHAUSTED = "classification-failed"
CATEGORY_CHUNK_FAILED = "chunk-job-failed"
CATEGORY_GAP_FILL = "finalization-gap-fill"


def _scan_status(db: Session, scan_id: int) -> Optional[ScanStatus]:
    row = db.query(Scan.status).filter(Scan.id == scan_id).first()
    return row.status if row is not None else None


def discard_fallback(
    db: Session,
    scan_id: int,
    post_id: int,
    category: str = CATEGORY_RETRIES_EXHAUSTED,
    reasoning: str = "Classification failed after retries",
) -> bool:
    """Store a discard classification unless one is already complete.

    Returns True when this call newly completed the post.
    """
    try:
        post = lock_post(db, post_id)
        if post is None:
            db.rollback()
            logger.warning(f"fallback: post {post_id} no longer exists, nothing to discard")
            return False
        if _scan_status(db, scan_id) != ScanStatus.CLASSIFYING:
            db.rollback()
            logger.info(f"fallback: scan {scan_id} left classifying, not discarding post {post_id}")
            return False

        record = (
            db.query(Classification)
            .filter(Classification.post_id == post_id)
            .populate_existing()
            .first()
        )
        if record is not None and record.is_complete:
            db.rollback()
            return False

        if record is None:
            record = Classification(post_id=post_id)
            db.add(record)
        record.apply_discard(category, reasoning)
        increment(db, scan_id, posts_classified=1)
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = db.query(Classification).filter(Classification.post_id == post_id).first()
        if existing is not None and existing.is_complete:
            return False
        raise

    logger.warning(f"fallback: scan {scan_id} post {post_id} discarded ({category})")
    return True


def discard_remaining(
    db: Session,
    scan_id: int,
    post_ids: Iterable[int],
    category: str = CATEGORY_CHUNK_FAILED,
    reasoning: str = "Classification chunk job failed",
) -> int:
    """Discard every post in ``post_ids`` still lacking a completed classification"""
    count = 0
    for post_id in post_ids:
        if discard_fallback(db, scan_id, post_id, category, reasoning):
            count += 1
    return count


def mark_extracted(db: Session, scan_id: int, post_id: int) -> bool:
    """Stamp ``extracted_at`` with no ideas so the extraction stage can finish.

    Returns True when this call newly marked the post.
    """
    post = lock_post(db, post_id)
    if post is None or post.extracted_at is not None or _scan_status(db, scan_id) != ScanStatus.EXTRACTING:
        db.rollback()
        return False
    post.extracted_at = utcnow()
    increment(db, scan_id, posts_extracted=1)
    db.commit()
    logger.warning(f"fallback: scan {scan_id} post {post_id} marked extracted without ideas")
    return True
