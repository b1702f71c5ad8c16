"""
Stage transitions, finalize steps and completion checks.

Every status change goes through ``transition``, a compare-and-set
``UPDATE scans SET status = :new WHERE id = :id AND status = :expected``.
Exactly one caller wins; only the winner dispatches the next stage.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ideascan.core.batching import posts_needing_classification
from ideascan.core.fallback import CATEGORY_GAP_FILL, discard_fallback
from ideascan.models.classification import PASSED_DECISIONS, Classification
from ideascan.models.post import Post
from ideascan.models.scan import Scan, ScanStatus, Subreddit
from ideascan.utils.clock import utcnow

logger = logging.getLogger(__name__)

# Poll results
WAIT = "wait"
ADVANCED = "advanced"
STOP = "stop"

# Shown to users; provider/API detail stays in the logs.
STAGE_FAILURE_MESSAGES = {
    ScanStatus.PENDING: "Scan could not be started",
    ScanStatus.FETCHING: "Fetching posts failed",
    ScanStatus.CLASSIFYING: "Classification failed",
    ScanStatus.EXTRACTING: "Idea extraction failed",
}
CANCELLED_MESSAGE = "Scan cancelled by user"


def transition(db: Session, scan_id: int, expected: ScanStatus, new: ScanStatus, **values) -> bool:
    """Compare-and-set the scan status and commit. Returns True for the winning caller."""
    values["status"] = new
    updated = (
        db.query(Scan)
        .filter(Scan.id == scan_id, Scan.status == expected)
        .update(values, synchronize_session=False)
    )
    db.commit()
    if updated:
        logger.info(f"stage: scan {scan_id} {expected.value} -> {new.value}")
    return updated == 1


def _fresh_scan(db: Session, scan_id: int) -> Optional[Scan]:
    db.expire_all()
    return db.query(Scan).filter(Scan.id == scan_id).first()


def mark_failed(db: Session, scan_id: int, stage: ScanStatus, message: Optional[str] = None) -> bool:
    return transition(
        db, scan_id, stage, ScanStatus.FAILED,
        error_message=message or STAGE_FAILURE_MESSAGES.get(stage, "Scan failed"),
        completed_at=utcnow(),
    )


# ── Counts ────────────────────────────────────────────────────────────────────

def classified_count(db: Session, scan_id: int) -> int:
    return (
        db.query(Classification.id)
        .join(Post, Post.id == Classification.post_id)
        .filter(Post.scan_id == scan_id, Classification.classified_at.isnot(None))
        .count()
    )


def _eligible_posts(db: Session, scan_id: int):
    return (
        db.query(Post.id)
        .join(Classification, Classification.post_id == Post.id)
        .filter(
            Post.scan_id == scan_id,
            Classification.classified_at.isnot(None),
            Classification.final_decision.in_(PASSED_DECISIONS),
        )
    )


def extraction_counts(db: Session, scan_id: int):
    """(eligible posts, eligible posts already extracted)"""
    eligible = _eligible_posts(db, scan_id)
    return eligible.count(), eligible.filter(Post.extracted_at.isnot(None)).count()


# ── Dispatch ──────────────────────────────────────────────────────────────────

def dispatch_classification(scan_id: int) -> None:
    from ideascan.tasks.classify_tasks import classify_posts
    classify_posts.delay(scan_id)


def dispatch_extraction(scan_id: int, start_poller: bool = True) -> None:
    from ideascan.tasks.extract_tasks import extract_ideas
    extract_ideas.delay(scan_id, start_poller=start_poller)


# ── Finalize ──────────────────────────────────────────────────────────────────

def finalize_classification(db: Session, scan_id: int) -> bool:
    """Close the classification stage and hand the scan to extraction.

    Returns True if this call moved the scan to ``extracting``.
    """
    scan = _fresh_scan(db, scan_id)
    if scan is None:
        logger.warning(f"finalize_classification: scan {scan_id} not found")
        return False
    if scan.status == ScanStatus.EXTRACTING:
        # Whoever advanced the scan started the extraction poller; this only covers a lost dispatch.
        logger.info(f"finalize_classification: scan {scan_id} already extracting, re-dispatching extraction")
        dispatch_extraction(scan_id, start_poller=False)
        return False
    if scan.status != ScanStatus.CLASSIFYING:
        logger.info(f"finalize_classification: scan {scan_id} is {scan.status.value}, nothing to do")
        return False

    gaps = posts_needing_classification(db, scan_id)
    for post_id in gaps:
        discard_fallback(
            db, scan_id, post_id,
            category=CATEGORY_GAP_FILL,
            reasoning="No classification was recorded before the stage finished",
        )
    if gaps:
        logger.warning(f"finalize_classification: scan {scan_id} gap-filled {len(gaps)} posts with discard")

    won = transition(
        db, scan_id, ScanStatus.CLASSIFYING, ScanStatus.EXTRACTING,
        posts_classified=classified_count(db, scan_id),
    )
    if won:
        dispatch_extraction(scan_id)
    return won


def finalize_extraction(db: Session, scan_id: int) -> bool:
    """Mark the scan completed. Returns True if this call completed it."""
    scan = _fresh_scan(db, scan_id)
    if scan is None or scan.status != ScanStatus.EXTRACTING:
        logger.info(f"finalize_extraction: scan {scan_id} is not extracting, nothing to do")
        return False

    _, extracted = extraction_counts(db, scan_id)
    now = utcnow()
    won = transition(
        db, scan_id, ScanStatus.EXTRACTING, ScanStatus.COMPLETED,
        posts_extracted=extracted, completed_at=now,
    )
    if won:
        db.query(Subreddit).filter(Subreddit.id == scan.subreddit_id).update(
            {"last_scanned_at": now}, synchronize_session=False,
        )
        db.commit()
        logger.info(f"finalize_extraction: scan {scan_id} completed")
    return won


# ── Completion checks (one poller invocation each) ───────────────────────────

def check_fetch(db: Session, scan_id: int) -> str:
    scan = _fresh_scan(db, scan_id)
    if scan is None or scan.status != ScanStatus.FETCHING:
        return STOP
    if scan.fetch_jobs_total is None:
        return WAIT
    if scan.fetch_jobs_done < scan.fetch_jobs_total:
        logger.debug(f"check_fetch: scan {scan_id} {scan.fetch_jobs_done}/{scan.fetch_jobs_total} fetch jobs done")
        return WAIT

    if transition(db, scan_id, ScanStatus.FETCHING, ScanStatus.CLASSIFYING):
        dispatch_classification(scan_id)
        return ADVANCED
    return STOP


def check_classification(db: Session, scan_id: int) -> str:
    scan = _fresh_scan(db, scan_id)
    if scan is None or scan.status != ScanStatus.CLASSIFYING:
        return STOP
    if scan.posts_classified < scan.posts_fetched:
        logger.debug(f"check_classification: scan {scan_id} {scan.posts_classified}/{scan.posts_fetched} classified")
        return WAIT
    return ADVANCED if finalize_classification(db, scan_id) else STOP


def check_extraction(db: Session, scan_id: int) -> str:
    scan = _fresh_scan(db, scan_id)
    if scan is None or scan.status != ScanStatus.EXTRACTING:
        return STOP
    eligible, extracted = extraction_counts(db, scan_id)
    if extracted < eligible:
        logger.debug(f"check_extraction: scan {scan_id} {extracted}/{eligible} extracted")
        return WAIT
    return ADVANCED if finalize_extraction(db, scan_id) else STOP
