"""
Batch Orchestrator
==================
Opens the chunked batch for a stage and keeps the per-batch bookkeeping that
lets the last chunk trigger the stage's finalize step.

    plan = open_batch(db, scan_id, STAGE_CLASSIFY)
    if plan.action == DISPATCH:
        for index, chunk in enumerate(plan.chunks): enqueue(...)

The duplicate-dispatch guard runs under a row lock on the Scan: while the
lock is held the stage is re-verified, any younger unfinished batch with the
same name aborts the dispatch, and the new batch row is written before the
lock is released.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ideascan.config import settings
from ideascan.core.counters import lock_scan
from ideascan.models.batch import BatchStatus, JobBatch
from ideascan.models.classification import PASSED_DECISIONS, Classification
from ideascan.models.post import Post
from ideascan.models.scan import ScanStatus
from ideascan.utils.clock import utcnow

logger = logging.getLogger(__name__)

STAGE_CLASSIFY = "classify"
STAGE_EXTRACT = "extract"

# Plan actions
DISPATCH = "dispatch"
FINALIZE = "finalize"        # nothing to do, run the stage's finalize directly
DUPLICATE = "duplicate"      # a younger unfinished batch is already running
STALE = "stale"              # scan missing or no longer in the stage


def posts_needing_classification(db: Session, scan_id: int) -> List[int]:
    rows = (
        db.query(Post.id)
        .outerjoin(Classification, Classification.post_id == Post.id)
        .filter(Post.scan_id == scan_id, Classification.classified_at.is_(None))
        .order_by(Post.id)
        .all()
    )
    return [row.id for row in rows]


def posts_needing_extraction(db: Session, scan_id: int) -> List[int]:
    rows = (
        db.query(Post.id)
        .join(Classification, Classification.post_id == Post.id)
        .filter(
            Post.scan_id == scan_id,
            Post.extracted_at.is_(None),
            Classification.final_decision.in_(PASSED_DECISIONS),
            Classification.classified_at.isnot(None),
        )
        .order_by(Post.id)
        .all()
    )
    return [row.id for row in rows]


_STAGES: Dict[str, tuple] = {
    STAGE_CLASSIFY: (ScanStatus.CLASSIFYING, posts_needing_classification, lambda: settings.CLASSIFY_CHUNK_SIZE),
    STAGE_EXTRACT: (ScanStatus.EXTRACTING, posts_needing_extraction, lambda: settings.EXTRACT_CHUNK_SIZE),
}


@dataclass
class BatchPlan:
    action: str
    batch_id: Optional[str] = None
    chunks: List[List[int]] = field(default_factory=list)


def batch_name(stage: str, scan_id: int) -> str:
    return f"{stage}-scan-{scan_id}"


def chunked(ids: List[int], size: int) -> List[List[int]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [ids[i:i + size] for i in range(0, len(ids), size)]


def active_batch(db: Session, name: str) -> Optional[JobBatch]:
    return (
        db.query(JobBatch)
        .filter(JobBatch.name == name, JobBatch.finished_at.is_(None))
        .order_by(JobBatch.created_at.desc())
        .first()
    )


def is_stale(batch: JobBatch) -> bool:
    return utcnow() - batch.created_at >= timedelta(seconds=settings.STALE_BATCH_THRESHOLD_SECONDS)


def has_stale_batch(db: Session, scan_id: int, stage: str) -> bool:
    """True when the stage's newest unfinished batch is old enough to be considered abandoned"""
    batch = active_batch(db, batch_name(stage, scan_id))
    return batch is not None and is_stale(batch)


def open_batch(db: Session, scan_id: int, stage: str) -> BatchPlan:
    expected_status, needing_work, chunk_size = _STAGES[stage]
    name = batch_name(stage, scan_id)

    scan = lock_scan(db, scan_id)
    if scan is None or scan.status != expected_status:
        db.rollback()
        logger.info(f"batch: scan {scan_id} is not {expected_status.value}, not dispatching {name}")
        return BatchPlan(STALE)

    existing = active_batch(db, name)
    if existing is not None:
        age = utcnow() - existing.created_at
        if not is_stale(existing):
            db.rollback()
            logger.info(f"batch: {name} already running as {existing.id} ({int(age.total_seconds())}s old), skipping")
            return BatchPlan(DUPLICATE)
        logger.warning(f"batch: {name} batch {existing.id} is stale ({int(age.total_seconds())}s old), superseding")
        existing.finished_at = utcnow()
        existing.status = BatchStatus.FAILED

    post_ids = needing_work(db, scan_id)
    if not post_ids:
        db.commit()
        logger.info(f"batch: {name} has no posts needing work, finalizing directly")
        return BatchPlan(FINALIZE)

    chunks = chunked(post_ids, chunk_size())
    batch = JobBatch(
        id=str(uuid.uuid4()),
        name=name,
        scan_id=scan_id,
        stage=stage,
        status=BatchStatus.RUNNING,
        total_jobs=len(chunks),
        pending_jobs=len(chunks),
        failed_jobs=0,
        finished_chunks=[],
    )
    db.add(batch)
    db.commit()
    logger.info(f"batch: {name} opened as {batch.id} with {len(post_ids)} posts in {len(chunks)} chunks")
    return BatchPlan(DISPATCH, batch_id=batch.id, chunks=chunks)


def record_chunk_finished(db: Session, batch_id: str, chunk_index: int, failed: bool) -> bool:
    """Account for one chunk job reaching a terminal state.

    Idempotent per ``chunk_index``. Returns True only for the call that
    finishes the batch.
    """
    batch = (
        db.query(JobBatch)
        .filter(JobBatch.id == batch_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if batch is None or batch.finished_at is not None:
        db.rollback()
        return False

    finished = list(batch.finished_chunks or [])
    if chunk_index in finished:
        db.rollback()
        logger.info(f"batch: {batch.name} chunk {chunk_index} already accounted for")
        return False

    finished.append(chunk_index)
    batch.finished_chunks = finished
    batch.pending_jobs = max(0, batch.pending_jobs - 1)
    if failed:
        batch.failed_jobs += 1

    done = batch.pending_jobs == 0
    if done:
        batch.finished_at = utcnow()
        batch.status = (
            BatchStatus.COMPLETED if batch.failed_jobs == 0 else
            BatchStatus.PARTIAL if batch.failed_jobs < batch.total_jobs else
            BatchStatus.FAILED
        )
    db.commit()

    if done:
        logger.info(f"batch: {batch.name} finished ({batch.status.value}, {batch.failed_jobs}/{batch.total_jobs} failed)")
    return done


def run_plan(plan: BatchPlan, enqueue_chunk: Callable[[str, int, List[int]], None]) -> None:
    for index, chunk in enumerate(plan.chunks):
        enqueue_chunk(plan.batch_id, index, chunk)
