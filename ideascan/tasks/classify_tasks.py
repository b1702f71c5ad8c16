import logging
from typing import List

from ideascan.config import settings
from ideascan.core import batching, stages
from ideascan.core.classification_chunk import process_classification_chunk
from ideascan.core.fallback import discard_remaining
from ideascan.database import session_scope
from ideascan.models.scan import ScanStatus
from ideascan.tasks.base import BatchChunkTask, StagePollerTask
from ideascan.worker import celery_app

logger = logging.getLogger(__name__)

FINALIZE_TASK = "ideascan.tasks.classify_tasks.finalize_classification"


class ClassifyChunkTask(BatchChunkTask):
    finalize_task = FINALIZE_TASK

    def chunk_fallback(self, db, scan_id: int, post_ids: List[int]) -> int:
        return discard_remaining(db, scan_id, post_ids)


@celery_app.task(bind=True)
def classify_posts(self, scan_id: int, start_poller: bool = True):
    """Open the classification batch for a scan and queue its chunks"""
    with session_scope() as db:
        plan = batching.open_batch(db, scan_id, batching.STAGE_CLASSIFY)
        if plan.action == batching.FINALIZE:
            stages.finalize_classification(db, scan_id)
            return plan.action

    if plan.action != batching.DISPATCH:
        return plan.action

    def enqueue(batch_id: str, index: int, post_ids: List[int]) -> None:
        classify_posts_chunk.apply_async(
            kwargs={"scan_id": scan_id, "post_ids": post_ids, "batch_id": batch_id, "chunk_index": index},
        )

    batching.run_plan(plan, enqueue)
    if start_poller:
        check_classification_complete.apply_async(args=[scan_id], countdown=settings.CLASSIFY_POLL_SECONDS)
    logger.info(f"classify_posts: scan {scan_id} queued {len(plan.chunks)} chunks in batch {plan.batch_id}")
    return plan.action


@celery_app.task(
    bind=True,
    base=ClassifyChunkTask,
    soft_time_limit=settings.CLASSIFY_CHUNK_TIME_LIMIT,
    time_limit=settings.CLASSIFY_CHUNK_TIME_LIMIT + 60,
)
def classify_posts_chunk(self, scan_id: int, post_ids: List[int], batch_id: str = None, chunk_index: int = 0):
    with session_scope() as db:
        report = process_classification_chunk(db, scan_id, post_ids)
    return {
        "classified": len(report.processed),
        "discarded": len(report.fallbacks),
        "skipped": len(report.skipped) + len(report.missing),
        "aborted": report.aborted,
    }


@celery_app.task(bind=True)
def finalize_classification(self, scan_id: int):
    with session_scope() as db:
        return stages.finalize_classification(db, scan_id)


@celery_app.task(bind=True, base=StagePollerTask, stage=ScanStatus.CLASSIFYING, max_retries=None)
def check_classification_complete(self, scan_id: int):
    """Watchdog for the classification stage; re-queues itself until the stage is done"""
    with session_scope() as db:
        result = stages.check_classification(db, scan_id)
        if result == stages.WAIT and batching.has_stale_batch(db, scan_id, batching.STAGE_CLASSIFY):
            logger.warning(f"check_classification_complete: scan {scan_id} batch is stale, re-dispatching")
            classify_posts.delay(scan_id, start_poller=False)

    if result == stages.WAIT:
        raise self.retry(countdown=settings.CLASSIFY_POLL_SECONDS)
    return result
