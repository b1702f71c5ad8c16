import logging
from typing import List

from ideascan.config import settings
from ideascan.core import batching, stages
from ideascan.core.extraction_chunk import process_extraction_chunk
from ideascan.core.fallback import mark_extracted
from ideascan.database import session_scope
from ideascan.models.scan import ScanStatus
from ideascan.tasks.base import BatchChunkTask, StagePollerTask
from ideascan.worker import celery_app

logger = logging.getLogger(__name__)

FINALIZE_TASK = "ideascan.tasks.extract_tasks.finalize_extraction"


class ExtractChunkTask(BatchChunkTask):
    finalize_task = FINALIZE_TASK

    def chunk_fallback(self, db, scan_id: int, post_ids: List[int]) -> int:
        return sum(1 for post_id in post_ids if mark_extracted(db, scan_id, post_id))


@celery_app.task(bind=True)
def extract_ideas(self, scan_id: int, start_poller: bool = True):
    with session_scope() as db:
        plan = batching.open_batch(db, scan_id, batching.STAGE_EXTRACT)
        if plan.action == batching.FINALIZE:
            stages.finalize_extraction(db, scan_id)
            return plan.action

    if plan.action != batching.DISPATCH:
        return plan.action

    def enqueue(batch_id: str, index: int, post_ids: List[int]) -> None:
        extract_ideas_chunk.apply_async(
            kwargs={"scan_id": scan_id, "post_ids": post_ids, "batch_id": batch_id, "chunk_index": index},
        )

    batching.run_plan(plan, enqueue)
    if start_poller:
        check_extraction_complete.apply_async(args=[scan_id], countdown=settings.EXTRACT_POLL_SECONDS)
    logger.info(f"extract_ideas: scan {scan_id} queued {len(plan.chunks)} chunks in batch {plan.batch_id}")
    return plan.action


@celery_app.task(
    bind=True,
    base=ExtractChunkTask,
    soft_time_limit=settings.EXTRACT_CHUNK_TIME_LIMIT,
    time_limit=settings.EXTRACT_CHUNK_TIME_LIMIT + 60,
)
def extract_ideas_chunk(self, scan_id: int, post_ids: List[int], batch_id: str = None, chunk_index: int = 0):
    with session_scope() as db:
        report = process_extraction_chunk(db, scan_id, post_ids)
    return {
        "extracted": len(report.processed),
        "gave_up": len(report.fallbacks),
        "skipped": len(report.skipped) + len(report.missing),
        "aborted": report.aborted,
    }


@celery_app.task(bind=True)
def finalize_extraction(self, scan_id: int):
    with session_scope() as db:
        return stages.finalize_extraction(db, scan_id)


@celery_app.task(bind=True, base=StagePollerTask, stage=ScanStatus.EXTRACTING, max_retries=None)
def check_extraction_complete(self, scan_id: int):
    with session_scope() as db:
        result = stages.check_extraction(db, scan_id)
        if result == stages.WAIT and batching.has_stale_batch(db, scan_id, batching.STAGE_EXTRACT):
            logger.warning(f"check_extraction_complete: scan {scan_id} batch is stale, re-dispatching")
            extract_ideas.delay(scan_id, start_poller=False)

    if result == stages.WAIT:
        raise self.retry(countdown=settings.EXTRACT_POLL_SECONDS)
    return result
