"""
Celery task base classes for the pipeline.

BatchChunkTask
    Chunk jobs run under a ``JobBatch``.  ``on_failure`` applies the stage's
    per-post fallback to the whole chunk, ``after_return`` records the chunk's
    terminal state and, for the last chunk, sends the stage's finalize task.
    Retries and revocations are not terminal and are not counted.

StagePollerTask
    Completion pollers re-queue themselves forever; if one ever fails for
    real, the scan is marked failed with a generic message.
"""
import logging
from typing import List, Optional

from celery import Task, states
from celery.exceptions import SoftTimeLimitExceeded

from ideascan.core import batching, stages
from ideascan.database import session_scope
from ideascan.models.scan import ScanStatus

logger = logging.getLogger(__name__)


def _arg(args, kwargs, name: str, position: int):
    if name in kwargs:
        return kwargs[name]
    if len(args) > position:
        return args[position]
    return None


class BatchChunkTask(Task):
    """Subclasses set ``finalize_task`` and implement ``chunk_fallback``"""

    finalize_task: str = ""
    acks_late = True
    reject_on_worker_lost = True
    max_retries = 0

    def chunk_fallback(self, db, scan_id: int, post_ids: List[int]) -> int:
        raise NotImplementedError

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        scan_id = _arg(args, kwargs, "scan_id", 0)
        post_ids = _arg(args, kwargs, "post_ids", 1) or []
        if isinstance(exc, SoftTimeLimitExceeded):
            logger.error(f"{self.name}: scan {scan_id} chunk hit its time limit ({len(post_ids)} posts)")
        else:
            logger.error(f"{self.name}: scan {scan_id} chunk failed: {exc!r}")
        if scan_id is None:
            return
        with session_scope() as db:
            handled = self.chunk_fallback(db, scan_id, post_ids)
        logger.warning(f"{self.name}: scan {scan_id} chunk fallback applied to {handled} posts")

    def after_return(self, status, retval, task_id, args, kwargs, einfo):
        if status not in (states.SUCCESS, states.FAILURE):
            return
        batch_id: Optional[str] = _arg(args, kwargs, "batch_id", 2)
        chunk_index = _arg(args, kwargs, "chunk_index", 3)
        scan_id = _arg(args, kwargs, "scan_id", 0)
        if batch_id is None or chunk_index is None:
            return

        with session_scope() as db:
            last = batching.record_chunk_finished(db, batch_id, chunk_index, failed=status == states.FAILURE)
        if last:
            logger.info(f"{self.name}: batch {batch_id} complete, sending {self.finalize_task} for scan {scan_id}")
            self.app.send_task(self.finalize_task, args=[scan_id])


class StagePollerTask(Task):
    """Subclasses set ``stage`` to the scan status the poller watches"""

    stage: ScanStatus = ScanStatus.PENDING

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        scan_id = _arg(args, kwargs, "scan_id", 0)
        logger.error(f"{self.name}: poller for scan {scan_id} failed: {exc!r}")
        if scan_id is None:
            return
        with session_scope() as db:
            if stages.mark_failed(db, scan_id, self.stage):
                logger.error(f"{self.name}: scan {scan_id} marked failed during {self.stage.value}")
