import logging

from ideascan.config import settings
from ideascan.core import stages
from ideascan.database import session_scope
from ideascan.models.scan import Scan, ScanStatus
from ideascan.tasks.base import StagePollerTask
from ideascan.utils.clock import utcnow
from ideascan.worker import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=1)
def start_scan(self, scan_id: int):
    """
    Moves a pending scan into ``fetching``, hands it to the external fetcher
    and starts the fetch completion poller.
    """
    with session_scope() as db:
        scan = db.query(Scan).filter(Scan.id == scan_id).first()
        if not scan:
            logger.error(f"start_scan: scan {scan_id} not found")
            return False
        subreddit = scan.subreddit.name
        date_from, date_to = scan.date_from, scan.date_to

        if not stages.transition(db, scan_id, ScanStatus.PENDING, ScanStatus.FETCHING, started_at=utcnow()):
            logger.info(f"start_scan: scan {scan_id} is no longer pending, skipping")
            return False

    if settings.FETCH_TASK_NAME:
        celery_app.send_task(settings.FETCH_TASK_NAME, kwargs={
            "scan_id": scan_id,
            "subreddit": subreddit,
            "date_from": date_from.isoformat() if date_from else None,
            "date_to": date_to.isoformat() if date_to else None,
        })

    check_fetch_complete.apply_async(args=[scan_id], countdown=settings.FETCH_POLL_SECONDS)
    logger.info(f"start_scan: scan {scan_id} fetching r/{subreddit}")
    return True


@celery_app.task(bind=True, base=StagePollerTask, stage=ScanStatus.FETCHING, max_retries=None)
def check_fetch_complete(self, scan_id: int):
    """Waits for every registered fetch job to report, then starts classification"""
    with session_scope() as db:
        result = stages.check_fetch(db, scan_id)

    if result == stages.WAIT:
        raise self.retry(countdown=settings.FETCH_POLL_SECONDS)
    return result
