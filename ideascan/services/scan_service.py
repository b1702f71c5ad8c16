"""
Scan lifecycle: start, cancel, retry and status queries.

All functions take the caller's session; the HTTP routes pass the request
session from ``get_db``.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ideascan.config import settings
from ideascan.core import stages
from ideascan.models.scan import IN_PROGRESS_STATUSES, Scan, ScanStatus, ScanType, Subreddit
from ideascan.utils.clock import utcnow

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10


class ScanStateError(ValueError):
    """Operation is not valid for the scan's current status"""


def normalize_subreddit_name(name: str) -> str:
    name = (name or "").strip()
    if name.lower().startswith("/r/"):
        name = name[3:]
    elif name.lower().startswith("r/"):
        name = name[2:]
    name = name.strip("/ ")
    if not name:
        raise ValueError("Subreddit name must not be empty")
    return name


def _lock_or_create_subreddit(db: Session, name: str) -> Subreddit:
    subreddit = db.query(Subreddit).filter(Subreddit.name == name).with_for_update().first()
    if subreddit:
        return subreddit
    try:
        subreddit = Subreddit(name=name)
        db.add(subreddit)
        db.flush()
        return subreddit
    except IntegrityError:
        db.rollback()
        return db.query(Subreddit).filter(Subreddit.name == name).with_for_update().one()


def active_scan_for(db: Session, subreddit_id: int) -> Optional[Scan]:
    return (
        db.query(Scan)
        .filter(Scan.subreddit_id == subreddit_id, Scan.status.in_(IN_PROGRESS_STATUSES))
        .order_by(Scan.created_at.desc(), Scan.id.desc())
        .first()
    )


def _has_completed_scan(db: Session, subreddit_id: int) -> bool:
    return db.query(Scan.id).filter(
        Scan.subreddit_id == subreddit_id, Scan.status == ScanStatus.COMPLETED,
    ).first() is not None


def start_scan(
    db: Session,
    subreddit_name: str,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> Scan:
    """Create a pending scan, or return the subreddit's scan already in progress"""
    name = normalize_subreddit_name(subreddit_name)
    subreddit = _lock_or_create_subreddit(db, name)

    active = active_scan_for(db, subreddit.id)
    if active:
        db.rollback()
        logger.info(f"start_scan: r/{name} already has scan {active.id} in progress")
        return active

    scan_type = ScanType.RESCAN if _has_completed_scan(db, subreddit.id) else ScanType.INITIAL
    now = utcnow()
    if date_from is None:
        weeks = settings.RESCAN_TIMEFRAME_WEEKS if scan_type == ScanType.RESCAN else settings.DEFAULT_TIMEFRAME_WEEKS
        date_from = now - timedelta(weeks=weeks)
    if date_to is None:
        date_to = now
    if date_from > date_to:
        db.rollback()
        raise ValueError("date_from must not be after date_to")

    scan = Scan(
        subreddit_id=subreddit.id,
        scan_type=scan_type,
        status=ScanStatus.PENDING,
        date_from=date_from,
        date_to=date_to,
    )
    db.add(scan)
    db.commit()
    db.refresh(scan)
    logger.info(f"start_scan: created {scan_type.value} scan {scan.id} for r/{name}")

    from ideascan.tasks.scan_tasks import start_scan as start_scan_task
    start_scan_task.delay(scan.id)
    return scan


def cancel_scan(db: Session, scan: Scan) -> Scan:
    if not scan.is_in_progress:
        raise ScanStateError("Can only cancel in-progress scans")
    if not stages.transition(
        db, scan.id, scan.status, ScanStatus.FAILED,
        error_message=stages.CANCELLED_MESSAGE, completed_at=utcnow(),
    ):
        db.refresh(scan)
        if not scan.is_in_progress:
            raise ScanStateError(f"Scan already {scan.status.value}")
        return cancel_scan(db, scan)
    db.refresh(scan)
    logger.info(f"cancel_scan: scan {scan.id} cancelled")
    return scan


def retry_scan(db: Session, scan: Scan) -> Scan:
    if not scan.is_failed:
        raise ScanStateError("Can only retry failed scans")
    return start_scan(db, scan.subreddit.name)


def get_scan(db: Session, scan_id: int) -> Optional[Scan]:
    return db.query(Scan).filter(Scan.id == scan_id).first()


def get_scan_status(db: Session, scan_id: int) -> Dict[str, Any]:
    scan = get_scan(db, scan_id)
    if scan is None:
        return {
            "id": None,
            "status": "deleted",
            "status_message": "Scan no longer exists",
            "progress_percent": 0,
            "scan_type": None,
            "subreddit": None,
            "posts_fetched": 0,
            "posts_classified": 0,
            "posts_extracted": 0,
            "ideas_found": 0,
            "started_at": None,
            "completed_at": None,
            "error_message": None,
            "is_in_progress": False,
            "is_completed": False,
            "is_failed": True,
        }
    return {
        "id": scan.id,
        "status": scan.status.value,
        "status_message": scan.status_message,
        "progress_percent": scan.progress_percent,
        "scan_type": scan.scan_type.value,
        "subreddit": scan.subreddit.name,
        "posts_fetched": scan.posts_fetched,
        "posts_classified": scan.posts_classified,
        "posts_extracted": scan.posts_extracted,
        "ideas_found": scan.ideas_found,
        "started_at": scan.started_at,
        "completed_at": scan.completed_at,
        "error_message": scan.error_message,
        "is_in_progress": scan.is_in_progress,
        "is_completed": scan.is_completed,
        "is_failed": scan.is_failed,
    }


def get_scan_history(db: Session, subreddit_name: str) -> List[Scan]:
    """Last completed scans for a subreddit, newest first"""
    subreddit = db.query(Subreddit).filter(Subreddit.name == normalize_subreddit_name(subreddit_name)).first()
    if not subreddit:
        return []
    return (
        db.query(Scan)
        .filter(Scan.subreddit_id == subreddit.id, Scan.status == ScanStatus.COMPLETED)
        .order_by(Scan.completed_at.desc())
        .limit(HISTORY_LIMIT)
        .all()
    )


def get_active_scans(db: Session) -> List[Scan]:
    return (
        db.query(Scan)
        .filter(Scan.status.in_(IN_PROGRESS_STATUSES))
        .order_by(Scan.created_at.desc(), Scan.id.desc())
        .all()
    )
