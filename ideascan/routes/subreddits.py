"""API Routes - Subreddits"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ideascan.database import get_db
from ideascan.schemas.scan import ScanHistory, ScanHistoryItem
from ideascan.services import scan_service

router = APIRouter(prefix="/api/subreddits", tags=["Subreddits"])


@router.get("/{name}/history", response_model=ScanHistory)
def scan_history(name: str, db: Session = Depends(get_db)):
    """Last ten completed scans for a subreddit"""
    try:
        normalized = scan_service.normalize_subreddit_name(name)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    scans = scan_service.get_scan_history(db, normalized)
    return ScanHistory(
        subreddit=normalized,
        scans=[ScanHistoryItem.model_validate(scan) for scan in scans],
    )
