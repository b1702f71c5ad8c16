"""API Routes - Subreddit scans"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ideascan.database import get_db
from ideascan.schemas.scan import ScanCreate, ScanResponse
from ideascan.services import scan_service

router = APIRouter(prefix="/api/scans", tags=["Scans"])


def _get_scan_or_404(db: Session, scan_id: int):
    scan = scan_service.get_scan(db, scan_id)
    if not scan:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scan not found")
    return scan


@router.post("", response_model=ScanResponse, status_code=status.HTTP_202_ACCEPTED)
def create_scan(scan_data: ScanCreate, db: Session = Depends(get_db)):
    """Start a scan, or return the subreddit's scan already in progress"""
    try:
        scan = scan_service.start_scan(db, scan_data.subreddit, scan_data.date_from, scan_data.date_to)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return ScanResponse.from_scan(scan)


@router.get("", response_model=List[ScanResponse])
def list_active_scans(db: Session = Depends(get_db)):
    return [ScanResponse.from_scan(scan) for scan in scan_service.get_active_scans(db)]


@router.get("/{scan_id}", response_model=ScanResponse)
def get_scan(scan_id: int, db: Session = Depends(get_db)):
    return ScanResponse.from_scan(_get_scan_or_404(db, scan_id))


@router.post("/{scan_id}/cancel", response_model=ScanResponse)
def cancel_scan(scan_id: int, db: Session = Depends(get_db)):
    scan = _get_scan_or_404(db, scan_id)
    try:
        scan = scan_service.cancel_scan(db, scan)
    except scan_service.ScanStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return ScanResponse.from_scan(scan)


@router.post("/{scan_id}/retry", response_model=ScanResponse, status_code=status.HTTP_202_ACCEPTED)
def retry_scan(scan_id: int, db: Session = Depends(get_db)):
    scan = _get_scan_or_404(db, scan_id)
    try:
        new_scan = scan_service.retry_scan(db, scan)
    except scan_service.ScanStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return ScanResponse.from_scan(new_scan)
