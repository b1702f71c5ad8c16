"""Pydantic schemas"""
from ideascan.schemas.scan import ScanCreate, ScanResponse, ScanHistoryItem, ScanHistory

__all__ = [
    "ScanCreate", "ScanResponse", "ScanHistoryItem", "ScanHistory",
]
