"""Classification chunk processor"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ideascan.core.fallback import discard_fallback
from ideascan.core.retry_driver import ALREADY_CLASSIFIED, ClassificationFailed, classify_post
from ideascan.models.classification import Classification, ProviderKind
from ideascan.models.post import Post
from ideascan.models.scan import Scan, ScanStatus
from ideascan.services.llm import factory
from ideascan.services.llm.base import BaseProvider

logger = logging.getLogger(__name__)


@dataclass
class ChunkReport:
    processed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    missing: List[int] = field(default_factory=list)
    fallbacks: List[int] = field(default_factory=list)
    aborted: bool = False


def scan_in_stage(db: Session, scan_id: int, stage: ScanStatus) -> bool:
    db.expire_all()
    scan = db.query(Scan).filter(Scan.id == scan_id).first()
    return scan is not None and scan.status == stage


def is_classified(db: Session, post_id: int) -> bool:
    row = db.query(Classification.classified_at).filter(Classification.post_id == post_id).first()
    return row is not None and row.classified_at is not None


def process_classification_chunk(
    db: Session,
    scan_id: int,
    post_ids: List[int],
    providers: Optional[Dict[ProviderKind, BaseProvider]] = None,
) -> ChunkReport:
    """Classify ``post_ids`` in order.

    Stops quietly as soon as the scan is gone or has left ``classifying``.
    Posts the driver gives up on get a discard record under the post lock.
    """
    report = ChunkReport()
    owns_providers = providers is None

    try:
        for post_id in post_ids:
            if not scan_in_stage(db, scan_id, ScanStatus.CLASSIFYING):
                logger.info(f"classify_chunk: scan {scan_id} is no longer classifying, abandoning chunk")
                report.aborted = True
                break

            if db.query(Post.id).filter(Post.id == post_id).first() is None:
                logger.warning(f"classify_chunk: scan {scan_id} post {post_id} not found, skipping")
                report.missing.append(post_id)
                continue

            if is_classified(db, post_id):
                report.skipped.append(post_id)
                continue

            if providers is None:
                providers = factory.classification_providers()

            try:
                result = classify_post(db, scan_id, post_id, providers)
            except ClassificationFailed as e:
                logger.error(f"classify_chunk: scan {scan_id} {e}, writing discard fallback")
                db.rollback()
                if discard_fallback(db, scan_id, post_id):
                    report.fallbacks.append(post_id)
                else:
                    report.skipped.append(post_id)
                continue

            if result == ALREADY_CLASSIFIED:
                report.skipped.append(post_id)
            else:
                report.processed.append(post_id)
    finally:
        if owns_providers and providers:
            for provider in providers.values():
                provider.close()

    logger.info(
        f"classify_chunk: scan {scan_id} done - {len(report.processed)} classified, "
        f"{len(report.fallbacks)} discarded, {len(report.skipped)} skipped, {len(report.missing)} missing"
    )
    return report
