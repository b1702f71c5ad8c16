"""Idea extraction: per-post retry driver and chunk processor"""
import logging
import time
from typing import List, Optional

from sqlalchemy.orm import Session

from ideascan.config import settings
from ideascan.core.classification_chunk import ChunkReport, scan_in_stage
from ideascan.core.counters import increment, lock_post
from ideascan.core.fallback import mark_extracted
from ideascan.core.retry_driver import backoff_seconds
from ideascan.models.idea import Idea
from ideascan.models.post import Post
from ideascan.models.scan import ScanStatus
from ideascan.services.llm import factory
from ideascan.services.llm.base import BaseProvider
from ideascan.services.llm.dtos import ExtractionRequest, ExtractionResponse
from ideascan.services.llm.exceptions import ProviderError, TransientProviderFailure
from ideascan.utils.clock import utcnow

logger = logging.getLogger(__name__)


class ExtractionFailed(Exception):
    def __init__(self, post_id: int, reason: str):
        super().__init__(f"post {post_id}: {reason}")
        self.post_id = post_id
        self.reason = reason


def store_ideas(db: Session, scan_id: int, post_id: int, response: ExtractionResponse) -> Optional[int]:
    """Persist up to ``MAX_IDEAS_PER_POST`` ideas and stamp the post as extracted.

    Returns the number of ideas stored, or None when another worker already
    extracted the post.
    """
    post = lock_post(db, post_id)
    if post is None or post.extracted_at is not None:
        db.rollback()
        return None

    status = post.classification.final_decision if post.classification else None
    ideas = response.ideas[:settings.MAX_IDEAS_PER_POST]
    if len(response.ideas) > len(ideas):
        logger.debug(f"extract: post {post_id} returned {len(response.ideas)} ideas, keeping {len(ideas)}")

    for dto in ideas:
        db.add(Idea(post_id=post_id, scan_id=scan_id, classification_status=status, **dto.to_idea_fields()))
    post.extracted_at = utcnow()
    increment(db, scan_id, posts_extracted=1, ideas_found=len(ideas))
    db.commit()
    return len(ideas)


def extract_post(
    db: Session,
    scan_id: int,
    post_id: int,
    provider: BaseProvider,
    max_attempts: Optional[int] = None,
) -> Optional[int]:
    max_attempts = max_attempts or settings.RETRY_MAX_ATTEMPTS

    for attempt in range(1, max_attempts + 1):
        db.expire_all()
        post = db.query(Post).filter(Post.id == post_id).first()
        if post is None:
            raise ExtractionFailed(post_id, "post disappeared")

        try:
            response = provider.extract(ExtractionRequest.from_post(post, settings.EXTRACT_COMMENT_LIMIT))
        except TransientProviderFailure as e:
            if attempt >= max_attempts:
                raise ExtractionFailed(post_id, f"transient failures on all {max_attempts} attempts") from e
            delay = backoff_seconds(attempt)
            logger.warning(f"extract: scan {scan_id} post {post_id} transient failure, retry in {delay}s: {e}")
            time.sleep(delay)
            continue
        except ProviderError as e:
            raise ExtractionFailed(post_id, f"{type(e).__name__} from {e.provider}") from e

        count = store_ideas(db, scan_id, post_id, response)
        logger.info(f"extract: scan {scan_id} post {post_id} -> {count if count is not None else 'already'} ideas")
        return count

    raise ExtractionFailed(post_id, f"no result after {max_attempts} attempts")


def process_extraction_chunk(
    db: Session,
    scan_id: int,
    post_ids: List[int],
    provider: Optional[BaseProvider] = None,
) -> ChunkReport:
    report = ChunkReport()
    owns_provider = provider is None

    try:
        for post_id in post_ids:
            if not scan_in_stage(db, scan_id, ScanStatus.EXTRACTING):
                logger.info(f"extract_chunk: scan {scan_id} is no longer extracting, abandoning chunk")
                report.aborted = True
                break

            post = db.query(Post).filter(Post.id == post_id).first()
            if post is None:
                logger.warning(f"extract_chunk: scan {scan_id} post {post_id} not found, skipping")
                report.missing.append(post_id)
                continue
            if post.extracted_at is not None or post.classification is None or not post.classification.passed:
                report.skipped.append(post_id)
                continue

            if provider is None:
                provider = factory.extraction_provider()

            try:
                count = extract_post(db, scan_id, post_id, provider)
            except ExtractionFailed as e:
                logger.error(f"extract_chunk: scan {scan_id} {e}, marking as extracted")
                db.rollback()
                if mark_extracted(db, scan_id, post_id):
                    report.fallbacks.append(post_id)
                else:
                    report.skipped.append(post_id)
                continue

            if count is None:
                report.skipped.append(post_id)
            else:
                report.processed.append(post_id)
    finally:
        if owns_provider and provider is not None:
            provider.close()

    logger.info(
        f"extract_chunk: scan {scan_id} done - {len(report.processed)} extracted, "
        f"{len(report.fallbacks)} gave up, {len(report.skipped)} skipped, {len(report.missing)} missing"
    )
    return report
