"""
Per-post classification retry driver.

    classify_post(db, scan_id, post_id, providers) -> "classified" | "already_classified"

One attempt fans the request out to every configured provider, resolves the
answers and, when the resolver finalizes, stores the classification and bumps
``posts_classified`` in a single commit.  A retry signal persists nothing and
backs off before the next attempt.  Anything unrecoverable surfaces as
``ClassificationFailed``; writing the discard fallback is the caller's job.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, Optional

from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ideascan.config import settings
from ideascan.core.consensus import Failed, Finalized, ProviderResult, RetryRequired, resolve
from ideascan.core.counters import increment
from ideascan.models.classification import Classification, ProviderKind
from ideascan.models.post import Post
from ideascan.services.llm.base import BaseProvider
from ideascan.services.llm.dtos import ClassificationRequest
from ideascan.services.llm.exceptions import (
    CapabilityNotSupported,
    PermanentProviderFailure,
    TransientProviderFailure,
)

logger = logging.getLogger(__name__)

CLASSIFIED = "classified"
ALREADY_CLASSIFIED = "already_classified"


class ClassificationFailed(Exception):
    def __init__(self, post_id: int, reason: str):
        super().__init__(f"post {post_id}: {reason}")
        self.post_id = post_id
        self.reason = reason


def backoff_seconds(attempt: int) -> int:
    return min(2 ** attempt, settings.RETRY_MAX_BACKOFF_SECONDS)


# ── Provider fan-out ──────────────────────────────────────────────────────────

def _call_provider(provider: BaseProvider, request: ClassificationRequest) -> ProviderResult:
    name = provider.provider_name()
    try:
        if not provider.supports_classification():
            raise CapabilityNotSupported(f"{name} does not classify", provider=name)
        return ProviderResult.success(provider.classify(request))
    except TransientProviderFailure as e:
        logger.warning(f"classify: {name} transient failure for post {request.post_id}: {e}")
        return ProviderResult.transient(str(e))
    except (PermanentProviderFailure, CapabilityNotSupported) as e:
        logger.warning(f"classify: {name} permanent failure for post {request.post_id}: {e}")
        return ProviderResult.permanent(str(e))
    except Exception as e:
        logger.exception(f"classify: {name} raised unexpectedly for post {request.post_id}")
        return ProviderResult.transient(f"{type(e).__name__}: {e}")


def fan_out(
    providers: Dict[ProviderKind, BaseProvider],
    request: ClassificationRequest,
    timeout: Optional[float] = None,
) -> Dict[ProviderKind, ProviderResult]:
    """Call every provider concurrently and wait for all of them.

    A provider still running when ``timeout`` expires is recorded as a
    transient failure.
    """
    if not providers:
        return {}
    timeout = settings.PROVIDER_JOIN_TIMEOUT_SECONDS if timeout is None else timeout

    executor = ThreadPoolExecutor(max_workers=len(providers), thread_name_prefix="classify")
    try:
        futures = {kind: executor.submit(_call_provider, p, request) for kind, p in providers.items()}
        done, _ = wait(futures.values(), timeout=timeout)
        results: Dict[ProviderKind, ProviderResult] = {}
        for kind, future in futures.items():
            if future in done:
                results[kind] = future.result()
            else:
                future.cancel()
                logger.warning(f"classify: {kind.value} timed out after {timeout}s for post {request.post_id}")
                results[kind] = ProviderResult.transient(f"timed out after {timeout}s")
        return results
    finally:
        executor.shutdown(wait=False)


# ── Driver ────────────────────────────────────────────────────────────────────

def _existing(db: Session, post_id: int) -> Optional[Classification]:
    return db.query(Classification).filter(Classification.post_id == post_id).first()


def clear_crash_remnant(db: Session, post_id: int) -> bool:
    """Delete an unfinished classification row. Returns True if the post is already classified."""
    existing = _existing(db, post_id)
    if existing is None:
        return False
    if existing.is_complete:
        return True
    logger.info(f"classify: removing unfinished classification {existing.id} for post {post_id}")
    db.delete(existing)
    db.commit()
    return False


def _persist(db: Session, scan_id: int, post_id: int, classification: Classification) -> str:
    db.add(classification)
    try:
        db.flush()
        increment(db, scan_id, posts_classified=1)
        db.commit()
    except IntegrityError:
        db.rollback()
        row = _existing(db, post_id)
        if row is not None and row.is_complete:
            logger.info(f"classify: post {post_id} was classified concurrently, skipping increment")
            return ALREADY_CLASSIFIED
        raise ClassificationFailed(post_id, "could not store classification")
    return CLASSIFIED


def classify_post(
    db: Session,
    scan_id: int,
    post_id: int,
    providers: Dict[ProviderKind, BaseProvider],
    max_attempts: Optional[int] = None,
) -> str:
    max_attempts = max_attempts or settings.RETRY_MAX_ATTEMPTS

    if clear_crash_remnant(db, post_id):
        return ALREADY_CLASSIFIED

    for attempt in range(1, max_attempts + 1):
        db.expire_all()
        post = db.query(Post).filter(Post.id == post_id).first()
        if post is None:
            raise ClassificationFailed(post_id, "post disappeared")

        try:
            request = ClassificationRequest.from_post(post, settings.CLASSIFY_COMMENT_LIMIT)
            results = fan_out(providers, request)
            classification = Classification(post_id=post_id)
            outcome = resolve(classification, results, attempt, max_attempts)
        except SoftTimeLimitExceeded:
            raise
        except Exception as e:
            raise ClassificationFailed(post_id, f"attempt {attempt} crashed: {type(e).__name__}") from e

        if isinstance(outcome, Finalized):
            status = _persist(db, scan_id, post_id, classification)
            logger.info(
                f"classify: scan {scan_id} post {post_id} -> {outcome.decision.value} "
                f"({outcome.score:.2f}) on attempt {attempt}"
            )
            return status

        if isinstance(outcome, RetryRequired):
            delay = backoff_seconds(attempt)
            logger.info(f"classify: scan {scan_id} post {post_id} retry in {delay}s ({outcome.reason})")
            time.sleep(delay)
            continue

        if isinstance(outcome, Failed):
            raise ClassificationFailed(post_id, outcome.reason)

    raise ClassificationFailed(post_id, f"no decision after {max_attempts} attempts")
