"""
Classify posts synchronously, outside the queue, for debugging.

Usage:
    python scripts/scan_classify.py --scan 12 --limit 5
    python scripts/scan_classify.py --post 345 --provider openai --dry-run

Without --dry-run results are stored exactly as a chunk job would store them
(same retry driver, same discard fallback). With --dry-run every provider is
asked once and the resolved decision is printed but never saved.
"""
import argparse
import logging
import sys
import time
from collections import Counter
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ideascan.config import settings
from ideascan.core.batching import posts_needing_classification
from ideascan.core.consensus import Finalized, resolve
from ideascan.core.fallback import discard_fallback
from ideascan.core.retry_driver import ALREADY_CLASSIFIED, ClassificationFailed, classify_post, fan_out
from ideascan.database import SessionLocal
from ideascan.models.classification import Classification, ProviderKind
from ideascan.models.post import Post
from ideascan.models.scan import Scan
from ideascan.services.llm import factory
from ideascan.services.llm.base import BaseProvider
from ideascan.services.llm.dtos import ClassificationRequest

logger = logging.getLogger(__name__)

PROVIDER_CHOICES = ["both"] + [kind.value for kind in ProviderKind]


class SelectionError(ValueError):
    pass


def select_posts(db: Session, scan_id: Optional[int] = None, post_id: Optional[int] = None,
                 limit: Optional[int] = None) -> List[Post]:
    """A single post (classified or not), or a scan's unclassified posts in id order"""
    if post_id is not None:
        post = db.query(Post).filter(Post.id == post_id).first()
        if post is None:
            raise SelectionError(f"Post ID {post_id} not found")
        return [post]

    if db.query(Scan.id).filter(Scan.id == scan_id).first() is None:
        raise SelectionError(f"Scan ID {scan_id} not found")
    ids = posts_needing_classification(db, scan_id)
    if limit:
        ids = ids[:limit]
    return db.query(Post).filter(Post.id.in_(ids)).order_by(Post.id).all() if ids else []


def build_providers(choice: str) -> Dict[ProviderKind, BaseProvider]:
    if choice == "both":
        return factory.classification_providers()
    return factory.classification_providers([choice])


def preview(post: Post, providers: Dict[ProviderKind, BaseProvider]) -> Optional[Classification]:
    """Ask every provider once and resolve without retrying; the row is never added to a session"""
    request = ClassificationRequest.from_post(post, settings.CLASSIFY_COMMENT_LIMIT)
    classification = Classification(post_id=post.id)
    outcome = resolve(classification, fan_out(providers, request), attempt=1, max_attempts=1)
    return classification if isinstance(outcome, Finalized) else None


def _print_result(post: Post, classification: Optional[Classification]) -> None:
    title = post.title if len(post.title) <= 60 else post.title[:60] + "..."
    if classification is None:
        print(f"  ✗ {title}: no decision")
        return
    print(f"  {title}")
    print(f"    final: {classification.final_decision} (score {classification.combined_score * 100:.1f}%)")


def classify(
    db: Session,
    providers: Dict[ProviderKind, BaseProvider],
    scan_id: Optional[int] = None,
    post_id: Optional[int] = None,
    limit: Optional[int] = None,
    dry_run: bool = False,
) -> Counter:
    """Classify the selected posts. Returns counts per final decision plus ``already`` and ``errors``."""
    summary = Counter()

    for post in select_posts(db, scan_id, post_id, limit):
        if post.is_classified:
            print(f"  {post.title[:60]}: already classified")
            summary["already"] += 1
            continue

        if dry_run:
            classification = preview(post, providers)
            _print_result(post, classification)
            summary[classification.final_decision if classification else "errors"] += 1
            continue

        try:
            status = classify_post(db, post.scan_id, post.id, providers)
        except ClassificationFailed as e:
            logger.error(f"scan_classify: {e}, writing discard fallback")
            db.rollback()
            summary["discard" if discard_fallback(db, post.scan_id, post.id) else "errors"] += 1
            continue

        if status == ALREADY_CLASSIFIED:
            summary["already"] += 1
            continue
        db.expire_all()
        classification = db.query(Classification).filter(Classification.post_id == post.id).first()
        _print_result(post, classification)
        summary[classification.final_decision] += 1

    return summary


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Classify posts via LLM synchronously for debugging")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--scan", type=int, help="Scan ID to process posts from")
    target.add_argument("--post", type=int, help="Single post ID to classify")
    parser.add_argument("--limit", type=int, help="Max posts to classify")
    parser.add_argument("--provider", choices=PROVIDER_CHOICES, default="both", help="Provider(s) to use")
    parser.add_argument("--dry-run", action="store_true", help="Run the LLMs but do not save results")
    args = parser.parse_args(argv)
    if args.limit is not None and args.limit <= 0:
        parser.error("--limit must be a positive integer")
    return args


def main(argv=None) -> int:
    args = parse_args(argv)
    started = time.monotonic()

    providers = build_providers(args.provider)
    db = SessionLocal()
    try:
        summary = classify(db, providers, args.scan, args.post, args.limit, args.dry_run)
    except SelectionError as e:
        print(f"Error: {e}")
        return 1
    finally:
        db.close()
        for provider in providers.values():
            provider.close()

    prefix = "[DRY-RUN] " if args.dry_run else ""
    print(f"\n{prefix}Classification summary")
    for key in ("keep", "borderline", "discard", "already", "errors"):
        print(f"  {key:<12}{summary[key]}")
    print(f"  {'elapsed':<12}{time.monotonic() - started:.2f}s")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL))
    sys.exit(main())
