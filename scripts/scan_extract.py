"""
Extract ideas from classified posts synchronously, outside the queue.

Usage:
    python scripts/scan_extract.py --scan 12
    python scripts/scan_extract.py --post 345 --dry-run

A post whose extraction fails is reported and left unextracted, so the next
run (or the extraction stage) picks it up again.
"""
import argparse
import logging
import sys
import time
from collections import Counter
from typing import List, Optional

from sqlalchemy.orm import Session

from ideascan.config import settings
from ideascan.core.batching import posts_needing_extraction
from ideascan.core.extraction_chunk import ExtractionFailed, extract_post
from ideascan.database import SessionLocal
from ideascan.models.post import Post
from ideascan.models.scan import Scan
from ideascan.services.llm import factory
from ideascan.services.llm.base import BaseProvider
from ideascan.services.llm.dtos import ExtractionRequest
from ideascan.services.llm.exceptions import ProviderError

logger = logging.getLogger(__name__)


class SelectionError(ValueError):
    pass


def select_posts(db: Session, scan_id: Optional[int] = None, post_id: Optional[int] = None,
                 limit: Optional[int] = None) -> List[Post]:
    if post_id is not None:
        post = db.query(Post).filter(Post.id == post_id).first()
        if post is None:
            raise SelectionError(f"Post ID {post_id} not found")
        if not post.is_classified:
            raise SelectionError(f"Post {post_id} has not been classified yet")
        if not post.classification.passed:
            raise SelectionError(
                f"Post {post_id} classification is '{post.classification.final_decision}' "
                f"(not eligible for extraction)"
            )
        return [post]

    if db.query(Scan.id).filter(Scan.id == scan_id).first() is None:
        raise SelectionError(f"Scan ID {scan_id} not found")
    ids = posts_needing_extraction(db, scan_id)
    if limit:
        ids = ids[:limit]
    return db.query(Post).filter(Post.id.in_(ids)).order_by(Post.id).all() if ids else []


def extract(
    db: Session,
    provider: BaseProvider,
    scan_id: Optional[int] = None,
    post_id: Optional[int] = None,
    limit: Optional[int] = None,
    dry_run: bool = False,
) -> Counter:
    """Returns ``processed``, ``ideas``, ``already`` and ``errors`` counts"""
    summary = Counter()

    for post in select_posts(db, scan_id, post_id, limit):
        if post.is_extracted:
            summary["already"] += 1
            continue

        if dry_run:
            try:
                response = provider.extract(ExtractionRequest.from_post(post, settings.EXTRACT_COMMENT_LIMIT))
            except ProviderError as e:
                print(f"  ✗ {post.title[:60]}: {e}")
                summary["errors"] += 1
                continue
            ideas = response.ideas[:settings.MAX_IDEAS_PER_POST]
            for idea in ideas:
                print(f"  {post.title[:60]} -> {idea.idea_title}")
            summary["processed"] += 1
            summary["ideas"] += len(ideas)
            continue

        try:
            count = extract_post(db, post.scan_id, post.id, provider)
        except ExtractionFailed as e:
            logger.error(f"scan_extract: {e}, will retry on next run")
            db.rollback()
            summary["errors"] += 1
            continue

        if count is None:
            summary["already"] += 1
        else:
            print(f"  {post.title[:60]}: {count} ideas")
            summary["processed"] += 1
            summary["ideas"] += count

    return summary


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Extract ideas from classified posts synchronously for debugging")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--scan", type=int, help="Scan ID to process posts from")
    target.add_argument("--post", type=int, help="Single post ID to extract from")
    parser.add_argument("--limit", type=int, help="Max posts to process")
    parser.add_argument("--dry-run", action="store_true", help="Run the LLM but do not save ideas")
    args = parser.parse_args(argv)
    if args.limit is not None and args.limit <= 0:
        parser.error("--limit must be a positive integer")
    return args


def main(argv=None) -> int:
    args = parse_args(argv)
    started = time.monotonic()

    provider = factory.extraction_provider()
    db = SessionLocal()
    try:
        summary = extract(db, provider, args.scan, args.post, args.limit, args.dry_run)
    except SelectionError as e:
        print(f"Error: {e}")
        return 1
    finally:
        db.close()
        provider.close()

    prefix = "[DRY-RUN] " if args.dry_run else ""
    print(f"\n{prefix}Extraction summary")
    for key in ("processed", "ideas", "already", "errors"):
        print(f"  {key:<12}{summary[key]}")
    print(f"  {'elapsed':<12}{time.monotonic() - started:.2f}s")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL))
    sys.exit(main())
