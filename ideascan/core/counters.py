"""Atomic scan counter updates and row locks shared by the pipeline jobs"""
from typing import Optional

from sqlalchemy.orm import Session

from ideascan.models.post import Post
from ideascan.models.scan import Scan


def increment(db: Session, scan_id: int, **amounts: int) -> None:
    """``UPDATE scans SET col = col + n`` for each keyword; no commit.

    >>> increment(db, scan_id, posts_extracted=1, ideas_found=3)
    """
    values = {getattr(Scan, column): getattr(Scan, column) + amount for column, amount in amounts.items() if amount}
    if not values:
        return
    db.query(Scan).filter(Scan.id == scan_id).update(values, synchronize_session=False)


def lock_scan(db: Session, scan_id: int) -> Optional[Scan]:
    return db.query(Scan).filter(Scan.id == scan_id).with_for_update().populate_existing().first()


def lock_post(db: Session, post_id: int) -> Optional[Post]:
    return db.query(Post).filter(Post.id == post_id).with_for_update().populate_existing().first()
