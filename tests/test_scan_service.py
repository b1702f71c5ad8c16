"""
Tests for the scan lifecycle service and fetch ingestion.

Run with:
    pytest tests/test_scan_service.py -v
"""
from datetime import datetime, timedelta

import pytest
from unittest.mock import patch

from ideascan.models import Comment, Post, Scan, ScanStatus, ScanType
from ideascan.services import ingest, scan_service
from ideascan.services.scan_service import ScanStateError
from ideascan.utils.clock import utcnow


@pytest.fixture
def queued():
    with patch("ideascan.tasks.scan_tasks.start_scan.delay") as delay:
        yield delay


# ─────────────────────────────────────────────────────────────────────────────
# START
# ─────────────────────────────────────────────────────────────────────────────

class TestStartScan:
    def test_creates_pending_initial_scan(self, db, queued):
        scan = scan_service.start_scan(db, "r/SaaS")

        assert scan.status == ScanStatus.PENDING
        assert scan.scan_type == ScanType.INITIAL
        assert scan.subreddit.name == "SaaS"
        assert scan.date_to - scan.date_from == timedelta(weeks=1)
        queued.assert_called_once_with(scan.id)

    def test_returns_existing_in_progress_scan(self, db, queued):
        first = scan_service.start_scan(db, "SaaS")
        second = scan_service.start_scan(db, "/r/SaaS/")

        assert second.id == first.id
        assert db.query(Scan).count() == 1
        assert queued.call_count == 1

    def test_rescan_after_completed_scan_uses_longer_window(self, db, make_scan, queued):
        make_scan(status=ScanStatus.COMPLETED)

        scan = scan_service.start_scan(db, "SaaS")

        assert scan.scan_type == ScanType.RESCAN
        assert scan.date_to - scan.date_from == timedelta(weeks=2)

    def test_explicit_window_is_kept(self, db, queued):
        date_from, date_to = datetime(2025, 1, 1), datetime(2025, 1, 8)
        scan = scan_service.start_scan(db, "SaaS", date_from, date_to)
        assert (scan.date_from, scan.date_to) == (date_from, date_to)

    def test_rejects_inverted_window(self, db, queued):
        with pytest.raises(ValueError):
            scan_service.start_scan(db, "SaaS", datetime(2025, 2, 1), datetime(2025, 1, 1))
        queued.assert_not_called()

    @pytest.mark.parametrize("name", ["", "   ", "r/", "/r/"])
    def test_rejects_empty_name(self, db, queued, name):
        with pytest.raises(ValueError):
            scan_service.start_scan(db, name)


# ─────────────────────────────────────────────────────────────────────────────
# CANCEL / RETRY
# ─────────────────────────────────────────────────────────────────────────────

class TestCancelAndRetry:
    def test_cancel_marks_failed_with_message(self, db, make_scan):
        scan = make_scan(status=ScanStatus.CLASSIFYING)

        scan = scan_service.cancel_scan(db, scan)

        assert scan.status == ScanStatus.FAILED
        assert scan.error_message == "Scan cancelled by user"
        assert scan.completed_at is not None

    def test_cannot_cancel_finished_scan(self, db, make_scan):
        scan = make_scan(status=ScanStatus.COMPLETED)
        with pytest.raises(ScanStateError):
            scan_service.cancel_scan(db, scan)

    def test_retry_starts_new_scan(self, db, make_scan, queued):
        failed = make_scan(status=ScanStatus.FAILED, error_message="Classification failed")

        scan = scan_service.retry_scan(db, failed)

        assert scan.id != failed.id
        assert scan.status == ScanStatus.PENDING
        queued.assert_called_once_with(scan.id)

    def test_retry_requires_failed_scan(self, db, make_scan, queued):
        with pytest.raises(ScanStateError):
            scan_service.retry_scan(db, make_scan(status=ScanStatus.EXTRACTING))


# ─────────────────────────────────────────────────────────────────────────────
# QUERIES
# ─────────────────────────────────────────────────────────────────────────────

class TestQueries:
    def test_status_of_deleted_scan(self, db):
        status = scan_service.get_scan_status(db, 404)
        assert status["status"] == "deleted"
        assert status["is_failed"] is True

    def test_status_snapshot(self, db, make_scan):
        scan = make_scan(status=ScanStatus.CLASSIFYING, posts=4, posts_classified=1)

        status = scan_service.get_scan_status(db, scan.id)

        assert status["status"] == "classifying"
        assert status["progress_percent"] == 50
        assert status["status_message"] == "Classifying posts... (1/4)"
        assert status["subreddit"] == "SaaS"

    def test_history_is_completed_only_newest_first(self, db, make_scan):
        now = utcnow()
        for days in range(12):
            make_scan(status=ScanStatus.COMPLETED, completed_at=now - timedelta(days=days))
        make_scan(status=ScanStatus.FAILED)

        history = scan_service.get_scan_history(db, "SaaS")

        assert len(history) == 10
        assert all(s.status == ScanStatus.COMPLETED for s in history)
        assert history[0].completed_at > history[-1].completed_at

    def test_history_of_unknown_subreddit(self, db):
        assert scan_service.get_scan_history(db, "nope") == []

    def test_active_scans(self, db, make_scan):
        running = make_scan(status=ScanStatus.FETCHING)
        make_scan(status=ScanStatus.COMPLETED, name="other")
        assert [s.id for s in scan_service.get_active_scans(db)] == [running.id]


# ─────────────────────────────────────────────────────────────────────────────
# INGEST
# ─────────────────────────────────────────────────────────────────────────────

def reddit_post(reddit_id, **extra):
    data = {
        "reddit_id": reddit_id,
        "title": f"Post {reddit_id}",
        "body": "body",
        "upvotes": 12,
        "created_utc": 1700000000,
        "comments": [{"reddit_id": f"{reddit_id}-c", "author": "a", "body": "me too", "upvotes": 3}],
    }
    data.update(extra)
    return data


class TestIngest:
    def test_records_posts_with_comments(self, db, make_scan):
        scan = make_scan(status=ScanStatus.FETCHING)

        assert ingest.record_fetched_posts(db, scan.id, [reddit_post("a1"), reddit_post("a2")]) == 2

        post = db.query(Post).filter(Post.reddit_id == "a1").one()
        assert post.reddit_created_at == datetime(2023, 11, 14, 22, 13, 20)
        assert db.query(Comment).filter(Comment.post_id == post.id).count() == 1
        db.refresh(scan)
        assert scan.posts_fetched == 2

    def test_duplicates_are_ignored(self, db, make_scan):
        scan = make_scan(status=ScanStatus.FETCHING)
        ingest.record_fetched_posts(db, scan.id, [reddit_post("a1")])

        assert ingest.record_fetched_posts(db, scan.id, [reddit_post("a1"), reddit_post("b1"), reddit_post("b1")]) == 1
        db.refresh(scan)
        assert scan.posts_fetched == 2

    def test_posts_without_title_are_skipped(self, db, make_scan):
        scan = make_scan(status=ScanStatus.FETCHING)
        assert ingest.record_fetched_posts(db, scan.id, [reddit_post("x", title="")]) == 0

    def test_reports_for_other_stage_are_ignored(self, db, make_scan):
        scan = make_scan(status=ScanStatus.FAILED)
        assert ingest.record_fetched_posts(db, scan.id, [reddit_post("a1")]) == 0
        assert ingest.mark_fetch_job_done(db, scan.id) is False

    def test_unknown_scan_raises(self, db):
        with pytest.raises(ingest.IngestError):
            ingest.register_fetch_jobs(db, 999, 3)

    def test_register_once_then_count_jobs(self, db, make_scan):
        scan = make_scan(status=ScanStatus.FETCHING)

        assert ingest.register_fetch_jobs(db, scan.id, 2) is True
        assert ingest.register_fetch_jobs(db, scan.id, 5) is False
        ingest.mark_fetch_job_done(db, scan.id)

        db.refresh(scan)
        assert (scan.fetch_jobs_total, scan.fetch_jobs_done) == (2, 1)

    def test_negative_total_rejected(self, db, make_scan):
        scan = make_scan(status=ScanStatus.FETCHING)
        with pytest.raises(ingest.IngestError):
            ingest.register_fetch_jobs(db, scan.id, -1)
