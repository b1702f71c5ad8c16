"""
Tests for the classification chunk processor and the discard fallback.

Run with:
    pytest tests/test_classification_chunk.py -v
"""
import pytest
from unittest.mock import patch

from conftest import add_classification, keep, permanent, post_ids, skip, transient
from ideascan.core.classification_chunk import process_classification_chunk
from ideascan.core.fallback import (
    CATEGORY_CHUNK_FAILED,
    discard_fallback,
    discard_remaining,
    mark_extracted,
)
from ideascan.core.retry_driver import ClassificationFailed
from ideascan.models import Classification, Post, ProviderKind, ScanStatus

A, O = ProviderKind.ANTHROPIC, ProviderKind.OPENAI


def decisions(db, ids):
    rows = db.query(Classification).filter(Classification.post_id.in_(ids)).all()
    return {row.post_id: row.final_decision for row in rows}


# ─────────────────────────────────────────────────────────────────────────────
# CHUNK PROCESSOR
# ─────────────────────────────────────────────────────────────────────────────

class TestProcessChunk:
    def test_classifies_every_post_once(self, db, make_scan, providers, no_sleep):
        scan = make_scan(posts=3)
        ids = post_ids(db, scan)
        built = providers(anthropic=[keep(0.95)], openai=[keep(0.9)])

        report = process_classification_chunk(db, scan.id, ids, built)

        assert report.processed == ids
        assert set(decisions(db, ids).values()) == {"keep"}
        db.refresh(scan)
        assert scan.posts_classified == 3

    def test_redelivery_is_idempotent(self, db, make_scan, providers, no_sleep):
        scan = make_scan(posts=2)
        ids = post_ids(db, scan)
        built = providers(anthropic=[keep(0.95)], openai=[keep(0.9)])

        process_classification_chunk(db, scan.id, ids, built)
        report = process_classification_chunk(db, scan.id, ids, built)

        assert report.processed == []
        assert report.skipped == ids
        assert built[A].calls == 2
        db.refresh(scan)
        assert scan.posts_classified == 2

    def test_missing_post_is_skipped(self, db, make_scan, providers, no_sleep):
        scan = make_scan(posts=1)
        ids = post_ids(db, scan)

        report = process_classification_chunk(db, scan.id, [9999] + ids, providers(anthropic=[keep()], openai=[keep()]))

        assert report.missing == [9999]
        assert report.processed == ids

    def test_stops_when_scan_leaves_stage(self, db, make_scan, providers, no_sleep):
        scan = make_scan(status=ScanStatus.FAILED, posts=2)
        ids = post_ids(db, scan)
        built = providers(anthropic=[keep()], openai=[keep()])

        report = process_classification_chunk(db, scan.id, ids, built)

        assert report.aborted is True
        assert built[A].calls == 0
        assert decisions(db, ids) == {}

    def test_stops_mid_chunk_after_cancellation(self, db, make_scan, providers, no_sleep):
        scan = make_scan(posts=3)
        ids = post_ids(db, scan)
        built = providers(anthropic=[keep(0.95)], openai=[keep(0.9)])
        answer = built[A].classify

        def cancel_after_first(request):
            scan.status = ScanStatus.FAILED
            db.commit()
            return answer(request)

        built[A].classify = cancel_after_first
        report = process_classification_chunk(db, scan.id, ids, built)

        assert report.processed == ids[:1]
        assert report.aborted is True

    def test_driver_failure_writes_discard_fallback(self, db, make_scan, providers, no_sleep):
        scan = make_scan(posts=2)
        ids = post_ids(db, scan)

        with patch("ideascan.core.classification_chunk.classify_post") as driver:
            driver.side_effect = ClassificationFailed(ids[0], "boom")
            report = process_classification_chunk(db, scan.id, ids[:1], providers(anthropic=[keep()]))

        assert report.fallbacks == ids[:1]
        row = db.query(Classification).filter(Classification.post_id == ids[0]).one()
        assert row.final_decision == "discard"
        assert row.haiku_category == "classification-failed"
        assert row.gpt_completed is False
        db.refresh(scan)
        assert scan.posts_classified == 1

    def test_both_permanent_failures_discard_without_retry(self, db, make_scan, providers, no_sleep):
        scan = make_scan(posts=1)
        ids = post_ids(db, scan)
        built = providers(anthropic=[permanent(A)], openai=[permanent(O)])

        report = process_classification_chunk(db, scan.id, ids, built)

        assert report.processed == ids
        assert decisions(db, ids) == {ids[0]: "discard"}
        assert built[A].calls == 1

    def test_mixed_outcomes(self, db, make_scan, providers, no_sleep):
        scan = make_scan(posts=2)
        ids = post_ids(db, scan)
        add_classification(db, ids[0], decision="borderline")
        built = providers(anthropic=[skip(0.9)], openai=[transient(O), skip(0.85)])

        report = process_classification_chunk(db, scan.id, ids, built)

        assert report.skipped == ids[:1]
        assert report.processed == ids[1:]
        assert decisions(db, ids) == {ids[0]: "borderline", ids[1]: "discard"}
        db.refresh(scan)
        assert scan.posts_classified == 1

    def test_closes_providers_it_built(self, db, make_scan, providers, no_sleep):
        scan = make_scan(posts=1)
        built = providers(anthropic=[keep()], openai=[keep()])

        with patch("ideascan.core.classification_chunk.factory.classification_providers", return_value=built):
            process_classification_chunk(db, scan.id, post_ids(db, scan))

        assert built[A].closed and built[O].closed

    def test_closes_providers_when_chunk_raises(self, db, make_scan, providers, no_sleep):
        scan = make_scan(posts=1)
        built = providers(anthropic=[keep()], openai=[keep()])

        with patch("ideascan.core.classification_chunk.factory.classification_providers", return_value=built), \
                patch("ideascan.core.classification_chunk.classify_post", side_effect=RuntimeError("db gone")):
            with pytest.raises(RuntimeError):
                process_classification_chunk(db, scan.id, post_ids(db, scan))

        assert built[A].closed and built[O].closed

    def test_leaves_caller_providers_open(self, db, make_scan, providers, no_sleep):
        scan = make_scan(posts=1)
        built = providers(anthropic=[keep()], openai=[keep()])

        process_classification_chunk(db, scan.id, post_ids(db, scan), built)

        assert not built[A].closed


# ─────────────────────────────────────────────────────────────────────────────
# FALLBACK
# ─────────────────────────────────────────────────────────────────────────────

class TestDiscardFallback:
    def test_inserts_discard_and_counts(self, db, make_scan):
        scan = make_scan(posts=1)
        pid = post_ids(db, scan)[0]

        assert discard_fallback(db, scan.id, pid) is True

        row = db.query(Classification).filter(Classification.post_id == pid).one()
        assert row.final_decision == "discard"
        assert row.combined_score == 0.0
        assert row.haiku_verdict == "skip" and row.gpt_verdict == "skip"
        db.refresh(scan)
        assert scan.posts_classified == 1

    def test_never_overwrites_completed_record(self, db, make_scan):
        scan = make_scan(posts=1)
        pid = post_ids(db, scan)[0]
        add_classification(db, pid, decision="keep")

        assert discard_fallback(db, scan.id, pid) is False
        assert decisions(db, [pid]) == {pid: "keep"}
        db.refresh(scan)
        assert scan.posts_classified == 0

    def test_overwrites_crash_remnant(self, db, make_scan):
        scan = make_scan(posts=1)
        pid = post_ids(db, scan)[0]
        add_classification(db, pid, complete=False)

        assert discard_fallback(db, scan.id, pid) is True
        assert db.query(Classification).filter(Classification.post_id == pid).count() == 1
        assert decisions(db, [pid]) == {pid: "discard"}

    def test_repeated_calls_count_once(self, db, make_scan):
        scan = make_scan(posts=1)
        pid = post_ids(db, scan)[0]

        assert discard_fallback(db, scan.id, pid) is True
        assert discard_fallback(db, scan.id, pid) is False
        db.refresh(scan)
        assert scan.posts_classified == 1

    def test_missing_post(self, db, make_scan):
        scan = make_scan(posts=0)
        assert discard_fallback(db, scan.id, 4242) is False

    def test_discard_remaining_only_touches_unfinished(self, db, make_scan):
        scan = make_scan(posts=3)
        ids = post_ids(db, scan)
        add_classification(db, ids[1])

        assert discard_remaining(db, scan.id, ids) == 2

        row = db.query(Classification).filter(Classification.post_id == ids[0]).one()
        assert row.haiku_category == CATEGORY_CHUNK_FAILED
        assert decisions(db, ids)[ids[1]] == "keep"
        db.refresh(scan)
        assert scan.posts_classified == 2

    def test_mark_extracted_is_idempotent(self, db, make_scan):
        scan = make_scan(status=ScanStatus.EXTRACTING, posts=1)
        pid = post_ids(db, scan)[0]

        assert mark_extracted(db, scan.id, pid) is True
        assert mark_extracted(db, scan.id, pid) is False
        assert db.get(Post, pid).extracted_at is not None
        db.refresh(scan)
        assert scan.posts_extracted == 1

    def test_cancelled_scan_gets_no_discard(self, db, make_scan):
        scan = make_scan(status=ScanStatus.FAILED, posts=2)
        ids = post_ids(db, scan)

        assert discard_remaining(db, scan.id, ids) == 0

        assert db.query(Classification).count() == 0
        db.refresh(scan)
        assert scan.posts_classified == 0

    def test_mark_extracted_skips_scan_outside_extraction(self, db, make_scan):
        scan = make_scan(status=ScanStatus.FAILED, posts=1)
        pid = post_ids(db, scan)[0]

        assert mark_extracted(db, scan.id, pid) is False
        assert db.get(Post, pid).extracted_at is None
