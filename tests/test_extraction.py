"""
Tests for idea extraction: storing ideas, the per-post retry loop and the
extraction chunk processor.

Run with:
    pytest tests/test_extraction.py -v
"""
import pytest
from unittest.mock import MagicMock, patch

from conftest import add_classification, post_ids
from ideascan.core.extraction_chunk import (
    ExtractionFailed,
    extract_post,
    process_extraction_chunk,
    store_ideas,
)
from ideascan.models import Idea, Post, ScanStatus
from ideascan.services.llm.dtos import ExtractionResponse, IdeaDTO
from ideascan.services.llm.exceptions import PermanentProviderFailure, TransientProviderFailure


def idea(title="InvoiceBot", overall=4):
    return IdeaDTO(
        idea_title=title,
        problem_statement="Invoicing by hand every month",
        scores={"monetization": 4, "market_saturation": 3, "complexity": 2, "demand_evidence": 4, "overall": overall},
    )


def extractor(*script):
    """MagicMock provider whose ``extract`` returns/raises ``script`` items in order"""
    provider = MagicMock()
    provider.provider_name.return_value = "anthropic"
    provider.extract.side_effect = list(script)
    return provider


@pytest.fixture
def extracting(db, make_scan):
    def _make(posts=2, decision="keep"):
        scan = make_scan(status=ScanStatus.EXTRACTING, posts=posts)
        for pid in post_ids(db, scan):
            add_classification(db, pid, decision=decision)
        return scan
    return _make


# ─────────────────────────────────────────────────────────────────────────────
# STORE
# ─────────────────────────────────────────────────────────────────────────────

class TestStoreIdeas:
    def test_stores_ideas_and_counts(self, db, extracting):
        scan = extracting(posts=1)
        pid = post_ids(db, scan)[0]

        count = store_ideas(db, scan.id, pid, ExtractionResponse(ideas=[idea("A"), idea("B", overall=5)]))

        assert count == 2
        stored = db.query(Idea).filter(Idea.post_id == pid).order_by(Idea.id).all()
        assert [i.idea_title for i in stored] == ["A", "B"]
        assert stored[1].score_overall == 5
        assert stored[0].classification_status == "keep"
        assert db.get(Post, pid).extracted_at is not None
        db.refresh(scan)
        assert (scan.posts_extracted, scan.ideas_found) == (1, 2)

    def test_caps_ideas_per_post(self, db, extracting):
        scan = extracting(posts=1)
        pid = post_ids(db, scan)[0]

        count = store_ideas(db, scan.id, pid, ExtractionResponse(ideas=[idea(str(i)) for i in range(8)]))

        assert count == 5
        assert db.query(Idea).count() == 5

    def test_zero_ideas_still_marks_post(self, db, extracting):
        scan = extracting(posts=1)
        pid = post_ids(db, scan)[0]

        assert store_ideas(db, scan.id, pid, ExtractionResponse()) == 0
        db.refresh(scan)
        assert (scan.posts_extracted, scan.ideas_found) == (1, 0)

    def test_already_extracted_is_not_counted_twice(self, db, extracting):
        scan = extracting(posts=1)
        pid = post_ids(db, scan)[0]

        store_ideas(db, scan.id, pid, ExtractionResponse(ideas=[idea()]))
        assert store_ideas(db, scan.id, pid, ExtractionResponse(ideas=[idea()])) is None

        assert db.query(Idea).count() == 1
        db.refresh(scan)
        assert scan.posts_extracted == 1


# ─────────────────────────────────────────────────────────────────────────────
# RETRY LOOP
# ─────────────────────────────────────────────────────────────────────────────

class TestExtractPost:
    def test_retries_transient_failures(self, db, extracting, no_sleep):
        scan = extracting(posts=1)
        pid = post_ids(db, scan)[0]
        provider = extractor(TransientProviderFailure("HTTP 529", provider="anthropic"), ExtractionResponse(ideas=[idea()]))

        assert extract_post(db, scan.id, pid, provider) == 1
        assert provider.extract.call_count == 2
        no_sleep.assert_called_once_with(2)

    def test_gives_up_after_max_attempts(self, db, extracting, no_sleep):
        scan = extracting(posts=1)
        pid = post_ids(db, scan)[0]
        failure = TransientProviderFailure("timeout", provider="anthropic")
        provider = extractor(failure, failure)

        with pytest.raises(ExtractionFailed):
            extract_post(db, scan.id, pid, provider, max_attempts=2)
        assert provider.extract.call_count == 2

    def test_permanent_failure_is_not_retried(self, db, extracting, no_sleep):
        scan = extracting(posts=1)
        pid = post_ids(db, scan)[0]
        provider = extractor(PermanentProviderFailure("HTTP 400", provider="anthropic"))

        with pytest.raises(ExtractionFailed):
            extract_post(db, scan.id, pid, provider)
        assert provider.extract.call_count == 1

    def test_request_carries_classification_status(self, db, extracting, no_sleep):
        scan = extracting(posts=1, decision="borderline")
        pid = post_ids(db, scan)[0]
        provider = extractor(ExtractionResponse())

        extract_post(db, scan.id, pid, provider)

        request = provider.extract.call_args.args[0]
        assert request.classification_status == "borderline"
        assert request.subreddit == "SaaS"


# ─────────────────────────────────────────────────────────────────────────────
# CHUNK PROCESSOR
# ─────────────────────────────────────────────────────────────────────────────

class TestProcessExtractionChunk:
    def test_extracts_passed_posts_only(self, db, make_scan, no_sleep):
        scan = make_scan(status=ScanStatus.EXTRACTING, posts=3)
        ids = post_ids(db, scan)
        add_classification(db, ids[0], decision="keep")
        add_classification(db, ids[1], decision="discard")
        provider = extractor(ExtractionResponse(ideas=[idea()]))

        report = process_extraction_chunk(db, scan.id, ids, provider)

        assert report.processed == ids[:1]
        assert report.skipped == ids[1:]
        assert provider.extract.call_count == 1

    def test_failure_marks_post_extracted_without_ideas(self, db, extracting, no_sleep):
        scan = extracting(posts=1)
        ids = post_ids(db, scan)
        provider = extractor(PermanentProviderFailure("refused", provider="anthropic"))

        report = process_extraction_chunk(db, scan.id, ids, provider)

        assert report.fallbacks == ids
        assert db.get(Post, ids[0]).extracted_at is not None
        assert db.query(Idea).count() == 0
        db.refresh(scan)
        assert scan.posts_extracted == 1

    def test_redelivery_skips_extracted_posts(self, db, extracting, no_sleep):
        scan = extracting(posts=2)
        ids = post_ids(db, scan)
        provider = extractor(ExtractionResponse(ideas=[idea()]), ExtractionResponse(ideas=[idea()]))

        process_extraction_chunk(db, scan.id, ids, provider)
        report = process_extraction_chunk(db, scan.id, ids, provider)

        assert report.skipped == ids
        assert provider.extract.call_count == 2
        db.refresh(scan)
        assert (scan.posts_extracted, scan.ideas_found) == (2, 2)

    def test_abandons_when_scan_not_extracting(self, db, make_scan, no_sleep):
        scan = make_scan(status=ScanStatus.FAILED, posts=1)
        provider = extractor()

        report = process_extraction_chunk(db, scan.id, post_ids(db, scan), provider)

        assert report.aborted is True
        provider.extract.assert_not_called()

    def test_closes_provider_it_built(self, db, extracting, no_sleep):
        scan = extracting(posts=1)
        provider = extractor(ExtractionResponse())

        with patch("ideascan.core.extraction_chunk.factory.extraction_provider", return_value=provider):
            process_extraction_chunk(db, scan.id, post_ids(db, scan))

        provider.close.assert_called_once_with()

    def test_leaves_caller_provider_open(self, db, extracting, no_sleep):
        scan = extracting(posts=1)
        provider = extractor(ExtractionResponse())

        process_extraction_chunk(db, scan.id, post_ids(db, scan), provider)

        provider.close.assert_not_called()
