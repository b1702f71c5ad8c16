"""
Shared fixtures: an in-memory SQLite database bound to every session the
package opens, row builders, and a scripted classification provider.
"""
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ideascan import models  # noqa: F401
from ideascan.database import Base, SessionLocal
from ideascan.models import Classification, Comment, Decision, Post, ProviderKind, Scan, ScanStatus, Subreddit
from ideascan.services.llm.dtos import ClassificationResponse
from ideascan.services.llm.exceptions import PermanentProviderFailure, TransientProviderFailure
from ideascan.utils.clock import utcnow

# --- TEST DB SETUP ---
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Workers open sessions through SessionLocal / session_scope; point them here too.
SessionLocal.configure(bind=engine)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_scan(db):
    """Build a subreddit + scan with ``posts`` posts (each with two comments)."""
    def _make(status=ScanStatus.CLASSIFYING, posts=0, name="SaaS", **fields):
        subreddit = db.query(Subreddit).filter(Subreddit.name == name).first()
        if subreddit is None:
            subreddit = Subreddit(name=name)
            db.add(subreddit)
            db.flush()
        scan = Scan(
            subreddit_id=subreddit.id,
            status=status,
            date_from=utcnow() - timedelta(weeks=1),
            date_to=utcnow(),
            posts_fetched=posts,
            **fields,
        )
        db.add(scan)
        db.flush()
        for i in range(posts):
            post = Post(
                subreddit_id=subreddit.id,
                scan_id=scan.id,
                reddit_id=f"{name.lower()}-{scan.id}-{i}",
                title=f"Is there a tool for invoicing #{i}?",
                body="I keep doing this by hand every month.",
                author=f"user{i}",
                upvotes=10 + i,
                num_comments=2,
            )
            post.comments = [
                Comment(author="helper", body="Same problem here", upvotes=5),
                Comment(author=None, body="Would pay for this", upvotes=9),
            ]
            db.add(post)
        db.commit()
        db.refresh(scan)
        return scan
    return _make


def post_ids(db, scan):
    return [p.id for p in db.query(Post).filter(Post.scan_id == scan.id).order_by(Post.id)]


def add_classification(db, post_id, decision="keep", complete=True):
    row = Classification(post_id=post_id)
    if complete:
        row.set_provider_result(ProviderKind.ANTHROPIC, "keep", 0.9, "tool-request", "ok", True)
        row.set_provider_result(ProviderKind.OPENAI, "keep", 0.9, "tool-request", "ok", True)
        row.finalize(Decision(decision), 1.0 if decision == "keep" else 0.5)
    db.add(row)
    db.commit()
    return row


def keep(confidence=0.9):
    return ClassificationResponse(verdict="keep", confidence=confidence, category="tool-request", reasoning="r")


def skip(confidence=0.9):
    return ClassificationResponse(verdict="skip", confidence=confidence, category="other", reasoning="r")


class ScriptedProvider:
    """Stand-in classification provider.

    ``script`` items are returned in order (the last one repeats); an item
    that is an exception instance is raised instead.
    """

    def __init__(self, kind, script):
        self.kind = kind
        self.script = list(script)
        self.calls = 0
        self.closed = False

    def provider_name(self):
        return self.kind.value

    def supports_classification(self):
        return True

    def supports_extraction(self):
        return False

    def classify(self, request):
        item = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


def transient(kind):
    return TransientProviderFailure("HTTP 503", provider=kind.value, status_code=503)


def permanent(kind):
    return PermanentProviderFailure("HTTP 400", provider=kind.value, status_code=400)


@pytest.fixture
def providers():
    """Factory: providers(anthropic=[...], openai=[...]) -> {ProviderKind: ScriptedProvider}"""
    def _make(anthropic=None, openai=None):
        built = {}
        if anthropic is not None:
            built[ProviderKind.ANTHROPIC] = ScriptedProvider(ProviderKind.ANTHROPIC, anthropic)
        if openai is not None:
            built[ProviderKind.OPENAI] = ScriptedProvider(ProviderKind.OPENAI, openai)
        return built
    return _make


@pytest.fixture
def no_sleep():
    from unittest.mock import patch
    with patch("time.sleep") as sleep:
        yield sleep
