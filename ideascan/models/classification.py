"""Classification database model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Float, Boolean, ForeignKey
from sqlalchemy.orm import relationship
import enum

from ideascan.database import Base
from ideascan.utils.clock import utcnow


class ProviderKind(str, enum.Enum):
    """Classification providers that have a column group on ``classifications``.

    The value is the configuration key; ``column_prefix`` is the fixed storage
    discriminator. Adding a provider means adding a member, a prefix and the
    matching columns below.
    """
    ANTHROPIC = "anthropic"
    OPENAI = "openai"

    @property
    def column_prefix(self) -> str:
        return _COLUMN_PREFIXES[self]


_COLUMN_PREFIXES = {
    ProviderKind.ANTHROPIC: "haiku",
    ProviderKind.OPENAI: "gpt",
}


class Decision(str, enum.Enum):
    PENDING = "pending"
    KEEP = "keep"
    BORDERLINE = "borderline"
    DISCARD = "discard"


PASSED_DECISIONS = (Decision.KEEP.value, Decision.BORDERLINE.value)


class Classification(Base):
    """Dual-provider classification of one post. Exactly one row per post."""
    __tablename__ = "classifications"

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), unique=True, nullable=False)

    haiku_verdict = Column(String(10), nullable=True)
    haiku_confidence = Column(Float, nullable=True)
    haiku_category = Column(String(50), nullable=True)
    haiku_reasoning = Column(Text, nullable=True)
    haiku_completed = Column(Boolean, default=False, nullable=False)

    gpt_verdict = Column(String(10), nullable=True)
    gpt_confidence = Column(Float, nullable=True)
    gpt_category = Column(String(50), nullable=True)
    gpt_reasoning = Column(Text, nullable=True)
    gpt_completed = Column(Boolean, default=False, nullable=False)

    combined_score = Column(Float, nullable=True)
    final_decision = Column(String(20), default=Decision.PENDING.value, nullable=False, index=True)

    # NULL means the row is a crash remnant / still being written.
    classified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    post = relationship("Post", back_populates="classification")

    @property
    def is_complete(self) -> bool:
        return self.classified_at is not None

    @property
    def passed(self) -> bool:
        return self.final_decision in PASSED_DECISIONS

    def set_provider_result(self, kind: ProviderKind, verdict: str, confidence: float,
                            category: str, reasoning: str, completed: bool) -> None:
        prefix = kind.column_prefix
        setattr(self, f"{prefix}_verdict", verdict)
        setattr(self, f"{prefix}_confidence", confidence)
        setattr(self, f"{prefix}_category", category)
        setattr(self, f"{prefix}_reasoning", reasoning)
        setattr(self, f"{prefix}_completed", completed)

    def provider_verdict(self, kind: ProviderKind):
        return getattr(self, f"{kind.column_prefix}_verdict")

    def provider_confidence(self, kind: ProviderKind) -> float:
        return getattr(self, f"{kind.column_prefix}_confidence") or 0.0

    def provider_completed(self, kind: ProviderKind) -> bool:
        return bool(getattr(self, f"{kind.column_prefix}_completed"))

    def finalize(self, decision: Decision, score: float) -> None:
        self.final_decision = decision.value
        self.combined_score = score
        self.classified_at = utcnow()

    def apply_discard(self, category: str, reasoning: str) -> None:
        """Turn this row into a synthetic give-up record for every provider column group."""
        for kind in ProviderKind:
            self.set_provider_result(kind, "skip", 0.0, category, reasoning, False)
        self.finalize(Decision.DISCARD, 0.0)
