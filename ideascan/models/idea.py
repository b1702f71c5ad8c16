"""Idea database model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship

from ideascan.database import Base
from ideascan.utils.clock import utcnow


class Idea(Base):
    """A business idea extracted from a post that passed classification"""
    __tablename__ = "ideas"

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    scan_id = Column(Integer, ForeignKey("scans.id", ondelete="CASCADE"), nullable=False, index=True)

    idea_title = Column(String(255), nullable=False)
    problem_statement = Column(Text, nullable=False)
    proposed_solution = Column(Text, nullable=True)
    target_audience = Column(Text, nullable=True)
    why_small_team_viable = Column(Text, nullable=True)
    demand_evidence = Column(Text, nullable=True)
    monetization_model = Column(Text, nullable=True)
    branding_suggestions = Column(JSON, nullable=True)
    marketing_channels = Column(JSON, nullable=True)
    existing_competitors = Column(JSON, nullable=True)
    scores = Column(JSON, nullable=True)
    score_monetization = Column(Integer, nullable=True)
    score_saturation = Column(Integer, nullable=True)
    score_complexity = Column(Integer, nullable=True)
    score_demand = Column(Integer, nullable=True)
    score_overall = Column(Integer, nullable=True, index=True)
    source_quote = Column(Text, nullable=True)

    # keep / borderline, copied from the post's classification at extraction time
    classification_status = Column(String(20), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    post = relationship("Post", back_populates="ideas")
