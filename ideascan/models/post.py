"""Post and Comment database models"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Float, ForeignKey
from sqlalchemy.orm import relationship

from ideascan.database import Base
from ideascan.utils.clock import utcnow


class Post(Base):
    """A Reddit post fetched during a scan; the unit of classification/extraction work."""
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    subreddit_id = Column(Integer, ForeignKey("subreddits.id", ondelete="CASCADE"), nullable=False, index=True)
    scan_id = Column(Integer, ForeignKey("scans.id", ondelete="CASCADE"), nullable=False, index=True)
    reddit_id = Column(String(20), unique=True, index=True, nullable=False)
    title = Column(String(500), nullable=False)
    body = Column(Text, nullable=True)
    author = Column(String(100), nullable=True)
    permalink = Column(String(500), nullable=True)
    upvotes = Column(Integer, default=0, nullable=False)
    num_comments = Column(Integer, default=0, nullable=False)
    upvote_ratio = Column(Float, nullable=True)
    reddit_created_at = Column(DateTime, nullable=True)
    fetched_at = Column(DateTime, default=utcnow)
    extracted_at = Column(DateTime, nullable=True, index=True)

    scan = relationship("Scan", back_populates="posts")
    subreddit = relationship("Subreddit")
    comments = relationship("Comment", back_populates="post", cascade="all, delete-orphan")
    classification = relationship("Classification", back_populates="post", uselist=False)
    ideas = relationship("Idea", back_populates="post")

    @property
    def display_author(self) -> str:
        return self.author or "[deleted]"

    @property
    def is_classified(self) -> bool:
        return self.classification is not None and self.classification.classified_at is not None

    @property
    def is_extracted(self) -> bool:
        return self.extracted_at is not None

    def top_comments(self, limit: int):
        return sorted(self.comments, key=lambda c: c.upvotes or 0, reverse=True)[:limit]


class Comment(Base):
    """A comment on a fetched post"""
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    reddit_id = Column(String(20), nullable=True)
    author = Column(String(100), nullable=True)
    body = Column(Text, nullable=False, default="")
    upvotes = Column(Integer, default=0, nullable=False)

    post = relationship("Post", back_populates="comments")

    @property
    def display_author(self) -> str:
        return self.author or "[deleted]"
