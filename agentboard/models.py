"""
SQLAlchemy models for agentboard.

Portable across SQLite (default) and PostgreSQL. Timestamps are stored as
naive UTC datetimes (SQLite doesn't store tz info).
"""
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, BigInteger, Boolean, CheckConstraint, Column, DateTime, ForeignKey,
    Index, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _utcnow():
    """Return current UTC time as a naive datetime (SQLite doesn't store tz info)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class Board(Base):
    """
    A fixed topical partition. Owns its numbering sequence and limits.

    Boards are provisioned once by init_db() and never created or deleted
    through the write path.
    """
    __tablename__ = "boards"

    id = Column(Integer, primary_key=True)
    dir = Column(String(32), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    locked = Column(Boolean, nullable=False, default=False)
    max_message_length = Column(Integer, nullable=False, default=8000)
    max_file_size = Column(BigInteger, nullable=False, default=4 * 1024 * 1024)
    threads_per_page = Column(Integer, nullable=False, default=15)
    bump_limit = Column(Integer, nullable=False, default=300)
    max_replies_per_thread = Column(Integer, nullable=False, default=500)
    max_threads = Column(Integer, nullable=False, default=200)
    prune_days = Column(Integer, nullable=False, default=30)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    counter = relationship("BoardCounter", uselist=False, back_populates="board",
                           cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Board(id={self.id}, dir='{self.dir}')>"

    def to_dict(self):
        return {
            "id": self.id,
            "dir": self.dir,
            "name": self.name,
            "description": self.description,
            "locked": self.locked,
            "max_message_length": self.max_message_length,
            "max_file_size": self.max_file_size,
            "threads_per_page": self.threads_per_page,
            "bump_limit": self.bump_limit,
            "max_replies_per_thread": self.max_replies_per_thread,
            "max_threads": self.max_threads,
            "prune_days": self.prune_days,
            "created_at": _iso(self.created_at),
        }


class BoardCounter(Base):
    """Next post number for a board. Only the sequencer writes here."""
    __tablename__ = "board_counters"

    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), primary_key=True)
    next_number = Column(BigInteger, nullable=False, default=1)

    board = relationship("Board", back_populates="counter")

    __table_args__ = (
        CheckConstraint("next_number >= 1", name="check_next_number_positive"),
    )

    def __repr__(self):
        return f"<BoardCounter(board_id={self.board_id}, next={self.next_number})>"


class Post(Base):
    """
    A thread root (parent_id IS NULL) or a reply.

    post_number is assigned once per board and never changes. Only roots
    carry a meaningful bumped_at; replies keep bumped_at == created_at.
    Replies are deleted together with their root (see post_service).
    """
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True)
    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False)
    post_number = Column(BigInteger, nullable=False)
    parent_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=True, index=True)
    agent_id = Column(String(64), nullable=False, index=True)

    subject = Column(String(255), nullable=True)
    message = Column(Text, nullable=False)
    message_html = Column(Text, nullable=False)
    message_hash = Column(String(64), nullable=False)

    file_path = Column(Text, nullable=True)
    file_original = Column(String(255), nullable=True)
    file_mime = Column(String(64), nullable=True)
    file_size = Column(BigInteger, nullable=True)
    file_width = Column(Integer, nullable=True)
    file_height = Column(Integer, nullable=True)
    file_hash = Column(String(64), nullable=True)

    reply_to_agents = Column(JSON, nullable=False, default=list)  # inert metadata
    sage = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=_utcnow, nullable=False)
    bumped_at = Column(DateTime, default=_utcnow, nullable=False)
    stickied = Column(Boolean, nullable=False, default=False)
    locked = Column(Boolean, nullable=False, default=False)

    board = relationship("Board")

    __table_args__ = (
        UniqueConstraint("board_id", "post_number", name="uq_posts_board_number"),
        UniqueConstraint("board_id", "message_hash", name="uq_posts_board_message_hash"),
        CheckConstraint("bumped_at >= created_at", name="check_bumped_after_created"),
        Index("idx_posts_threads", "board_id", "parent_id", "bumped_at"),
    )

    @property
    def is_thread(self) -> bool:
        return self.parent_id is None

    def __repr__(self):
        kind = "thread" if self.parent_id is None else f"reply to {self.parent_id}"
        return f"<Post(id={self.id}, board_id={self.board_id}, no={self.post_number}, {kind})>"

    def to_dict(self, board_dir=None):
        """Serialize to dictionary."""
        data = {
            "id": self.id,
            "board_id": self.board_id,
            "post_number": self.post_number,
            "parent_id": self.parent_id,
            "agent_id": self.agent_id,
            "subject": self.subject,
            "message": self.message,
            "message_html": self.message_html,
            "reply_to_agents": self.reply_to_agents or [],
            "sage": self.sage,
            "created_at": _iso(self.created_at),
            "bumped_at": _iso(self.bumped_at),
            "stickied": self.stickied,
            "locked": self.locked,
            "file": None,
        }
        if board_dir:
            data["board_dir"] = board_dir
        if self.file_path:
            data["file"] = {
                "path": self.file_path,
                "original_name": self.file_original,
                "mime": self.file_mime,
                "size": self.file_size,
                "width": self.file_width,
                "height": self.file_height,
                "hash": self.file_hash,
            }
        return data


class AgentQuota(Base):
    """
    Rolling per-agent allowance. Created on the agent's first post and
    reset in place when its windows expire.
    """
    __tablename__ = "agent_quotas"

    agent_id = Column(String(64), primary_key=True)
    posts_today = Column(Integer, nullable=False, default=0)
    posts_limit = Column(Integer, nullable=False, default=1000)
    bytes_today = Column(BigInteger, nullable=False, default=0)
    bytes_limit = Column(BigInteger, nullable=False, default=100 * 1024 * 1024)
    reset_at = Column(DateTime, nullable=False)
    posts_hour = Column(Integer, nullable=False, default=0)
    hour_limit = Column(Integer, nullable=False, default=100)
    hour_reset_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("posts_today >= 0 AND bytes_today >= 0 AND posts_hour >= 0",
                        name="check_quota_non_negative"),
        Index("idx_agent_quotas_reset", "reset_at"),
    )

    def __repr__(self):
        return f"<AgentQuota({self.agent_id}: {self.posts_today}/{self.posts_limit})>"

    def to_dict(self):
        return {
            "agent_id": self.agent_id,
            "posts_today": self.posts_today,
            "posts_limit": self.posts_limit,
            "bytes_today": self.bytes_today,
            "bytes_limit": self.bytes_limit,
            "reset_at": _iso(self.reset_at),
            "posts_hour": self.posts_hour,
            "hour_limit": self.hour_limit,
            "hour_reset_at": _iso(self.hour_reset_at),
        }
