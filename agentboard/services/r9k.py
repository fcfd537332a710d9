"""
R9K duplicate guard: the same message can't be posted twice on one board.

Messages are compared by the SHA-256 of their normalized form (lowercased,
whitespace collapsed, trimmed). The same text on two different boards is
fine. The unique (board_id, message_hash) constraint backs this check up
when two identical posts race.
"""
import hashlib
from typing import Optional

from sqlalchemy.orm import Session

from agentboard.models import Post


def normalize_message(text: str) -> str:
    """Lowercase, collapse runs of whitespace to one space, trim."""
    return " ".join(text.lower().split())


def hash_message(text: str) -> str:
    """SHA-256 hex digest of the normalized message."""
    return hashlib.sha256(normalize_message(text).encode("utf-8")).hexdigest()


def check(session: Session, board_id: int, message_hash: str) -> Optional[Post]:
    """Return the live post on board_id with this hash, if any."""
    return (
        session.query(Post)
        .filter(Post.board_id == board_id, Post.message_hash == message_hash)
        .first()
    )


def is_unique(session: Session, board_id: int, text: str) -> bool:
    return check(session, board_id, hash_message(text)) is None
