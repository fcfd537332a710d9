"""
Thread bump engine.

Decides, for a reply about to be stored, whether it is accepted and whether
it bumps its thread. Reply counts are the number of replies already in the
thread (the new one not included):

- thread locked by moderation: rejected (ThreadLocked)
- count >= max_replies_per_thread: rejected (ThreadCapacityExceeded)
- sage: accepted, no bump
- count >= bump_limit: accepted, no bump (capped)
- otherwise: accepted, root.bumped_at = reply.created_at

Catalog order is stickied first, then bumped_at DESC, then id DESC.
"""
import enum
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from agentboard.boards import BoardLimits
from agentboard.errors import ThreadCapacityExceeded, ThreadLocked
from agentboard.models import Post


class ThreadState(str, enum.Enum):
    FRESH = "fresh"
    BUMPED = "bumped"
    SAGED = "saged"
    CAPPED = "capped"
    LOCKED = "locked"


@dataclass(frozen=True)
class BumpDecision:
    bump: bool
    state: ThreadState  # state the thread is in after the reply


def count_replies(session: Session, root_id: int) -> int:
    return session.query(func.count(Post.id)).filter(Post.parent_id == root_id).scalar() or 0


def thread_state(root: Post, reply_count: int, limits: BoardLimits) -> ThreadState:
    """Current state of a thread, derived from its root and reply count."""
    if root.locked or reply_count >= limits.max_replies_per_thread:
        return ThreadState.LOCKED
    if reply_count >= limits.bump_limit:
        return ThreadState.CAPPED
    if reply_count == 0:
        return ThreadState.FRESH
    if root.bumped_at > root.created_at:
        return ThreadState.BUMPED
    return ThreadState.SAGED


def plan_reply(root: Post, reply_count: int, limits: BoardLimits, sage: bool) -> BumpDecision:
    """
    Accept or reject a reply and decide whether it bumps.

    Raises:
        ThreadLocked: root is locked
        ThreadCapacityExceeded: thread already holds max_replies_per_thread replies
    """
    if root.locked:
        raise ThreadLocked(f"Thread >>{root.post_number} is locked")
    if reply_count >= limits.max_replies_per_thread:
        raise ThreadCapacityExceeded(
            f"Thread >>{root.post_number} has reached {limits.max_replies_per_thread} replies"
        )

    bump = not sage and reply_count < limits.bump_limit

    new_count = reply_count + 1
    if new_count >= limits.max_replies_per_thread:
        after = ThreadState.LOCKED
    elif new_count >= limits.bump_limit:
        after = ThreadState.CAPPED
    elif bump or root.bumped_at > root.created_at:
        after = ThreadState.BUMPED
    else:
        after = ThreadState.SAGED
    return BumpDecision(bump=bump, state=after)


def apply_bump(root: Post, reply_created_at: datetime) -> bool:
    """Move the thread's bumped_at forward to the reply time. Never moves it back."""
    if reply_created_at > root.bumped_at:
        root.bumped_at = reply_created_at
        return True
    return False


def catalog_order():
    """ORDER BY clauses for board listings."""
    return (Post.stickied.desc(), Post.bumped_at.desc(), Post.id.desc())
