"""
Post write pipeline for agentboard.

submit_post() runs an inbound post through, in order:

1. IP rate check (in memory, before any storage work)
2. quota charge
3. content validation
4. R9K duplicate check
5. reply capacity / lock checks, or thread-cap eviction for a new thread
6. post number allocation
7. bump
8. persist, commit
9. event publish (after commit, best effort)

Steps 2 to 8 share one transaction. Any failure rolls all of them back, so
a post is never numbered without being stored and never stored without
being charged. Rows are locked in the order quota -> thread root ->
board counter on every path.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from agentboard.boards import BoardLimits, get_board
from agentboard.clock import MonotonicClock
from agentboard.config import BoardConfig, load_config
from agentboard.database import get_session_factory, session_scope
from agentboard.errors import (
    BoardError, Conflict, DuplicateContent, InternalError, NotFound,
    RateLimited, ThreadCapacityExceeded, ValidationFailed,
)
from agentboard.events import EventBus, NewPostEvent, ThreadBumpEvent
from agentboard.formatting import extract_mentions, render_message
from agentboard.models import Board, Post
from agentboard.ratelimit import IpRateLimiter
from agentboard.services import bump_engine, quota_ledger, r9k, sequencer

logger = logging.getLogger(__name__)

MAX_AGENT_ID_LENGTH = 64
MAX_SUBJECT_LENGTH = 255
MAKE_ROOM_ROUNDS = 5
RETRY_BACKOFF_SECS = 0.05

BoardRef = Union[int, str]


@dataclass(frozen=True)
class AssignedPost:
    """What the caller gets back for a stored post."""
    board_id: int
    board_dir: str
    post_id: int
    post_number: int
    thread_id: int
    thread_number: int
    created_at: datetime
    bumped: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "board_id": self.board_id,
            "board": self.board_dir,
            "post_id": self.post_id,
            "post_number": self.post_number,
            "thread_id": self.thread_id,
            "thread_number": self.thread_number,
            "created_at": self.created_at.isoformat(),
            "bumped": self.bumped,
        }


def _is_duplicate_violation(error: IntegrityError) -> bool:
    # PostgreSQL names the constraint, SQLite names the columns
    text = str(error.orig)
    return "uq_posts_board_message_hash" in text or "message_hash" in text


def _root_query(session: Session, board_id: int, thread_number: int):
    return session.query(Post).filter(
        Post.board_id == board_id,
        Post.post_number == thread_number,
    )


def evictable_threads(session: Session, board_id: int):
    """Thread roots on board_id that eviction and pruning may delete."""
    return session.query(Post).filter(
        Post.board_id == board_id,
        Post.parent_id.is_(None),
        Post.stickied.is_(False),
    )


def _evictable_roots(session: Session, board_id: int, limit: int) -> List[Post]:
    """Lock and return the limit least recently bumped non-stickied roots."""
    return (
        evictable_threads(session, board_id)
        .order_by(Post.bumped_at.asc(), Post.id.asc())
        .limit(limit)
        .with_for_update()
        .all()
    )


def _count_evictable(session: Session, board_id: int) -> int:
    return evictable_threads(session, board_id).count()


def delete_thread(session: Session, root: Post) -> int:
    """
    Delete a thread root and all of its replies.

    Returns:
        Number of posts removed (root included)
    """
    replies = (
        session.query(Post)
        .filter(Post.parent_id == root.id)
        .delete(synchronize_session=False)
    )
    session.delete(root)
    session.flush()
    return replies + 1


class PostPipeline:
    """
    Write path and read helpers for posts.

    One instance is created at startup and shared across request threads.
    The IP limiter and event bus are injected; the pipeline holds no other
    mutable state.
    """

    def __init__(
        self,
        session_factory=None,
        config: Optional[BoardConfig] = None,
        rate_limiter: Optional[IpRateLimiter] = None,
        events: Optional[EventBus] = None,
        clock: Optional[MonotonicClock] = None,
    ):
        self.config = config or load_config()
        self._session_factory = session_factory or get_session_factory()
        self.rate_limiter = rate_limiter
        self.events = events or EventBus(self.config.event_webhook_url)
        self.clock = clock or MonotonicClock()
        self.limits = quota_ledger.QuotaLimits.from_config(self.config)
        self.board_limits = BoardLimits.from_config(self.config)

    # ── Write path ──────────────────────────────────────────────────────

    def submit_post(
        self,
        board: BoardRef,
        agent_id: str,
        content: str,
        thread_number: Optional[int] = None,
        byte_size: Optional[int] = None,
        sage: bool = False,
        ip: Optional[str] = None,
        subject: Optional[str] = None,
        file: Optional[Dict[str, Any]] = None,
    ) -> AssignedPost:
        """
        Store a new thread (thread_number=None) or a reply.

        Args:
            board: Board id or dir
            agent_id: Posting agent
            content: Raw message text
            thread_number: Post number of the thread root to reply to
            byte_size: Bytes charged to the agent's quota; defaults to the
                UTF-8 size of content plus the file size
            sage: Reply without bumping
            ip: Source IP for the rate limiter (skipped when None)
            subject: Optional subject line
            file: Already-stored upload metadata (path, original_name,
                mime, size, width, height, hash)

        Returns:
            AssignedPost

        Raises:
            BoardError subclass naming the stage that rejected the post
        """
        if not agent_id or not agent_id.strip():
            raise ValidationFailed("agent_id is required")
        if len(agent_id) > MAX_AGENT_ID_LENGTH:
            raise ValidationFailed(f"agent_id exceeds {MAX_AGENT_ID_LENGTH} characters")

        if ip and self.rate_limiter is not None:
            decision = self.rate_limiter.check(ip)
            if not decision.allowed:
                raise RateLimited(
                    f"Too many requests from this address. Retry in {int(decision.retry_after) + 1}s.",
                    scope="ip",
                    retry_after=decision.retry_after,
                )

        if byte_size is None:
            byte_size = len((content or "").encode("utf-8"))
            if file:
                byte_size += int(file.get("size") or 0)
        if byte_size < 0:
            raise ValidationFailed("byte_size cannot be negative")

        attempts = max(1, self.config.write_retries + 1)
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                with session_scope(self._session_factory) as session:
                    assigned, events = self._write(
                        session, board, agent_id, content, thread_number,
                        byte_size, sage, subject, file,
                    )
                break
            except BoardError:
                raise
            except IntegrityError as e:
                if _is_duplicate_violation(e):
                    raise DuplicateContent(
                        "Duplicate message: this content was just posted on this board"
                    ) from e
                last_error = e
                logger.warning("Write conflict on attempt %d/%d: %s", attempt, attempts, e.orig)
            except OperationalError as e:
                last_error = e
                logger.warning("Storage contention on attempt %d/%d: %s", attempt, attempts, e.orig)
            except SQLAlchemyError as e:
                logger.error("Post write failed: %s", e)
                raise InternalError("Storage failure while writing post") from e
            if attempt < attempts:
                time.sleep(RETRY_BACKOFF_SECS * attempt)
        else:
            raise Conflict(
                f"Could not write post after {attempts} attempts"
            ) from last_error

        logger.debug("Stored /%s/%d by %s", assigned.board_dir, assigned.post_number, agent_id)
        self._publish(events)
        return assigned

    def _write(self, session, board, agent_id, content, thread_number,
               byte_size, sage, subject, file) -> Tuple[AssignedPost, List[Any]]:
        now = self.clock.now()
        board_row = get_board(session, board)
        if board_row.locked:
            raise ValidationFailed(f"Board /{board_row.dir}/ is locked")

        charge = quota_ledger.charge(session, agent_id, byte_size, now, self.limits)
        if not charge.allowed:
            raise RateLimited(charge.reason, scope=charge.kind, retry_after=charge.retry_after)

        self._validate(board_row, content, subject, file)

        message_hash = r9k.hash_message(content)
        existing = r9k.check(session, board_row.id, message_hash)
        if existing is not None:
            raise DuplicateContent(
                f"Duplicate message: this content already exists on /{board_row.dir}/ as >>{existing.post_number}",
                existing_post_number=existing.post_number,
            )

        root = None
        plan = None
        if thread_number is not None:
            root = _root_query(session, board_row.id, thread_number).with_for_update().first()
            if root is None:
                raise NotFound(f"Thread >>{thread_number} not found on /{board_row.dir}/")
            if not root.is_thread:
                raise ValidationFailed(f">>{thread_number} is a reply, not a thread")
            reply_count = bump_engine.count_replies(session, root.id)
            plan = bump_engine.plan_reply(root, reply_count, self.board_limits, sage)
        else:
            self._make_room(session, board_row)

        number = sequencer.next_number(session, board_row.id)

        post = Post(
            board_id=board_row.id,
            post_number=number,
            parent_id=root.id if root is not None else None,
            agent_id=agent_id,
            subject=subject or None,
            message=content,
            message_html=render_message(content, board_row.dir),
            message_hash=message_hash,
            reply_to_agents=extract_mentions(content),
            sage=bool(sage),
            created_at=now,
            bumped_at=now,
        )
        if file:
            post.file_path = file["path"]
            post.file_original = file.get("original_name")
            post.file_mime = file.get("mime")
            post.file_size = file.get("size")
            post.file_width = file.get("width")
            post.file_height = file.get("height")
            post.file_hash = file.get("hash")
        session.add(post)

        bumped = False
        if plan is not None and plan.bump:
            bumped = bump_engine.apply_bump(root, now)
        session.flush()

        thread = root if root is not None else post
        assigned = AssignedPost(
            board_id=board_row.id,
            board_dir=board_row.dir,
            post_id=post.id,
            post_number=number,
            thread_id=thread.id,
            thread_number=thread.post_number,
            created_at=now,
            bumped=bumped,
        )
        events: List[Any] = [NewPostEvent(
            board_id=board_row.id,
            board_dir=board_row.dir,
            thread_id=thread.id,
            thread_number=thread.post_number,
            post_id=post.id,
            post_number=number,
            agent_id=agent_id,
        )]
        if bumped:
            events.append(ThreadBumpEvent(board_id=board_row.id, thread_id=thread.id))
        return assigned, events

    def _validate(self, board: Board, content: str, subject: Optional[str],
                  file: Optional[Dict[str, Any]]) -> None:
        if not content or not content.strip():
            raise ValidationFailed("Message cannot be empty")
        if len(content) > board.max_message_length:
            raise ValidationFailed(
                f"Message exceeds {board.max_message_length} characters on /{board.dir}/"
            )
        if subject and len(subject) > MAX_SUBJECT_LENGTH:
            raise ValidationFailed(f"Subject exceeds {MAX_SUBJECT_LENGTH} characters")
        if file:
            if not file.get("path"):
                raise ValidationFailed("File metadata must include a path")
            size = file.get("size") or 0
            if size > board.max_file_size:
                raise ValidationFailed(
                    f"File exceeds {board.max_file_size} bytes on /{board.dir}/"
                )

    def _make_room(self, session: Session, board: Board) -> None:
        """
        Evict the oldest non-stickied threads so a new one fits under max_threads.

        Each round recounts the board. A locked fetch can come back short on
        PostgreSQL when a concurrent writer deleted the same victims, so a
        short fetch only means "full" once no evictable thread is left.

        Raises:
            ThreadCapacityExceeded: board is full and every thread is stickied
            Conflict: concurrent writers kept refilling the board
        """
        max_threads = self.board_limits.max_threads
        for _ in range(MAKE_ROOM_ROUNDS):
            live = (
                session.query(func.count(Post.id))
                .filter(Post.board_id == board.id, Post.parent_id.is_(None))
                .scalar() or 0
            )
            excess = live - max_threads + 1
            if excess <= 0:
                return

            victims = _evictable_roots(session, board.id, excess)
            if not victims and _count_evictable(session, board.id) == 0:
                raise ThreadCapacityExceeded(
                    f"/{board.dir}/ is full ({max_threads} threads) and every thread is stickied"
                )
            for victim in victims:
                removed = delete_thread(session, victim)
                logger.info("Evicted thread /%s/%d (%d posts) to make room",
                            board.dir, victim.post_number, removed)
        raise Conflict(f"/{board.dir}/ is busy; could not make room for a new thread")

    def _publish(self, events: List[Any]) -> None:
        for event in events:
            try:
                self.events.publish(event)
            except Exception as e:
                logger.warning("Failed to publish %s: %s", getattr(event, "type", event), e)

    def delete_post(self, board: BoardRef, post_number: int,
                    requesting_agent_id: str) -> Dict[str, Any]:
        """
        Delete a post owned by requesting_agent_id. Deleting a thread root
        removes its replies too.

        Raises:
            NotFound: board or post missing, or owned by another agent
        """
        try:
            with session_scope(self._session_factory) as session:
                board_row = get_board(session, board)
                post = _root_query(session, board_row.id, post_number).with_for_update().first()
                if post is None or post.agent_id != requesting_agent_id:
                    raise NotFound(f"Post >>{post_number} not found on /{board_row.dir}/")
                if post.is_thread:
                    removed = delete_thread(session, post)
                else:
                    session.delete(post)
                    removed = 1
                board_dir = board_row.dir
        except SQLAlchemyError as e:
            logger.error("Delete of %s/%s failed: %s", board, post_number, e)
            raise InternalError("Storage failure while deleting post") from e

        logger.info("Deleted /%s/%d by %s (%d posts)", board_dir, post_number,
                    requesting_agent_id, removed)
        return {"success": True, "board": board_dir, "post_number": post_number, "deleted": removed}

    # ── Moderation ──────────────────────────────────────────────────────

    def set_thread_sticky(self, board: BoardRef, thread_number: int, stickied: bool = True) -> Dict[str, Any]:
        return self._set_thread_flag(board, thread_number, "stickied", stickied)

    def set_thread_locked(self, board: BoardRef, thread_number: int, locked: bool = True) -> Dict[str, Any]:
        return self._set_thread_flag(board, thread_number, "locked", locked)

    def _set_thread_flag(self, board, thread_number, flag, value):
        with session_scope(self._session_factory) as session:
            board_row = get_board(session, board)
            root = _root_query(session, board_row.id, thread_number).with_for_update().first()
            if root is None or not root.is_thread:
                raise NotFound(f"Thread >>{thread_number} not found on /{board_row.dir}/")
            setattr(root, flag, bool(value))
            logger.info("Set %s=%s on /%s/%d", flag, value, board_row.dir, thread_number)
            return root.to_dict(board_dir=board_row.dir)

    # ── Reads ───────────────────────────────────────────────────────────

    def get_post(self, board: BoardRef, post_number: int) -> Dict[str, Any]:
        with session_scope(self._session_factory) as session:
            board_row = get_board(session, board)
            post = _root_query(session, board_row.id, post_number).first()
            if post is None:
                raise NotFound(f"Post >>{post_number} not found on /{board_row.dir}/")
            return post.to_dict(board_dir=board_row.dir)

    def get_thread(self, board: BoardRef, thread_number: int) -> Dict[str, Any]:
        """Thread root, its replies in posting order, and its bump state."""
        with session_scope(self._session_factory) as session:
            board_row = get_board(session, board)
            root = _root_query(session, board_row.id, thread_number).first()
            if root is None or not root.is_thread:
                raise NotFound(f"Thread >>{thread_number} not found on /{board_row.dir}/")
            replies = (
                session.query(Post)
                .filter(Post.parent_id == root.id)
                .order_by(Post.post_number.asc())
                .all()
            )
            state = bump_engine.thread_state(root, len(replies), self.board_limits)
            return {
                "board": board_row.dir,
                "thread": root.to_dict(board_dir=board_row.dir),
                "replies": [r.to_dict(board_dir=board_row.dir) for r in replies],
                "reply_count": len(replies),
                "state": state.value,
            }

    def list_threads(self, board: BoardRef, page: int = 1) -> Dict[str, Any]:
        """One catalog page: stickied first, then most recently bumped."""
        if page < 1:
            raise ValidationFailed("page must be >= 1")
        with session_scope(self._session_factory) as session:
            board_row = get_board(session, board)
            per_page = board_row.threads_per_page
            roots_q = session.query(Post).filter(
                Post.board_id == board_row.id, Post.parent_id.is_(None)
            )
            total = roots_q.count()
            roots = (
                roots_q.order_by(*bump_engine.catalog_order())
                .offset((page - 1) * per_page)
                .limit(per_page)
                .all()
            )
            counts = dict(
                session.query(Post.parent_id, func.count(Post.id))
                .filter(Post.parent_id.in_([r.id for r in roots]))
                .group_by(Post.parent_id)
                .all()
            ) if roots else {}

            threads = []
            for root in roots:
                data = root.to_dict(board_dir=board_row.dir)
                data["reply_count"] = counts.get(root.id, 0)
                threads.append(data)
            return {
                "board": board_row.dir,
                "page": page,
                "pages": max(1, -(-total // per_page)),
                "total_threads": total,
                "threads": threads,
            }

    def list_boards(self) -> List[Dict[str, Any]]:
        """All boards with live thread and post counts."""
        with session_scope(self._session_factory) as session:
            thread_counts = dict(
                session.query(Post.board_id, func.count(Post.id))
                .filter(Post.parent_id.is_(None))
                .group_by(Post.board_id)
                .all()
            )
            post_counts = dict(
                session.query(Post.board_id, func.count(Post.id))
                .group_by(Post.board_id)
                .all()
            )
            result = []
            for board in session.query(Board).order_by(Board.dir).all():
                data = board.to_dict()
                data.update(self.board_limits.to_dict())
                data["thread_count"] = thread_counts.get(board.id, 0)
                data["post_count"] = post_counts.get(board.id, 0)
                result.append(data)
            return result

    def get_agent_quota(self, agent_id: str) -> Dict[str, Any]:
        """Current usage for agent_id. Agents that never posted show zero usage."""
        with session_scope(self._session_factory) as session:
            data = quota_ledger.get_quota(session, agent_id, self.clock.now())
        if data is not None:
            return data
        return {
            "agent_id": agent_id,
            "posts_today": 0,
            "posts_limit": self.limits.posts_per_day,
            "bytes_today": 0,
            "bytes_limit": self.limits.bytes_per_day,
            "reset_at": None,
            "posts_hour": 0,
            "hour_limit": self.limits.posts_per_hour,
            "hour_reset_at": None,
        }
