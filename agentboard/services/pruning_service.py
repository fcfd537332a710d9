"""
Pruning sweeper for agentboard.

Runs independently of the write path on a timer. Each cycle:

- per board, deletes the oldest non-stickied threads beyond max_threads
- per board, deletes non-stickied threads not bumped for prune_days
- resets expired agent quota windows
- drops expired IP rate windows

Every board is swept in its own transaction. A board that fails is logged
and reported, and the sweep moves on. At most prune_batch_size threads are
deleted per cycle; the rest waits for the next one.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agentboard.boards import BoardLimits
from agentboard.clock import MonotonicClock
from agentboard.config import BoardConfig, load_config
from agentboard.database import get_session_factory, session_scope
from agentboard.models import Board, Post
from agentboard.ratelimit import IpRateLimiter
from agentboard.services.post_service import delete_thread, evictable_threads
from agentboard.services.quota_ledger import reset_expired_quotas

logger = logging.getLogger(__name__)


@dataclass
class BoardSweep:
    board: str
    over_cap: int = 0
    expired: int = 0
    posts_removed: int = 0

    @property
    def threads_removed(self) -> int:
        return self.over_cap + self.expired


@dataclass
class SweepReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    boards: List[BoardSweep] = field(default_factory=list)
    failed_boards: List[str] = field(default_factory=list)
    quotas_reset: int = 0
    ip_windows_cleared: int = 0
    truncated: bool = False  # batch budget ran out before every board was swept

    @property
    def threads_removed(self) -> int:
        return sum(b.threads_removed for b in self.boards)

    @property
    def posts_removed(self) -> int:
        return sum(b.posts_removed for b in self.boards)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "threads_removed": self.threads_removed,
            "posts_removed": self.posts_removed,
            "boards": {
                b.board: {"over_cap": b.over_cap, "expired": b.expired, "posts_removed": b.posts_removed}
                for b in self.boards if b.threads_removed
            },
            "failed_boards": self.failed_boards,
            "quotas_reset": self.quotas_reset,
            "ip_windows_cleared": self.ip_windows_cleared,
            "truncated": self.truncated,
        }


class PruningSweeper:
    """Periodic thread pruning and quota/IP window cleanup."""

    def __init__(
        self,
        session_factory=None,
        config: Optional[BoardConfig] = None,
        rate_limiter: Optional[IpRateLimiter] = None,
        clock: Optional[MonotonicClock] = None,
    ):
        self.config = config or load_config()
        self._session_factory = session_factory or get_session_factory()
        self.rate_limiter = rate_limiter
        self.clock = clock or MonotonicClock()
        self.board_limits = BoardLimits.from_config(self.config)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep(self) -> SweepReport:
        """Run one pruning cycle."""
        now = self.clock.now()
        report = SweepReport(started_at=now)
        budget = self.config.prune_batch_size

        with session_scope(self._session_factory) as session:
            boards = [(b.id, b.dir) for b in session.query(Board).order_by(Board.id).all()]

        for board_id, board_dir in boards:
            if budget <= 0:
                report.truncated = True
                break
            try:
                with session_scope(self._session_factory) as session:
                    result = self._sweep_board(session, board_id, board_dir, now, budget)
            except SQLAlchemyError as e:
                logger.warning("Pruning /%s/ failed, continuing: %s", board_dir, e)
                report.failed_boards.append(board_dir)
                continue
            budget -= result.threads_removed
            report.boards.append(result)

        try:
            with session_scope(self._session_factory) as session:
                report.quotas_reset = reset_expired_quotas(session, now)
        except SQLAlchemyError as e:
            logger.warning("Quota reset failed: %s", e)

        if self.rate_limiter is not None:
            report.ip_windows_cleared = self.rate_limiter.cleanup()

        report.finished_at = self.clock.now()
        if report.threads_removed or report.failed_boards:
            logger.info(
                "Sweep removed %d threads (%d posts), %d boards failed",
                report.threads_removed, report.posts_removed, len(report.failed_boards),
            )
        return report

    def _sweep_board(self, session: Session, board_id: int, board_dir: str,
                     now: datetime, budget: int) -> BoardSweep:
        board = session.get(Board, board_id)
        result = BoardSweep(board=board_dir)
        if board is None:
            return result

        live = (
            session.query(func.count(Post.id))
            .filter(Post.board_id == board_id, Post.parent_id.is_(None))
            .scalar() or 0
        )
        excess = min(live - self.board_limits.max_threads, budget)
        if excess > 0:
            victims = (
                evictable_threads(session, board_id)
                .order_by(Post.bumped_at.asc(), Post.id.asc())
                .limit(excess)
                .with_for_update()
                .all()
            )
            for root in victims:
                result.posts_removed += delete_thread(session, root)
                result.over_cap += 1

        remaining = budget - result.over_cap
        if remaining > 0:
            # FOR UPDATE re-checks bumped_at against a reply committed meanwhile
            cutoff = now - timedelta(days=self.board_limits.prune_days)
            stale = (
                evictable_threads(session, board_id)
                .filter(Post.bumped_at < cutoff)
                .order_by(Post.bumped_at.asc(), Post.id.asc())
                .limit(remaining)
                .with_for_update()
                .all()
            )
            for root in stale:
                result.posts_removed += delete_thread(session, root)
                result.expired += 1

        if result.threads_removed:
            logger.info("Pruned /%s/: %d over cap, %d expired, %d posts",
                        board_dir, result.over_cap, result.expired, result.posts_removed)
        return result

    # ── Background loop ─────────────────────────────────────────────────

    def _run(self) -> None:
        interval = self.config.cleanup_interval_secs
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception as e:
                logger.error("Sweep cycle failed: %s", e)
            self._stop_event.wait(interval)

    def start(self) -> None:
        """Sweep now and then every cleanup_interval_secs on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="agentboard-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
