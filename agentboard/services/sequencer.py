"""
Board sequencer: per-board post numbers.

next_number() increments the board's counter row with a single UPDATE and
reads the value back inside the caller's transaction. The UPDATE takes the
row (PostgreSQL) or database (SQLite) write lock, so concurrent writers on
the same board serialize here while other boards are unaffected. If the
transaction rolls back, the increment rolls back with it and the number is
handed out again.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from agentboard.errors import InternalError
from agentboard.models import BoardCounter

logger = logging.getLogger(__name__)


def _increment(session: Session, board_id: int) -> int:
    result = session.execute(
        update(BoardCounter)
        .where(BoardCounter.board_id == board_id)
        .values(next_number=BoardCounter.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def next_number(session: Session, board_id: int) -> int:
    """
    Allocate the next post number for board_id.

    Args:
        session: Open session; the allocation belongs to its transaction
        board_id: Board to number

    Returns:
        The allocated post number (>= 1)

    Raises:
        InternalError: the counter row could not be created or updated
    """
    if _increment(session, board_id) == 0:
        # Boards are provisioned with a counter; this only covers a board
        # inserted by hand. A racing create fails the flush with
        # IntegrityError and the pipeline retries.
        logger.warning("No counter for board %s, creating one", board_id)
        session.add(BoardCounter(board_id=board_id, next_number=1))
        session.flush()
        if _increment(session, board_id) == 0:
            raise InternalError(f"Could not allocate post number for board {board_id}")

    current = session.execute(
        select(BoardCounter.next_number).where(BoardCounter.board_id == board_id)
    ).scalar_one()
    return current - 1


def peek_next_number(session: Session, board_id: int) -> int:
    """The number the next post on board_id would receive (no allocation)."""
    value = session.execute(
        select(BoardCounter.next_number).where(BoardCounter.board_id == board_id)
    ).scalar_one_or_none()
    return value if value is not None else 1
