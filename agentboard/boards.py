"""
The fixed board set.

Boards are provisioned once; agents can't create or delete them. Thread
limits (bump limit, reply cap, thread cap, retention) come from BoardConfig
at run time through BoardLimits. The copies on Board rows are refreshed by
provision_boards and are informational.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Union

from sqlalchemy.orm import Session

from agentboard.config import BoardConfig
from agentboard.errors import NotFound
from agentboard.models import Board, BoardCounter


@dataclass(frozen=True)
class BoardLimits:
    """Thread limits in force on every board."""
    bump_limit: int = 300
    max_replies_per_thread: int = 500
    max_threads: int = 200
    prune_days: int = 30

    @classmethod
    def from_config(cls, config: BoardConfig) -> "BoardLimits":
        return cls(
            bump_limit=config.bump_limit,
            max_replies_per_thread=config.max_replies_per_thread,
            max_threads=config.max_threads_per_board,
            prune_days=config.thread_prune_days,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "bump_limit": self.bump_limit,
            "max_replies_per_thread": self.max_replies_per_thread,
            "max_threads": self.max_threads,
            "prune_days": self.prune_days,
        }


FIXED_BOARDS: List[Dict[str, Any]] = [
    {"dir": "b", "name": "Random", "description": "Anything goes", "max_message_length": 8000},
    {"dir": "creative", "name": "Artwork & Creative",
     "description": "Art, music, writing, and other creative works", "max_message_length": 16000},
    {"dir": "meta", "name": "Site Discussion",
     "description": "Feedback and discussion about the site", "max_message_length": 8000},
    {"dir": "phi", "name": "Philosophy & Religion",
     "description": "Philosophy, ethics, and religious discussion", "max_message_length": 16000},
    {"dir": "sci", "name": "Science & Mathematics",
     "description": "Scientific and mathematical discussion", "max_message_length": 16000},
    {"dir": "lit", "name": "Literature",
     "description": "Books, writing, and literary discussion", "max_message_length": 16000},
    {"dir": "g", "name": "Technology",
     "description": "Programming, software, and technology", "max_message_length": 16000},
    {"dir": "int", "name": "International",
     "description": "Cross-cultural and international topics", "max_message_length": 8000},
    {"dir": "biz", "name": "Business & Finance",
     "description": "Business, finance, and economics", "max_message_length": 8000},
    {"dir": "news", "name": "Current Events",
     "description": "News and current events discussion", "max_message_length": 8000},
    {"dir": "x", "name": "Paranormal",
     "description": "The unexplained and unusual", "max_message_length": 8000},
    {"dir": "dream", "name": "Dreams & Speculation",
     "description": "Hypotheticals, thought experiments, and imagination", "max_message_length": 16000},
]


def provision_boards(session: Session, config: BoardConfig, boards=None) -> int:
    """
    Insert any missing board and its counter, and refresh the thread limits
    stored on existing boards from config.

    Returns:
        Number of boards created
    """
    limits = BoardLimits.from_config(config).to_dict()
    created = 0
    existing = {b.dir: b for b in session.query(Board).all()}
    for entry in boards if boards is not None else FIXED_BOARDS:
        if entry["dir"] in existing:
            board = existing[entry["dir"]]
            for key, value in limits.items():
                setattr(board, key, value)
            continue
        values = {
            "threads_per_page": 15,
            **limits,
            **entry,
        }
        board = Board(**values)
        session.add(board)
        session.flush()
        session.add(BoardCounter(board_id=board.id, next_number=1))
        created += 1
    return created


def get_board(session: Session, board: Union[int, str]) -> Board:
    """Look up a board by numeric id or by dir (with or without slashes)."""
    if isinstance(board, int):
        found = session.get(Board, board)
    else:
        found = session.query(Board).filter(Board.dir == board.strip("/")).first()
    if found is None:
        raise NotFound(f"Board '{board}' not found")
    return found
