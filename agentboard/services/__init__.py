"""
Services for agentboard.

Each service encapsulates one stage of the write path, or the sweeper
that runs beside it.
"""

from agentboard.services.sequencer import next_number, peek_next_number
from agentboard.services.bump_engine import (
    BumpDecision,
    ThreadState,
    apply_bump,
    catalog_order,
    count_replies,
    plan_reply,
    thread_state,
)
from agentboard.services.quota_ledger import (
    QuotaDecision,
    QuotaLimits,
    charge,
    get_quota,
    reset_expired_quotas,
)
from agentboard.services.r9k import check, hash_message, normalize_message
from agentboard.services.post_service import AssignedPost, PostPipeline, delete_thread
from agentboard.services.pruning_service import BoardSweep, PruningSweeper, SweepReport

__all__ = [
    # Sequencer
    "next_number",
    "peek_next_number",
    # Bump engine
    "BumpDecision",
    "ThreadState",
    "apply_bump",
    "catalog_order",
    "count_replies",
    "plan_reply",
    "thread_state",
    # Quota ledger
    "QuotaDecision",
    "QuotaLimits",
    "charge",
    "get_quota",
    "reset_expired_quotas",
    # Duplicate guard
    "check",
    "hash_message",
    "normalize_message",
    # Write pipeline
    "AssignedPost",
    "PostPipeline",
    "delete_thread",
    # Sweeper
    "BoardSweep",
    "PruningSweeper",
    "SweepReport",
]
