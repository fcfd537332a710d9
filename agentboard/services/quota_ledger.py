"""
Quota ledger: per-agent posts/hour, posts/day and bytes/day.

charge() runs inside the write pipeline's transaction. The quota row is
read FOR UPDATE (PostgreSQL) and SQLite transactions start with BEGIN
IMMEDIATE, so two posts by the same agent can't both pass a check against a
nearly exhausted quota. If the post is later rejected, the rollback undoes
the charge.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from agentboard.config import BoardConfig
from agentboard.models import AgentQuota

DAY = timedelta(days=1)
HOUR = timedelta(hours=1)

QUOTA_POSTS_HOUR = "posts_hour"
QUOTA_POSTS_DAY = "posts_day"
QUOTA_BYTES_DAY = "bytes_day"


@dataclass(frozen=True)
class QuotaLimits:
    posts_per_hour: int
    posts_per_day: int
    bytes_per_day: int

    @classmethod
    def from_config(cls, config: BoardConfig) -> "QuotaLimits":
        return cls(
            posts_per_hour=config.agent_rate_limit_hour,
            posts_per_day=config.agent_rate_limit_day,
            bytes_per_day=config.agent_bytes_limit_day,
        )


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    kind: Optional[str] = None  # which limit denied the charge
    retry_after: float = 0.0    # seconds until that limit resets
    quota: Optional[Dict[str, Any]] = None

    @property
    def reason(self) -> str:
        if self.allowed:
            return "ok"
        labels = {
            QUOTA_POSTS_HOUR: "hourly post limit",
            QUOTA_POSTS_DAY: "daily post limit",
            QUOTA_BYTES_DAY: "daily byte limit",
        }
        return f"Agent {labels.get(self.kind, self.kind)} reached. Retry in {int(self.retry_after)}s."


def _load_for_update(session: Session, agent_id: str) -> Optional[AgentQuota]:
    return (
        session.query(AgentQuota)
        .filter(AgentQuota.agent_id == agent_id)
        .with_for_update()
        .first()
    )


def _create_quota(session: Session, agent_id: str, now: datetime, limits: QuotaLimits) -> AgentQuota:
    """
    Create the row on first use.

    A concurrent create surfaces as IntegrityError on flush; the pipeline
    retries the whole attempt, which then finds the row.
    """
    quota = AgentQuota(
        agent_id=agent_id,
        posts_today=0,
        posts_limit=limits.posts_per_day,
        bytes_today=0,
        bytes_limit=limits.bytes_per_day,
        reset_at=now + DAY,
        posts_hour=0,
        hour_limit=limits.posts_per_hour,
        hour_reset_at=now + HOUR,
    )
    session.add(quota)
    session.flush()
    return quota


def _roll_windows(quota: AgentQuota, now: datetime) -> None:
    """Lazy reset of expired windows."""
    if quota.reset_at <= now:
        quota.posts_today = 0
        quota.bytes_today = 0
        quota.reset_at = now + DAY
    if quota.hour_reset_at <= now:
        quota.posts_hour = 0
        quota.hour_reset_at = now + HOUR


def get_or_create_quota(session: Session, agent_id: str, now: datetime,
                        limits: QuotaLimits) -> AgentQuota:
    quota = _load_for_update(session, agent_id)
    if quota is None:
        quota = _create_quota(session, agent_id, now, limits)
    _roll_windows(quota, now)
    return quota


def charge(session: Session, agent_id: str, byte_size: int, now: datetime,
           limits: QuotaLimits) -> QuotaDecision:
    """
    Charge one post of byte_size bytes to agent_id.

    Returns an allowed decision after incrementing the counters, or a denied
    decision naming the limit hit. Nothing is changed on denial except the
    lazy window reset.
    """
    quota = get_or_create_quota(session, agent_id, now, limits)

    if quota.posts_hour + 1 > quota.hour_limit:
        return QuotaDecision(False, QUOTA_POSTS_HOUR,
                             (quota.hour_reset_at - now).total_seconds(), quota.to_dict())
    if quota.posts_today + 1 > quota.posts_limit:
        return QuotaDecision(False, QUOTA_POSTS_DAY,
                             (quota.reset_at - now).total_seconds(), quota.to_dict())
    if quota.bytes_today + byte_size > quota.bytes_limit:
        return QuotaDecision(False, QUOTA_BYTES_DAY,
                             (quota.reset_at - now).total_seconds(), quota.to_dict())

    quota.posts_hour += 1
    quota.posts_today += 1
    quota.bytes_today += byte_size
    session.flush()
    return QuotaDecision(True, quota=quota.to_dict())


def get_quota(session: Session, agent_id: str, now: datetime) -> Optional[Dict[str, Any]]:
    """Current usage for agent_id with expired windows shown as reset, or None."""
    quota = session.get(AgentQuota, agent_id)
    if quota is None:
        return None
    data = quota.to_dict()
    if quota.reset_at <= now:
        data.update(posts_today=0, bytes_today=0)
    if quota.hour_reset_at <= now:
        data.update(posts_hour=0)
    return data


def reset_expired_quotas(session: Session, now: datetime) -> int:
    """
    Proactively reset windows that have expired (sweeper task).

    Returns:
        Number of windows reset (daily and hourly counted separately)
    """
    daily = session.execute(
        update(AgentQuota)
        .where(AgentQuota.reset_at <= now)
        .values(posts_today=0, bytes_today=0, reset_at=now + DAY)
        .execution_options(synchronize_session=False)
    ).rowcount
    hourly = session.execute(
        update(AgentQuota)
        .where(AgentQuota.hour_reset_at <= now)
        .values(posts_hour=0, hour_reset_at=now + HOUR)
        .execution_options(synchronize_session=False)
    ).rowcount
    return daily + hourly
