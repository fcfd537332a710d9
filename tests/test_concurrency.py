"""
Concurrent writers against a file-backed SQLite database.

Each test builds its own engine under tmp_path so that every thread gets
its own connection and writers really contend for the database lock.
"""
import threading
from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from agentboard.clock import utcnow
from agentboard.database import create_engine_for_url, init_db, session_scope
from agentboard.errors import BoardError, RateLimited, ThreadCapacityExceeded
from agentboard.events import EventBus
from agentboard.models import AgentQuota, Board, BoardCounter, Post
from agentboard.services.post_service import PostPipeline


@pytest.fixture
def file_factory(tmp_path, test_config):
    engine = create_engine_for_url(f"sqlite:///{tmp_path / 'board.db'}")
    init_db(engine, config=test_config)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    engine.dispose()


def _run_concurrently(fn, n):
    """Run fn(i) on n threads released together. Returns (results, errors)."""
    barrier = threading.Barrier(n)
    results, errors = [], []
    lock = threading.Lock()

    def worker(i):
        barrier.wait()
        try:
            value = fn(i)
        except BoardError as e:
            with lock:
                errors.append(e)
        else:
            with lock:
                results.append(value)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(60)
    return results, errors


class TestConcurrentWrites:

    def test_numbers_stay_dense_and_unique(self, file_factory, test_config):
        pipeline = PostPipeline(session_factory=file_factory, config=test_config, events=EventBus())

        results, errors = _run_concurrently(
            lambda i: pipeline.submit_post("g", f"agent-{i}", f"concurrent thread {i}"), 16
        )

        assert errors == []
        assert sorted(r.post_number for r in results) == list(range(1, 17))
        with session_scope(file_factory) as session:
            board = session.query(Board).filter(Board.dir == "g").one()
            assert session.get(BoardCounter, board.id).next_number == 17
            assert session.query(Post).filter(Post.board_id == board.id).count() == 16

    def test_last_quota_slot_goes_to_exactly_one_post(self, file_factory, test_config):
        config = replace(test_config, agent_rate_limit_day=1000)
        pipeline = PostPipeline(session_factory=file_factory, config=config, events=EventBus())
        now = utcnow()
        with session_scope(file_factory) as session:
            session.add(AgentQuota(
                agent_id="greedy", posts_today=999, posts_limit=1000,
                bytes_today=0, bytes_limit=10 ** 9, reset_at=now + timedelta(days=1),
                posts_hour=0, hour_limit=100, hour_reset_at=now + timedelta(hours=1),
            ))

        results, errors = _run_concurrently(
            lambda i: pipeline.submit_post("g", "greedy", f"last slot attempt {i}"), 2
        )

        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], RateLimited)
        assert errors[0].scope == "posts_day"
        with session_scope(file_factory) as session:
            assert session.get(AgentQuota, "greedy").posts_today == 1000
            assert session.query(Post).count() == 1

    def test_reply_cap_holds_under_contention(self, file_factory, test_config):
        pipeline = PostPipeline(
            session_factory=file_factory,
            config=replace(test_config, max_replies_per_thread=5),
            events=EventBus(),
        )
        thread = pipeline.submit_post("g", "op", "contended thread")

        results, errors = _run_concurrently(
            lambda i: pipeline.submit_post("g", f"agent-{i}", f"reply {i}",
                                           thread_number=thread.post_number), 10
        )

        assert len(results) == 5
        assert len(errors) == 5
        assert all(isinstance(e, ThreadCapacityExceeded) for e in errors)
        assert pipeline.get_thread("g", thread.post_number)["reply_count"] == 5

    def test_racing_duplicates_store_one(self, file_factory, test_config):
        pipeline = PostPipeline(session_factory=file_factory, config=test_config, events=EventBus())

        results, errors = _run_concurrently(
            lambda i: pipeline.submit_post("g", f"agent-{i}", "Great minds think alike"), 4
        )

        assert len(results) == 1
        assert len(errors) == 3
        assert {e.code for e in errors} == {"duplicate"}
