"""Unit tests for retry bookkeeping."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from harvester.models.models import ErrorRecord, ErrorType, utcnow


class Flaky:
    """Async operation that fails ``failures`` times before succeeding."""

    def __init__(self, failures: int, result: str = "ok") -> None:
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return self.result


async def _records(sessions) -> list[ErrorRecord]:
    async with sessions() as session:
        return list(await session.scalars(select(ErrorRecord).order_by(ErrorRecord.created_at)))


class TestWithRetry:
    async def test_success_first_time_leaves_no_trace(self, tracker, sessions, fake_sleep):
        op = Flaky(0)
        assert await tracker.with_retry(op, error_type=ErrorType.ANALYSIS, article_id="a1") == "ok"
        assert op.calls == 1
        assert fake_sleep.delays == []
        assert await _records(sessions) == []

    async def test_recovers_after_two_failures(self, tracker, sessions, fake_sleep):
        op = Flaky(2)
        result = await tracker.with_retry(
            op, error_type=ErrorType.ANALYSIS, article_id="a1", initial_delay=1.0
        )

        assert result == "ok"
        assert op.calls == 3
        assert fake_sleep.delays == [1.0, 2.0]

        [record] = await _records(sessions)
        assert record.retry_count == 1
        assert record.resolved is True
        assert record.resolved_at is not None

    async def test_gives_up_after_max_retries(self, tracker, sessions, fake_sleep):
        op = Flaky(100)
        with pytest.raises(ConnectionError, match="attempt 4 failed"):
            await tracker.with_retry(
                op,
                error_type=ErrorType.FETCH,
                source_id="src-1",
                max_retries=3,
                initial_delay=1.0,
            )

        assert op.calls == 4
        assert fake_sleep.delays == [1.0, 2.0, 4.0]

        [record] = await _records(sessions)
        assert record.retry_count == 3
        assert record.resolved is False
        assert record.message == "attempt 4 failed"
        assert "ConnectionError" in record.stack_trace

    async def test_exhausted_key_fails_fast_on_next_run(self, tracker, fake_sleep):
        await tracker.record_failure(ErrorType.FETCH, RuntimeError("boom"), source_id="src-1")
        for _ in range(3):
            await tracker.record_failure(ErrorType.FETCH, RuntimeError("boom"), source_id="src-1")

        op = Flaky(100)
        with pytest.raises(ConnectionError):
            await tracker.with_retry(op, error_type=ErrorType.FETCH, source_id="src-1")
        assert op.calls == 1
        assert fake_sleep.delays == []

    async def test_success_resolves_the_key(self, tracker, sessions):
        await tracker.record_failure(ErrorType.FETCH, RuntimeError("boom"), source_id="src-1")
        await tracker.with_retry(Flaky(1), error_type=ErrorType.FETCH, source_id="src-1")

        records = await _records(sessions)
        assert records and all(r.resolved for r in records)

    async def test_first_try_success_clears_exhausted_key(self, tracker, sessions, fake_sleep):
        with pytest.raises(ConnectionError):
            await tracker.with_retry(Flaky(100), error_type=ErrorType.FETCH, source_id="src-1")

        assert await tracker.with_retry(
            Flaky(0), error_type=ErrorType.FETCH, source_id="src-1"
        ) == "ok"
        assert [(r.retry_count, r.resolved) for r in await _records(sessions)] == [(3, True)]

        # the next run gets a full budget again
        fake_sleep.delays.clear()
        op = Flaky(1)
        await tracker.with_retry(op, error_type=ErrorType.FETCH, source_id="src-1")
        assert op.calls == 2
        assert fake_sleep.delays == [1.0]


class TestRecordFailure:
    async def test_one_open_record_per_key(self, tracker, sessions):
        first = await tracker.record_failure(
            ErrorType.ANALYSIS, ValueError("bad json"), article_id="a1"
        )
        second = await tracker.record_failure(
            ErrorType.ANALYSIS, ValueError("still bad"), article_id="a1"
        )

        assert first.error_id == second.error_id
        assert (first.retry_count, second.retry_count) == (0, 1)
        assert second.should_retry is True

        [record] = await _records(sessions)
        assert record.message == "still bad"

    async def test_keys_differ_by_type_and_ids(self, tracker, sessions):
        await tracker.record_failure(ErrorType.FETCH, RuntimeError("x"), source_id="src-1")
        await tracker.record_failure(ErrorType.FETCH, RuntimeError("x"), source_id="src-2")
        await tracker.record_failure(ErrorType.FETCH, RuntimeError("x"))
        await tracker.record_failure(ErrorType.ANALYSIS, RuntimeError("x"), source_id="src-1")

        assert len(await _records(sessions)) == 4

    async def test_should_retry_false_once_budget_spent(self, tracker):
        results = [
            await tracker.record_failure(
                ErrorType.ANALYSIS, RuntimeError("x"), article_id="a1", max_retries=2
            )
            for _ in range(3)
        ]
        assert [r.should_retry for r in results] == [True, True, False]

    async def test_message_falls_back_to_exception_name(self, tracker, sessions):
        await tracker.record_failure(ErrorType.ANALYSIS, TimeoutError(), article_id="a1")
        [record] = await _records(sessions)
        assert record.message == "TimeoutError"

    async def test_resolved_record_starts_a_fresh_budget(self, tracker, sessions):
        await tracker.record_failure(ErrorType.ANALYSIS, RuntimeError("x"), article_id="a1")
        await tracker.resolve_article_errors("a1")

        fresh = await tracker.record_failure(ErrorType.ANALYSIS, RuntimeError("y"), article_id="a1")
        assert fresh.retry_count == 0
        assert len(await _records(sessions)) == 2


class TestMaintenance:
    async def test_stats(self, tracker):
        await tracker.record_failure(ErrorType.FETCH, RuntimeError("dns"), source_id="s1")
        await tracker.record_failure(ErrorType.FETCH, RuntimeError("tls"), source_id="s2")
        await tracker.record_failure(ErrorType.ANALYSIS, RuntimeError("json"), article_id="a1")
        await tracker.resolve_source_errors("s2")

        stats = await tracker.get_stats()
        assert stats.total == 3
        assert stats.unresolved == 2
        assert stats.by_type == {"fetch": 1, "analysis": 1}
        assert {e.message for e in stats.recent_errors} == {"dns", "json"}

    async def test_recent_errors_limited(self, tracker):
        for n in range(5):
            await tracker.record_failure(ErrorType.ANALYSIS, RuntimeError("x"), article_id=f"a{n}")
        stats = await tracker.get_stats(recent_limit=2)
        assert len(stats.recent_errors) == 2

    async def test_resolve_all(self, tracker):
        await tracker.record_failure(ErrorType.FETCH, RuntimeError("x"), source_id="s1")
        await tracker.record_failure(ErrorType.ANALYSIS, RuntimeError("x"), article_id="a1")

        assert await tracker.resolve_all() == 2
        assert (await tracker.get_stats()).unresolved == 0
        assert await tracker.resolve_all() == 0

    async def test_delete_resolved_older_than(self, tracker, sessions):
        await tracker.record_failure(ErrorType.FETCH, RuntimeError("old"), source_id="s1")
        await tracker.record_failure(ErrorType.FETCH, RuntimeError("recent"), source_id="s2")
        await tracker.record_failure(ErrorType.FETCH, RuntimeError("open"), source_id="s3")
        await tracker.resolve_source_errors("s1")
        await tracker.resolve_source_errors("s2")

        async with sessions() as session:
            old = await session.scalar(select(ErrorRecord).where(ErrorRecord.source_id == "s1"))
            old.resolved_at = utcnow() - timedelta(days=45)
            await session.commit()

        assert await tracker.delete_resolved_older_than(days=30) == 1
        assert {r.source_id for r in await _records(sessions)} == {"s2", "s3"}
