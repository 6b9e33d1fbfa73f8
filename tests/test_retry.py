"""
Tests for retry with backoff and in-flight request tracking.
"""
import asyncio

import pytest

from sijoer_server.errors import RemoteError
from sijoer_server.retry import FetchResult, InFlightRequests, backoff_delay, retry


class ScriptedOperation:
    """Returns queued results in order and counts calls."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self):
        result = self.results[min(self.calls, len(self.results) - 1)]
        self.calls += 1
        return result


def failure(message="boom", retryable=True):
    return FetchResult(error=RemoteError(message, retryable=retryable))


class TestBackoffDelay:
    """Capped exponential delay."""

    def test_doubles_until_cap(self):
        assert [backoff_delay(i) for i in range(5)] == [1000, 2000, 4000, 5000, 5000]

    def test_custom_base_and_cap(self):
        assert [backoff_delay(i, 100, 250) for i in range(3)] == [100, 200, 250]


class TestRetry:
    """Retry loop behaviour."""

    def test_first_success_returns_immediately(self, recording_sleep):
        """Should call once and never wait"""
        operation = ScriptedOperation(FetchResult(data="ok"))

        result = asyncio.run(retry(operation, 3, 1000, sleep=recording_sleep))

        assert result.data == "ok"
        assert result.attempts == 1
        assert operation.calls == 1
        assert recording_sleep.delays == []

    def test_succeeds_after_two_failures(self, recording_sleep):
        """Should return the success on the third attempt"""
        operation = ScriptedOperation(failure(), failure(), FetchResult(data=[1, 2]))

        result = asyncio.run(retry(operation, 3, 1000, sleep=recording_sleep))

        assert result.ok
        assert result.data == [1, 2]
        assert operation.calls == 3
        assert recording_sleep.delays == [1.0, 2.0]

    def test_always_failing_returns_last_failure(self, recording_sleep):
        """Should stop after max attempts with the final error"""
        last = failure("third")
        operation = ScriptedOperation(failure("first"), failure("second"), last)

        result = asyncio.run(retry(operation, 3, 1000, sleep=recording_sleep))

        assert operation.calls == 3
        assert result.error is last.error
        assert result.attempts == 3
        assert recording_sleep.delays[1] <= 2.0
        assert recording_sleep.delays == sorted(recording_sleep.delays)

    def test_delays_are_capped(self, recording_sleep):
        """Should never wait longer than the cap"""
        operation = ScriptedOperation(failure())

        asyncio.run(retry(operation, 6, 1000, sleep=recording_sleep))

        assert recording_sleep.delays == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_non_retryable_error_stops_early(self, recording_sleep):
        """Should not repeat an operation whose error is final"""
        operation = ScriptedOperation(failure(retryable=False), FetchResult(data="never"))

        result = asyncio.run(retry(operation, 3, 1000, sleep=recording_sleep))

        assert operation.calls == 1
        assert not result.ok
        assert recording_sleep.delays == []

    def test_at_least_one_attempt(self, recording_sleep):
        operation = ScriptedOperation(failure())

        asyncio.run(retry(operation, 0, sleep=recording_sleep))

        assert operation.calls == 1

    def test_concurrent_calls_keep_separate_counters(self, recording_sleep):
        """Should count attempts per call when sequences interleave"""
        first = ScriptedOperation(failure(), FetchResult(data="a"))
        second = ScriptedOperation(failure(), failure(), FetchResult(data="b"))

        async def scenario():
            return await asyncio.gather(
                retry(first, 3, 1000, sleep=recording_sleep),
                retry(second, 3, 1000, sleep=recording_sleep),
            )

        a, b = asyncio.run(scenario())

        assert (a.data, a.attempts) == ("a", 2)
        assert (b.data, b.attempts) == ("b", 3)

    def test_waits_without_blocking_other_tasks(self):
        """Should let other tasks run while waiting between attempts"""
        events = []
        operation = ScriptedOperation(failure(), FetchResult(data="done"))

        async def other():
            events.append("other")

        async def scenario():
            task = asyncio.ensure_future(retry(operation, 2, base_delay_ms=10))
            await asyncio.sleep(0)
            await other()
            result = await task
            events.append(result.data)

        asyncio.run(scenario())

        assert events == ["other", "done"]


class TestInFlightRequests:
    """Stale-response guard for superseded requests."""

    def test_new_request_cancels_previous(self):
        """Should cancel a pending request for the same key"""
        requests = InFlightRequests()

        async def scenario():
            gate = asyncio.Event()

            async def slow():
                await gate.wait()
                return "old"

            async def fast():
                return "new"

            first = requests.start("options", slow())
            second = requests.start("options", fast())
            result = await second
            await asyncio.wait({first})
            return first, result

        first, result = asyncio.run(scenario())

        assert first.cancelled()
        assert result == "new"

    def test_is_current_inside_task(self):
        """Should report whether the running task is still the latest"""
        requests = InFlightRequests()

        async def scenario():
            async def job():
                await asyncio.sleep(0)
                return requests.is_current("key")

            return await requests.start("key", job())

        assert asyncio.run(scenario()) is True

    def test_other_keys_are_independent(self):
        requests = InFlightRequests()

        async def scenario():
            gate = asyncio.Event()

            async def wait():
                await gate.wait()
                return "a"

            a = requests.start("a", wait())
            b = requests.start("b", asyncio.sleep(0, result="b"))
            await b
            gate.set()
            return await a

        assert asyncio.run(scenario()) == "a"

    def test_completed_requests_are_forgotten(self):
        requests = InFlightRequests()

        async def scenario():
            await requests.start("key", asyncio.sleep(0))
            await asyncio.sleep(0)
            return "key" in requests

        assert asyncio.run(scenario()) is False

    def test_cancel_all(self):
        requests = InFlightRequests()

        async def scenario():
            task = requests.start("key", asyncio.Event().wait())
            requests.cancel_all()
            await asyncio.wait({task})
            return task

        assert asyncio.run(scenario()).cancelled()
