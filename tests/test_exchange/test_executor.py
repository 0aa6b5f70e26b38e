"""Tests for RequestExecutor retry, classification and limiter feedback."""

import ccxt.async_support as ccxt_async
import pytest

from collector.config import RateLimitSettings
from collector.exceptions import ExchangeRequestError, RequestFailedError
from collector.exchange.executor import RequestExecutor
from collector.exchange.retry import RetryPolicy
from collector.exchange.types import ApiResponse
from collector.models import ErrorType
from collector.ratelimit.limiter import RateLimiter
from conftest import FakeClock


@pytest.fixture
def limiter(fake_clock: FakeClock) -> RateLimiter:
    return RateLimiter(
        RateLimitSettings(max_requests_per_second=10, max_weight=1000),
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )


@pytest.fixture
def executor(limiter: RateLimiter, fake_clock: FakeClock) -> RequestExecutor:
    return RequestExecutor(limiter, RetryPolicy(max_attempts=3), sleep=fake_clock.sleep)


class ScriptedRequest:
    """Request function that raises or returns scripted outcomes in order."""

    def __init__(self, clock: FakeClock, outcomes: list) -> None:
        self._clock = clock
        self._outcomes = list(outcomes)
        self.call_times: list[float] = []

    async def __call__(self):  # type: ignore[no-untyped-def]
        self.call_times.append(self._clock.now)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class TestRetries:
    @pytest.mark.asyncio
    async def test_rate_limit_on_second_attempt_waits_before_third(
        self, executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        request = ScriptedRequest(
            fake_clock,
            [
                ExchangeRequestError("connection reset", ErrorType.NETWORK_ERROR),
                ExchangeRequestError("429 Too Many Requests", ErrorType.RATE_LIMIT, retry_after=2.0),
                ApiResponse(data=["ok"]),
            ],
        )

        result = await executor.execute(request, max_attempts=3)

        assert result == ["ok"]
        assert len(request.call_times) == 3
        assert request.call_times[2] - request.call_times[1] >= 10.0
        assert 10.0 in fake_clock.sleeps

    @pytest.mark.asyncio
    async def test_rate_limit_reports_to_limiter(
        self, executor: RequestExecutor, limiter: RateLimiter, fake_clock: FakeClock
    ) -> None:
        request = ScriptedRequest(
            fake_clock,
            [ccxt_async.RateLimitExceeded("binance 429"), ApiResponse(data=[])],
        )

        await executor.execute(request)

        assert limiter.snapshot()["rate_limit_hits"] == 1
        assert limiter.budget.backoff_multiplier == pytest.approx(2.0)
        # No Retry-After: the default 60s cooldown applies to the next attempt
        assert request.call_times[1] - request.call_times[0] >= 60.0

    @pytest.mark.asyncio
    async def test_bad_request_is_not_retried(
        self, executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        request = ScriptedRequest(fake_clock, [ccxt_async.BadSymbol("Invalid symbol")])

        with pytest.raises(RequestFailedError) as exc_info:
            await executor.execute(request)

        assert exc_info.value.error_type is ErrorType.BAD_REQUEST
        assert exc_info.value.attempts == 1
        assert len(request.call_times) == 1

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_attempts(
        self, executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        request = ScriptedRequest(
            fake_clock,
            [ccxt_async.ExchangeNotAvailable("503")] * 3,
        )

        with pytest.raises(RequestFailedError) as exc_info:
            await executor.execute(request, operation="klines:ABCUSDT:1m")

        assert exc_info.value.error_type is ErrorType.SERVER_ERROR
        assert exc_info.value.attempts == 3
        assert fake_clock.sleeps.count(5.0) == 2
        assert "klines:ABCUSDT:1m" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_internal_error_body_is_retried(
        self, executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        request = ScriptedRequest(
            fake_clock,
            [
                ccxt_async.OperationFailed('binance {"code":-1001,"msg":"Internal error"}'),
                ApiResponse(data=["ok"]),
            ],
        )

        assert await executor.execute(request) == ["ok"]
        assert len(request.call_times) == 2
        assert 5.0 in fake_clock.sleeps

    @pytest.mark.asyncio
    async def test_every_attempt_acquires_quota(
        self, executor: RequestExecutor, limiter: RateLimiter, fake_clock: FakeClock
    ) -> None:
        request = ScriptedRequest(
            fake_clock,
            [ccxt_async.RequestTimeout("timeout"), ApiResponse(data=[])],
        )

        await executor.execute(request, weight=2)

        assert limiter.snapshot()["total_requests"] == 2
        assert limiter.budget.weight_used == 4


class TestResponses:
    @pytest.mark.asyncio
    async def test_headers_feed_limiter(
        self, executor: RequestExecutor, limiter: RateLimiter, fake_clock: FakeClock
    ) -> None:
        request = ScriptedRequest(
            fake_clock,
            [ApiResponse(data={"symbols": []}, headers={"x-mbx-used-weight-1m": "321"})],
        )

        result = await executor.execute(request, weight=20)

        assert result == {"symbols": []}
        assert limiter.budget.weight_used == 321

    @pytest.mark.asyncio
    async def test_plain_results_pass_through(
        self, executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        request = ScriptedRequest(fake_clock, [[1, 2, 3]])
        assert await executor.execute(request) == [1, 2, 3]
