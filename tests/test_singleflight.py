"""
Tests for single-flight initialization and the shared ledger config.
"""

import asyncio

import pytest

from memvault.memory.ledger import get_shared_config, reset_shared_config
from memvault.memory.singleflight import SingleFlight


class Counter:
    """Async factory that counts its invocations."""

    def __init__(self, fail_times=0, delay=0.01):
        self.calls = 0
        self.fail_times = fail_times
        self.delay = delay

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.calls <= self.fail_times:
            raise ConnectionError("ledger unreachable")
        return {"instance": self.calls}


class TestSingleFlight:
    """Test the single-flight cell."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self):
        """Test that concurrent first callers get the same object from one call."""
        factory = Counter()
        cell = SingleFlight(factory, name="test")

        results = await asyncio.gather(*(cell.get_or_init() for _ in range(10)))

        assert factory.calls == 1
        assert all(result is results[0] for result in results)
        assert cell.is_ready

    @pytest.mark.asyncio
    async def test_value_is_cached(self):
        """Test that later calls reuse the cached value."""
        factory = Counter()
        cell = SingleFlight(factory)

        first = await cell.get_or_init()
        second = await cell.get_or_init()

        assert first is second
        assert factory.calls == 1

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self):
        """Test that a failure reaches every waiter and the next call retries."""
        factory = Counter(fail_times=1)
        cell = SingleFlight(factory)

        results = await asyncio.gather(
            cell.get_or_init(), cell.get_or_init(), return_exceptions=True
        )
        assert all(isinstance(r, ConnectionError) for r in results)
        assert factory.calls == 1
        assert not cell.is_ready
        assert not cell.in_flight

        value = await cell.get_or_init()
        assert value == {"instance": 2}
        assert factory.calls == 2

    @pytest.mark.asyncio
    async def test_caller_cancellation_does_not_abort(self):
        """Test that cancelling one waiter leaves the shared call running."""
        release = asyncio.Event()

        async def factory():
            await release.wait()
            return "ready"

        cell = SingleFlight(factory)
        first = asyncio.ensure_future(cell.get_or_init())
        second = asyncio.ensure_future(cell.get_or_init())
        await asyncio.sleep(0)

        first.cancel()
        release.set()

        assert await second == "ready"
        with pytest.raises(asyncio.CancelledError):
            await first
        assert cell.is_ready

    @pytest.mark.asyncio
    async def test_reset(self):
        """Test that reset forgets the value and can swap the factory."""
        cell = SingleFlight(Counter())
        await cell.get_or_init()

        replacement = Counter()
        cell.reset(replacement)

        assert not cell.is_ready
        await cell.get_or_init()
        assert replacement.calls == 1


class TestSharedConfig:
    """Test the process-wide shared ledger config."""

    @pytest.mark.asyncio
    async def test_concurrent_first_calls(self):
        """Test that two concurrent first calls resolve to one config object."""
        factory = Counter()
        reset_shared_config(factory)

        first, second = await asyncio.gather(get_shared_config(), get_shared_config())

        assert first is second
        assert factory.calls == 1

    @pytest.mark.asyncio
    async def test_failed_build_retries(self):
        """Test that a failed build is retried on the next call."""
        factory = Counter(fail_times=1)
        reset_shared_config(factory)

        with pytest.raises(ConnectionError):
            await get_shared_config()

        config = await get_shared_config()
        assert config == {"instance": 2}

    @pytest.mark.asyncio
    async def test_builds_from_configuration(self, shared_config):
        """Test the default builder against the test configuration."""
        config = await get_shared_config()

        assert config.environment == "development"
        assert config.hnsw_params.m == 16
        assert len(config.owner_address) == 43
        assert await config.ledger.get_balance(config.owner_address) == 100.0
