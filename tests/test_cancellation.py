"""
Tests for cooperative request cancellation
"""

import asyncio

import pytest

from services.ai_service.cancellation import CancellationToken
from services.errors import ProviderError


class TestCancellationToken:

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        token = CancellationToken()

        async def answer():
            return 42

        assert await token.run(answer()) == 42
        assert token.cancelled is False

    @pytest.mark.asyncio
    async def test_run_propagates_errors(self):
        async def boom():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await CancellationToken().run(boom())

    @pytest.mark.asyncio
    async def test_cancelled_before_run(self):
        token = CancellationToken()
        token.cancel()
        started = []

        async def work():
            started.append(True)

        with pytest.raises(ProviderError) as exc_info:
            await token.run(work())

        assert exc_info.value.is_cancellation
        assert started == []

    @pytest.mark.asyncio
    async def test_cancel_aborts_in_flight_call(self):
        token = CancellationToken()
        aborted = asyncio.Event()

        async def hang():
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                aborted.set()
                raise

        asyncio.get_running_loop().call_later(0.01, token.cancel, "Generation stopped")

        with pytest.raises(ProviderError) as exc_info:
            await asyncio.wait_for(token.run(hang()), timeout=5)

        assert exc_info.value.is_cancellation
        assert exc_info.value.detail == "Generation stopped"
        assert aborted.is_set()

    def test_cancel_is_one_shot(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"
        with pytest.raises(ProviderError):
            token.raise_if_cancelled()
