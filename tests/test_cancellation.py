"""Tests for CancellationToken."""

import asyncio

import pytest
from cnab_runtime.cancellation import CancellationState
from cnab_runtime.cancellation import CancellationToken


class TestCancellationToken:
    """Tests for request, wait and child propagation."""

    def test_first_reason_wins(self) -> None:
        """Only the first request changes state."""
        token = CancellationToken()

        assert token.request("first")
        assert not token.request("second")
        assert token.state == CancellationState.CANCELLED
        assert token.reason == "first"

    @pytest.mark.asyncio
    async def test_wait_returns_reason(self) -> None:
        """wait() unblocks once cancellation is requested."""
        token = CancellationToken()
        waiter = asyncio.ensure_future(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        token.request("stop")

        assert await asyncio.wait_for(waiter, timeout=5) == "stop"

    def test_parent_cancels_children(self) -> None:
        """A registered child follows its parent; the parent ignores the child."""
        parent = CancellationToken()
        child = CancellationToken()
        parent.register_child(child)

        child.request("child only")
        assert not parent.is_cancelled

        other = CancellationToken()
        parent.register_child(other)
        parent.request("abort")
        assert other.is_cancelled
        assert other.reason == "abort"

    def test_register_on_cancelled_parent(self) -> None:
        """A child registered after cancellation is cancelled immediately."""
        parent = CancellationToken()
        parent.request("too late")
        child = CancellationToken()

        parent.register_child(child)

        assert child.is_cancelled
        assert child.reason == "too late"

    def test_unregistered_child_is_left_alone(self) -> None:
        """Unregistering stops propagation."""
        parent = CancellationToken()
        child = CancellationToken()
        parent.register_child(child)
        parent.unregister_child(child)

        parent.request()

        assert not child.is_cancelled

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_others(self) -> None:
        """Every callback runs even when one raises."""
        token = CancellationToken()
        called: list[str] = []

        async def broken() -> None:
            raise RuntimeError("boom")

        async def fine() -> None:
            called.append("fine")

        token.on_cancel(broken)
        token.on_cancel(fine)
        await token.trigger_callbacks()

        assert called == ["fine"]
