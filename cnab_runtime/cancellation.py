"""
Cancellation primitives for cooperative run cancellation.

The orchestrator provides the MECHANISM (token with state and a wait
handle). The caller provides the POLICY (Ctrl+C, deadline, API request).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class CancellationState(Enum):
    """Cancellation state machine states."""

    NONE = "none"  # Running normally
    CANCELLED = "cancelled"  # Abort the in-flight driver call and skip the rest


@dataclass(eq=False)
class CancellationToken:
    """
    Cancellation token shared between a caller and a run.

    State Machine:
        NONE -> CANCELLED (request() or caller deadline)

    Example:
        token = CancellationToken()
        loop.add_signal_handler(signal.SIGINT, token.request, "interrupted")
        summary = await orchestrator.execute(options, cancellation=token)
    """

    _state: CancellationState = field(default=CancellationState.NONE)
    _reason: str | None = None
    _event: asyncio.Event = field(default_factory=asyncio.Event)
    _child_tokens: set[CancellationToken] = field(default_factory=set)
    _on_cancel_callbacks: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    @property
    def state(self) -> CancellationState:
        """Current cancellation state."""
        return self._state

    @property
    def is_cancelled(self) -> bool:
        """True once cancellation was requested."""
        return self._state == CancellationState.CANCELLED

    @property
    def reason(self) -> str | None:
        """Reason given to the first request()."""
        return self._reason

    def request(self, reason: str = "cancelled") -> bool:
        """
        Request cancellation.

        Returns:
            True if state changed, False if already cancelled
        """
        if self._state == CancellationState.CANCELLED:
            return False
        self._state = CancellationState.CANCELLED
        self._reason = reason
        self._event.set()
        logger.info(f"Cancellation requested: {reason}")
        for child in self._child_tokens:
            child.request(reason)
        return True

    async def wait(self) -> str:
        """Block until cancellation is requested; returns the reason."""
        await self._event.wait()
        return self._reason or "cancelled"

    def register_child(self, child_token: CancellationToken) -> None:
        """Register a child token for propagation."""
        self._child_tokens.add(child_token)
        if self.is_cancelled:
            child_token.request(self._reason or "cancelled")

    def unregister_child(self, child_token: CancellationToken) -> None:
        """Unregister a child token."""
        self._child_tokens.discard(child_token)

    def on_cancel(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Register callback to be awaited when the run observes cancellation."""
        self._on_cancel_callbacks.append(callback)

    async def trigger_callbacks(self) -> None:
        """Await every registered cancellation callback.

        A failing callback is logged and does not stop the others from running.
        """
        for callback in self._on_cancel_callbacks:
            try:
                await callback()
            except Exception as e:
                logger.warning(f"Error in cancellation callback: {e}")
