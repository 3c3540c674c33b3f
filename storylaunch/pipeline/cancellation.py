"""Cooperative cancellation token passed through every stage call."""

from __future__ import annotations

from ..errors import PipelineCancelled


class CancellationToken:
    """Flag checked at stage boundaries and before external calls.

    Cancelling never interrupts an in-flight call; the next checkpoint observes
    the flag and unwinds the run.
    """

    __slots__ = ("_cancelled", "reason")

    def __init__(self) -> None:
        """Initialize an uncancelled token."""

        self._cancelled = False
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        """Return whether cancellation was requested."""

        return self._cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation; repeated calls keep the first reason."""

        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    def raise_if_cancelled(self) -> None:
        """Raise `PipelineCancelled` when cancellation was requested."""

        if self._cancelled:
            raise PipelineCancelled(self.reason or "cancelled")
