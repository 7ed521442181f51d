"""
Cooperative cancellation.
"""

from __future__ import annotations


class CancelToken:
    """
    Flag checked at poll boundaries.

    Setting it never interrupts an in-flight RPC; the holder stops at its
    next check.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self._cancelled})"
