"""
Error taxonomy for the DEx engine.

Errors that mean "value may already have moved on-chain" carry enough state
for the caller to resume or alert; every other error means nothing was
broadcast by the failing operation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dexcore.models import UTXO


class DexError(Exception):
    """Base class for all engine errors."""


class RPCError(DexError):
    """The coin daemon returned an error or could not be reached."""

    def __init__(self, message: str, method: str | None = None, code: int | None = None):
        super().__init__(message)
        self.method = method
        self.code = code


class DecodeError(RPCError):
    """A raw transaction could not be decoded."""


class RetryExhaustedError(RPCError):
    """A bounded retry gave up; ``__cause__`` holds the last error."""

    def __init__(self, message: str, attempts: int, method: str | None = None):
        super().__init__(message, method=method)
        self.attempts = attempts


class InsufficientFundsError(DexError):
    """A funding UTXO cannot cover the fee plus the required change/dust."""

    def __init__(self, message: str, available: int = 0, required: int = 0):
        super().__init__(message)
        self.available = available
        self.required = required


class InvalidRangeError(DexError, ValueError):
    """A range query was given negative or inverted bounds."""


class LogicalInvariantError(DexError):
    """A configuration or programming bug, e.g. a missing fee table entry."""


class UnsupportedAddressError(LogicalInvariantError):
    """An address matches none of the platform's prefix patterns."""


class OrderError(DexError):
    """An order was driven in a way its state machine does not allow."""


class ChainSendPartialFailure(DexError):
    """
    One hop of a chain-send failed.

    Hops ``0 .. completed_hops - 1`` were broadcast and are irreversible.
    ``last_utxo`` is the output the next attempt must spend; when
    ``completed_hops`` is zero it is the original funding UTXO and nothing
    moved.
    """

    def __init__(
        self,
        failed_hop: int,
        last_utxo: UTXO,
        broadcast_txids: list[str],
        cause: BaseException,
    ):
        self.failed_hop = failed_hop
        self.last_utxo = last_utxo
        self.broadcast_txids = list(broadcast_txids)
        self.cause = cause
        super().__init__(
            f"Chain send failed at hop {failed_hop} after {self.completed_hops} "
            f"broadcast hop(s), last UTXO {last_utxo.txid}:{last_utxo.vout}: {cause}"
        )

    @property
    def completed_hops(self) -> int:
        return len(self.broadcast_txids)

    @property
    def chain_state_changed(self) -> bool:
        return self.completed_hops > 0
