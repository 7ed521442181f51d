"""
Core data models shared by the wallet backend and the trading engine.

Amounts are satoshi integers throughout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from dexcore.constants import COIN


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    CANCELED = "CANCELED"


@dataclass(frozen=True)
class UTXO:
    """
    A spendable output.

    Immutable: spending a UTXO produces a new value via ``successor`` rather
    than mutating this one, so a chain of dependent transactions reads as
    ``UTXO_0 -> UTXO_1 -> ... -> UTXO_n``.
    """

    txid: str
    vout: int
    address: str
    amount: int
    confirmations: int = 0

    def successor(self, txid: str, address: str, amount: int, vout: int = 0) -> UTXO:
        return UTXO(txid=txid, vout=vout, address=address, amount=amount, confirmations=0)

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class FeeEstimate:
    size_vbytes: Decimal  # fractional sizes come from the segwit discount
    feerate: int  # sats per 1000 vbytes
    fee: int


@dataclass(frozen=True)
class FillOrder:
    """One counterparty sell order being (partially) accepted when buying."""

    address: str
    quantity: int
    pay_amount: int
    min_fee: int


@dataclass(frozen=True)
class FillSend:
    """One hop of a multi-address asset consolidation."""

    address: str
    amount: int


@dataclass(frozen=True)
class AddressAsset:
    """Per-address balance of one property, as fed to the chain-send planner."""

    address: str
    amount: int
    occupied: bool = False
    pending: bool = False


@dataclass(frozen=True)
class AssetTrade:
    """
    Historical DEx trade record sourced from chain data.

    ``status`` is derived for stored rows: a zero quantity on the sell side
    denotes a cancelled offer.
    """

    txid: str
    block_height: int
    timestamp: int
    status: TradeStatus
    id_buy: int
    id_sell: int
    quantity: int
    amount: int
    fee: int
    remaining: int = 0
    is_mine: bool = False
    seller_address: str | None = None

    @property
    def unit_price(self) -> int:
        """Price per whole unit in satoshis (0 when nothing traded)."""
        if self.quantity == 0:
            return 0
        return self.amount * COIN // self.quantity


@dataclass
class Range:
    """Inclusive covered range of a time cache; (-1, -1) means empty."""

    start: int = -1
    end: int = -1

    @property
    def empty(self) -> bool:
        return self.start < 0 and self.end < 0


@dataclass
class FillPlan:
    """Orders selected to fill a buy, and the quantity left unfilled."""

    orders: list[FillOrder] = field(default_factory=list)
    remaining: int = 0

    @property
    def total_quantity(self) -> int:
        return sum(o.quantity for o in self.orders)

    @property
    def total_pay(self) -> int:
        return sum(o.pay_amount for o in self.orders)
