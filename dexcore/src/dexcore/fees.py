"""
Pure fee arithmetic.

Fee rates are integers in satoshis per 1000 virtual bytes (the daemon's
coin-per-kB rate scaled by 1e8). Sizes are Decimals because the segwit
discount produces quarter-byte sizes. The fee is always rounded up to the
next satoshi: underestimating risks a transaction that never confirms.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from dexcore.amounts import ceil_sats, to_sats
from dexcore.constants import (
    EMPTY_TX_VSIZE,
    IN_P2PKH_VSIZE,
    IN_P2WSH_VSIZE,
    OPRET_SEND_VSIZE,
    OUT_P2PKH_VSIZE,
    OUT_P2WSH_VSIZE,
)
from dexcore.errors import LogicalInvariantError
from dexcore.models import FeeEstimate
from dexcore.platforms import AddressType, PlatformConstants

# An all-legacy transaction carries no segwit marker and flag
SEGWIT_MARKER_VSIZE = Decimal("0.5")


def feerate_from_coin_per_kb(rate: int | float | str | Decimal) -> int:
    """Convert an ``estimatesmartfee`` coin/kB rate to sats per 1000 vbytes."""
    return to_sats(rate, exact=False)


def fee_for_size(size_vbytes: Decimal | int, feerate: int) -> int:
    """
    Fee in satoshis for ``size_vbytes`` at ``feerate`` sats/kvB, rounded up.

    Monotonically non-decreasing in both arguments.
    """
    if size_vbytes < 0 or feerate < 0:
        raise ValueError(f"Negative size or fee rate: size={size_vbytes}, feerate={feerate}")
    return ceil_sats(Decimal(size_vbytes) * feerate / 1000)


def fee_estimate(size_vbytes: Decimal | int, feerate: int) -> FeeEstimate:
    return FeeEstimate(
        size_vbytes=Decimal(size_vbytes),
        feerate=feerate,
        fee=fee_for_size(size_vbytes, feerate),
    )


def input_vsize(address_type: AddressType) -> Decimal:
    return IN_P2PKH_VSIZE if address_type == AddressType.LEGACY else IN_P2WSH_VSIZE


def output_vsize(address_type: AddressType) -> Decimal:
    return OUT_P2PKH_VSIZE if address_type == AddressType.LEGACY else OUT_P2WSH_VSIZE


def send_vsize(from_type: AddressType, to_type: AddressType) -> Decimal:
    """Size of a simple-send hop: one input, one output, send null-data output."""
    size = EMPTY_TX_VSIZE + input_vsize(from_type) + output_vsize(to_type) + OPRET_SEND_VSIZE
    if from_type == AddressType.LEGACY and to_type == AddressType.LEGACY:
        size -= SEGWIT_MARKER_VSIZE
    return size


@dataclass(frozen=True)
class SendFeeTable:
    """Per-hop simple-send fee keyed by ``(from_type, to_type)``."""

    fees: dict[tuple[AddressType, AddressType], int] = field(default_factory=dict)

    @classmethod
    def at_feerate(cls, feerate: int) -> SendFeeTable:
        return cls(
            fees={
                (f, t): fee_for_size(send_vsize(f, t), feerate)
                for f in AddressType
                for t in AddressType
            }
        )

    def lookup(self, from_type: AddressType, to_type: AddressType) -> int:
        try:
            return self.fees[(from_type, to_type)]
        except KeyError:
            raise LogicalInvariantError(
                f"No send fee for address type pair {from_type.value}_{to_type.value}"
            ) from None

    def for_hop(self, platform: PlatformConstants, from_address: str, to_address: str) -> int:
        return self.lookup(platform.address_type(from_address), platform.address_type(to_address))
