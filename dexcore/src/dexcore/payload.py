"""
Payload embedding cost.

A protocol payload travels either in a single null-data output (short
payloads) or split into 30-byte packets carried by bare multisig outputs.
Multisig outputs must carry dust-level value, so long payloads cost both
bytes and unavoidable change.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from dexcore.constants import (
    MAX_OPRETURN_PAYLOAD,
    MULTISIG_ONE_VSIZE,
    MULTISIG_TWO_VSIZE,
    OPRET_EMPTY_VSIZE,
    OUT_P2PKH_VSIZE,
    PACKET_SIZE,
    PACKETS_PER_MULTISIG,
)
from dexcore.platforms import PlatformConstants


@dataclass(frozen=True)
class PayloadOuts:
    extra_size: Decimal
    extra_change: int
    multisig_two: int = 0
    multisig_one: int = 0

    @property
    def uses_multisig(self) -> bool:
        return self.multisig_two + self.multisig_one > 0


def payload_length(payload: str | bytes) -> int:
    """Length in bytes; daemon payloads arrive hex-encoded."""
    if isinstance(payload, bytes):
        return len(payload)
    return len(payload) // 2


def payload_uses_multisig(payload: str | bytes) -> bool:
    return payload_length(payload) > MAX_OPRETURN_PAYLOAD


def calc_payload_outs(payload: str | bytes, platform: PlatformConstants) -> PayloadOuts:
    length = payload_length(payload)

    if length <= MAX_OPRETURN_PAYLOAD:
        return PayloadOuts(extra_size=OPRET_EMPTY_VSIZE + length, extra_change=0)

    packets = -(-length // PACKET_SIZE)
    multisig_two, multisig_one = divmod(packets, PACKETS_PER_MULTISIG)

    # Multisig outputs plus the plain reference (exodus) output
    extra_size = (
        MULTISIG_TWO_VSIZE * multisig_two + MULTISIG_ONE_VSIZE * multisig_one + OUT_P2PKH_VSIZE
    )
    extra_change = (
        platform.multisig_two_change * multisig_two
        + platform.multisig_one_change * multisig_one
        + platform.min_change
    )
    return PayloadOuts(
        extra_size=extra_size,
        extra_change=extra_change,
        multisig_two=multisig_two,
        multisig_one=multisig_one,
    )
