"""
Per-coin platform constants.

The engine never hardcodes coin specifics; a ``PlatformConstants`` instance is
injected wherever dust thresholds, address prefixes, reference addresses or
the protocol activation height are needed.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from dexcore.errors import LogicalInvariantError, UnsupportedAddressError


class AddressType(str, Enum):
    LEGACY = "leg"
    SEGWIT = "sw"


class PlatformConstants(BaseModel):
    """Constants for one supported coin. Amounts are in satoshis."""

    model_config = ConfigDict(frozen=True)

    key: str
    coin_name: str
    coin_ticker: str
    omni_name: str
    subversion_prefix: str

    min_fee: int = Field(..., ge=0, description="Trade fee floor")
    fee_address: str
    exodus_address: str
    genesis_time: int
    omni_start_height: int = Field(..., ge=0)
    omni_start_time: int

    min_change: int = Field(..., gt=0, description="Dust threshold for change/reference outputs")
    multisig_one_change: int = Field(..., gt=0)
    multisig_two_change: int = Field(..., gt=0)
    default_feerate: int = Field(..., gt=0, description="Fallback fee rate in sats per 1000 vbytes")

    addr_legacy_prefixes: str
    addr_segwit_prefixes: str

    def address_type(self, address: str) -> AddressType:
        """Classify an address by prefix pattern."""
        if re.match(self.addr_legacy_prefixes, address):
            return AddressType.LEGACY
        if re.match(self.addr_segwit_prefixes, address):
            return AddressType.SEGWIT
        raise UnsupportedAddressError(f"Unsupported {self.coin_name} address {address}")


FEATHERCOIN = PlatformConstants(
    key="FEATHERCOIN",
    coin_name="Feathercoin",
    coin_ticker="FTC",
    omni_name="Omnifeather",
    subversion_prefix="/Feathercoin",
    min_fee=50_000_000,
    fee_address="34sGcLqfNK83RHdNPiVjkbxRHgNPSD7kzT",
    exodus_address="6eXoDUSUV7yrAxKVNPEeKAHMY8San5Z37V",
    genesis_time=1366147060,
    omni_start_height=3454000,
    omni_start_time=1607663639,
    min_change=546,
    multisig_one_change=684,
    multisig_two_change=786,
    default_feerate=2_000_000,
    addr_legacy_prefixes=r"^(6|7)",
    addr_segwit_prefixes=r"^(3|fc1)",
)

LITECOIN = PlatformConstants(
    key="LITECOIN",
    coin_name="Litecoin",
    coin_ticker="LTC",
    omni_name="OmniLite",
    subversion_prefix="/Litecoin",
    min_fee=500_000,
    fee_address="MWTwSHMmif2qckh7pQjcp6DrH4AUgFtoiv",
    exodus_address="LTceXoduS2cetpWJSe47M25i5oKjEccN1h",
    genesis_time=1317972660,
    omni_start_height=2093636,
    omni_start_time=1627314304,
    min_change=5460,
    multisig_one_change=6840,
    multisig_two_change=7860,
    default_feerate=100_000,
    addr_legacy_prefixes=r"^L",
    addr_segwit_prefixes=r"^(3|M)",
)

BITCOIN = PlatformConstants(
    key="BITCOIN",
    coin_name="Bitcoin",
    coin_ticker="BTC",
    omni_name="Omni",
    subversion_prefix="/Bitcoin",
    min_fee=1960,
    fee_address="3AvttmdH8zrNb7TavwRomkbXJ4SqseJxa8",
    exodus_address="1EXoDusjGwvnjZUyKkxZ4UHEf77z6A5S4P",
    genesis_time=1231006505,
    omni_start_height=252317,
    omni_start_time=1377993874,
    min_change=546,
    multisig_one_change=684,
    multisig_two_change=786,
    default_feerate=20_000,
    addr_legacy_prefixes=r"^1",
    addr_segwit_prefixes=r"^(3|bc1)",
)

PLATFORMS: dict[str, PlatformConstants] = {
    p.key: p for p in (FEATHERCOIN, LITECOIN, BITCOIN)
}


def get_platform(key: str) -> PlatformConstants:
    try:
        return PLATFORMS[key.upper()]
    except KeyError:
        raise LogicalInvariantError(f"Unknown platform {key}") from None


def platform_from_subversion(subversion: str) -> PlatformConstants:
    """Pick the platform whose client subversion prefix matches the daemon."""
    for platform in PLATFORMS.values():
        if subversion.startswith(platform.subversion_prefix):
            return platform
    raise LogicalInvariantError(f"Unknown platform {subversion}")
