"""
dexcore - Core library for the Omni DEx trading engine

Provides amounts, platform constants, fee arithmetic, payload sizing, shared
models and the error taxonomy.
"""

__version__ = "0.1.0"

from dexcore.amounts import format_amount, format_quantity, from_sats, to_decimal, to_sats
from dexcore.errors import (
    ChainSendPartialFailure,
    DecodeError,
    DexError,
    InsufficientFundsError,
    InvalidRangeError,
    LogicalInvariantError,
    OrderError,
    RetryExhaustedError,
    RPCError,
    UnsupportedAddressError,
)
from dexcore.fees import SendFeeTable, fee_estimate, fee_for_size, feerate_from_coin_per_kb
from dexcore.models import (
    UTXO,
    AddressAsset,
    AssetTrade,
    FeeEstimate,
    FillOrder,
    FillPlan,
    FillSend,
    OrderType,
    Side,
    TradeStatus,
)
from dexcore.payload import PayloadOuts, calc_payload_outs
from dexcore.platforms import (
    BITCOIN,
    FEATHERCOIN,
    LITECOIN,
    PLATFORMS,
    AddressType,
    PlatformConstants,
    get_platform,
    platform_from_subversion,
)
from dexcore.retry import retry_async

__all__ = [
    "AddressAsset",
    "AddressType",
    "AssetTrade",
    "BITCOIN",
    "ChainSendPartialFailure",
    "DecodeError",
    "DexError",
    "FEATHERCOIN",
    "FeeEstimate",
    "FillOrder",
    "FillPlan",
    "FillSend",
    "InsufficientFundsError",
    "InvalidRangeError",
    "LITECOIN",
    "LogicalInvariantError",
    "OrderError",
    "OrderType",
    "PLATFORMS",
    "PayloadOuts",
    "PlatformConstants",
    "RPCError",
    "RetryExhaustedError",
    "SendFeeTable",
    "Side",
    "TradeStatus",
    "UTXO",
    "UnsupportedAddressError",
    "calc_payload_outs",
    "fee_estimate",
    "fee_for_size",
    "feerate_from_coin_per_kb",
    "format_amount",
    "format_quantity",
    "from_sats",
    "get_platform",
    "platform_from_subversion",
    "retry_async",
    "to_decimal",
    "to_sats",
]
