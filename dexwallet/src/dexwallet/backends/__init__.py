"""
Omni daemon backend implementations.

Available backends:
- OmniCoreBackend: Omni-enabled coin daemon via JSON-RPC (wallet loaded)
"""

from dexwallet.backends.base import (
    AddressBalance,
    BlockchainInfo,
    DecodedTx,
    DexSell,
    FundedTx,
    NetworkInfo,
    OmniBackend,
    OmniTx,
    PropertyBalance,
    Purchase,
    SignedTx,
    WalletTx,
)
from dexwallet.backends.omni_core import OmniCoreBackend

__all__ = [
    "AddressBalance",
    "BlockchainInfo",
    "DecodedTx",
    "DexSell",
    "FundedTx",
    "NetworkInfo",
    "OmniBackend",
    "OmniCoreBackend",
    "OmniTx",
    "PropertyBalance",
    "Purchase",
    "SignedTx",
    "WalletTx",
]
