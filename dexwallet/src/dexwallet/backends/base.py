"""
Base Omni daemon backend interface and its tagged result types.

Every RPC the engine uses returns one of the dataclasses below; raw JSON
shapes never leak past ``from_rpc``. Amounts are satoshi integers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from dexcore.amounts import to_sats
from dexcore.errors import RPCError
from dexcore.models import UTXO


def _sats(value: Any) -> int:
    if value is None or value == "":
        return 0
    return to_sats(value, exact=False)


@dataclass
class DecodedTx:
    txid: str
    vsize: int
    size: int = 0

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> DecodedTx:
        return cls(txid=data.get("txid", ""), vsize=data.get("vsize", 0), size=data.get("size", 0))


@dataclass
class WalletTx:
    """``gettransaction`` result. ``fee`` is negative for sends, as reported."""

    txid: str
    confirmations: int
    fee: int = 0
    blocktime: int | None = None

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> WalletTx:
        return cls(
            txid=data["txid"],
            confirmations=data.get("confirmations", 0),
            fee=_sats(data.get("fee")),
            blocktime=data.get("blocktime"),
        )

    @property
    def confirmed(self) -> bool:
        return self.confirmations > 0


@dataclass
class SignedTx:
    hex: str
    complete: bool


@dataclass
class FundedTx:
    hex: str
    fee: int
    change_position: int


@dataclass
class BlockchainInfo:
    chain: str
    blocks: int
    headers: int = 0


@dataclass
class NetworkInfo:
    subversion: str
    version: int = 0


@dataclass
class PropertyBalance:
    property_id: int
    name: str
    balance: int
    reserved: int = 0
    frozen: int = 0


@dataclass
class AddressBalance:
    address: str
    balances: list[PropertyBalance] = field(default_factory=list)

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> AddressBalance:
        return cls(
            address=data["address"],
            balances=[
                PropertyBalance(
                    property_id=int(b["propertyid"]),
                    name=b.get("name", ""),
                    balance=_sats(b.get("balance")),
                    reserved=_sats(b.get("reserved")),
                    frozen=_sats(b.get("frozen")),
                )
                for b in data.get("balances", [])
            ],
        )


@dataclass
class Purchase:
    property_id: int
    amount_bought: int
    amount_paid: int
    is_mine: bool
    valid: bool
    reference_address: str = ""


@dataclass
class OmniTx:
    """
    ``omni_gettransaction`` / ``omni_listpendingtransactions`` entry.

    Only the fields the engine reads are lifted; type-specific extras stay
    in ``raw``.
    """

    txid: str
    type: str
    type_int: int
    sending_address: str = ""
    reference_address: str = ""
    valid: bool = False
    is_mine: bool = False
    block: int | None = None
    blocktime: int | None = None
    property_id: int | None = None
    amount: int = 0
    desired: int = 0
    action: str | None = None
    divisible: bool = True
    purchases: list[Purchase] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> OmniTx:
        # The desired-amount key is named after the coin, e.g. "feathercoindesired"
        desired = next((v for k, v in data.items() if k.endswith("desired")), None)
        return cls(
            txid=data["txid"],
            type=data.get("type", ""),
            type_int=int(data.get("type_int", -1)),
            sending_address=data.get("sendingaddress", ""),
            reference_address=data.get("referenceaddress", ""),
            valid=bool(data.get("valid", False)),
            is_mine=bool(data.get("ismine", False)),
            block=data.get("block"),
            blocktime=data.get("blocktime"),
            property_id=data.get("propertyid"),
            amount=_sats(data.get("amount")),
            desired=_sats(desired),
            action=data.get("action"),
            divisible=bool(data.get("divisible", True)),
            purchases=[
                Purchase(
                    property_id=int(p["propertyid"]),
                    amount_bought=_sats(p.get("amountbought")),
                    amount_paid=_sats(p.get("amountpaid")),
                    is_mine=bool(p.get("ismine", False)),
                    valid=bool(p.get("valid", False)),
                    reference_address=p.get("referenceaddress", ""),
                )
                for p in data.get("purchases", [])
            ],
            raw=data,
        )


@dataclass
class DexSell:
    """Active DEx sell offer (``omni_getactivedexsells``)."""

    txid: str
    seller: str
    property_id: int
    amount_available: int
    unit_price: int
    minimum_fee: int

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> DexSell:
        return cls(
            txid=data["txid"],
            seller=data["seller"],
            property_id=int(data["propertyid"]),
            amount_available=_sats(data.get("amountavailable")),
            unit_price=_sats(data.get("unitprice")),
            minimum_fee=_sats(data.get("minimumfee")),
        )


class OmniBackend(ABC):
    """
    Abstract Omni daemon interface.

    Implementations raise ``RPCError`` (or ``DecodeError``) for daemon and
    transport failures; retrying is the caller's policy.
    """

    @abstractmethod
    async def decode_raw_transaction(self, raw_tx: str) -> DecodedTx:
        """Decode a raw transaction; raises DecodeError if malformed"""

    @abstractmethod
    async def get_transaction(self, txid: str) -> WalletTx:
        """Wallet transaction lookup (confirmations, fee)"""

    @abstractmethod
    async def estimate_smart_fee(self, conf_target: int) -> int | None:
        """Fee rate in sats per 1000 vbytes, or None when unavailable"""

    @abstractmethod
    async def list_unspent(self, addresses: list[str] | None = None) -> list[UTXO]:
        """Wallet UTXOs, optionally filtered by address"""

    @abstractmethod
    async def create_raw_transaction(
        self, inputs: list[tuple[str, int]], outputs: list[tuple[str, int]]
    ) -> str:
        """Unsigned transaction spending (txid, vout) inputs to ordered (address, sats) outputs"""

    @abstractmethod
    async def fund_raw_transaction(
        self, raw_tx: str, change_address: str | None = None, change_position: int | None = None
    ) -> FundedTx:
        """Let the wallet add inputs and change"""

    @abstractmethod
    async def sign_raw_transaction(self, raw_tx: str) -> SignedTx:
        """Sign with wallet keys"""

    @abstractmethod
    async def send_raw_transaction(self, signed_tx: str) -> str:
        """Broadcast, returns txid"""

    @abstractmethod
    async def get_new_address(self, label: str = "", address_type: str = "legacy") -> str:
        """Fresh wallet address"""

    @abstractmethod
    async def create_payload_simple_send(self, property_id: int, amount: str) -> str:
        """Hex payload for a simple send"""

    @abstractmethod
    async def create_payload_dex_accept(self, property_id: int, amount: str) -> str:
        """Hex payload for a DEx accept"""

    @abstractmethod
    async def create_payload_dex_sell(
        self,
        property_id: int,
        amount_for_sale: str,
        amount_desired: str,
        payment_window: int,
        min_accept_fee: str,
        action: int,
    ) -> str:
        """Hex payload for a DEx sell offer (new/update/cancel)"""

    @abstractmethod
    async def create_payload_change_issuer(self, property_id: int) -> str:
        """Hex payload for an issuer change"""

    @abstractmethod
    async def create_payload_issuance_fixed(
        self,
        ecosystem: int,
        property_type: int,
        previous_id: int,
        category: str,
        subcategory: str,
        name: str,
        url: str,
        data: str,
        amount: str,
    ) -> str:
        """Hex payload for a fixed-supply property"""

    @abstractmethod
    async def create_payload_issuance_managed(
        self,
        ecosystem: int,
        property_type: int,
        previous_id: int,
        category: str,
        subcategory: str,
        name: str,
        url: str,
        data: str,
    ) -> str:
        """Hex payload for a managed property"""

    @abstractmethod
    async def create_payload_set_nft_data(
        self, property_id: int, token_start: int, token_end: int, is_issuer: bool, data: str
    ) -> str:
        """Hex payload setting non-fungible token data"""

    @abstractmethod
    async def create_payload_grant(
        self, property_id: int, amount: str, grant_data: str | None = None
    ) -> str:
        """Hex payload granting managed tokens"""

    @abstractmethod
    async def create_payload_revoke(
        self, property_id: int, amount: str, memo: str | None = None
    ) -> str:
        """Hex payload revoking managed tokens"""

    @abstractmethod
    async def create_raw_tx_opreturn(self, raw_tx: str, payload: str) -> str:
        """Append a null-data output carrying the payload"""

    @abstractmethod
    async def create_raw_tx_multisig(
        self, raw_tx: str, payload: str, seed_address: str, redeem_address: str
    ) -> str:
        """Append class B multisig outputs carrying the payload"""

    @abstractmethod
    async def get_wallet_address_balances(self) -> list[AddressBalance]:
        """Protocol balances per wallet address"""

    @abstractmethod
    async def list_pending_transactions(self) -> list[OmniTx]:
        """Unconfirmed protocol transactions"""

    @abstractmethod
    async def get_active_dex_sells(self) -> list[DexSell]:
        """Open DEx sell offers"""

    @abstractmethod
    async def get_payload(self, txid: str) -> str:
        """Hex payload of a protocol transaction"""

    @abstractmethod
    async def list_block_transactions(self, first_block: int, last_block: int) -> list[str]:
        """Protocol txids in an inclusive block range"""

    @abstractmethod
    async def get_omni_transaction(self, txid: str) -> OmniTx:
        """Protocol transaction details"""

    @abstractmethod
    async def get_blockchain_info(self) -> BlockchainInfo:
        """Chain tip information"""

    @abstractmethod
    async def get_network_info(self) -> NetworkInfo:
        """Client version information"""

    async def get_transactions(self, txids: list[str]) -> list[WalletTx | None]:
        """
        Look up several wallet transactions.

        Entries the daemon does not know come back as None. Default
        implementation issues one call per txid; backends that support
        request batching should override it.
        """
        results: list[WalletTx | None] = []
        for txid in txids:
            try:
                results.append(await self.get_transaction(txid))
            except RPCError:
                results.append(None)
        return results

    async def get_omni_transactions(self, txids: list[str]) -> list[OmniTx | None]:
        """Batch counterpart of ``get_omni_transaction``."""
        results: list[OmniTx | None] = []
        for txid in txids:
            try:
                results.append(await self.get_omni_transaction(txid))
            except RPCError:
                results.append(None)
        return results

    async def close(self) -> None:
        """Close backend connection"""
        pass
