"""
Test configuration for trader tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from dexcore.errors import RPCError
from dexcore.models import UTXO
from dexcore.platforms import FEATHERCOIN, PlatformConstants
from dexwallet.backends.base import (
    AddressBalance,
    BlockchainInfo,
    DecodedTx,
    DexSell,
    FundedTx,
    NetworkInfo,
    OmniBackend,
    OmniTx,
    SignedTx,
    WalletTx,
)

from dextrader.tx_builder import RawTxBuilder


class FakeBackend(OmniBackend):
    """
    In-memory daemon.

    Raw transactions are opaque handles (``raw-N``) whose inputs, outputs
    and payload are kept in ``raws``; every call is recorded in ``calls``.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.raws: dict[str, dict[str, Any]] = {}
        self.sent: list[str] = []
        self.confirmed: set[str] = set()
        self.auto_confirm = True
        self.sign_complete = True
        # Broadcast attempts beyond this count fail
        self.max_sends: int | None = None
        self.feerate: int | None = 1000
        self.height = 3_500_000
        self.subversion = "/Feathercoin:0.13.0/"
        # New wallet addresses start with the prefix for their type
        self.address_prefixes = {"legacy": "6", "p2sh-segwit": "3", "bech32": "fc1q"}
        self.balances: list[AddressBalance] = []
        self.pending: list[OmniTx] = []
        self.dex_sells: list[DexSell] = []
        self.payloads: dict[str, str] = {}
        self.block_txids: dict[int, list[str]] = {}
        self.omni_txs: dict[str, OmniTx] = {}
        self.wallet_txs: dict[str, WalletTx] = {}
        self._counter = 0
        self._send_attempts = 0

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))

    def called(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    def _new_raw(self, **info: Any) -> str:
        self._counter += 1
        handle = f"raw-{self._counter}"
        self.raws[handle] = info
        return handle

    def _derive(self, raw_tx: str, **changes: Any) -> str:
        info = dict(self.raws[raw_tx])
        info.update(changes)
        return self._new_raw(**info)

    def info(self, raw_tx: str) -> dict[str, Any]:
        return self.raws[raw_tx]

    async def decode_raw_transaction(self, raw_tx: str) -> DecodedTx:
        self._record("decode_raw_transaction", raw_tx)
        return DecodedTx(txid="", vsize=223)

    async def get_transaction(self, txid: str) -> WalletTx:
        self._record("get_transaction", txid)
        if txid in self.wallet_txs:
            return self.wallet_txs[txid]
        confirmations = 1 if txid in self.confirmed else 0
        return WalletTx(txid=txid, confirmations=confirmations)

    async def get_transactions(self, txids: list[str]) -> list[WalletTx | None]:
        self._record("get_transactions", list(txids))
        return [self.wallet_txs.get(txid) for txid in txids]

    async def estimate_smart_fee(self, conf_target: int) -> int | None:
        self._record("estimate_smart_fee", conf_target)
        return self.feerate

    async def list_unspent(self, addresses: list[str] | None = None) -> list[UTXO]:
        return []

    async def create_raw_transaction(
        self, inputs: list[tuple[str, int]], outputs: list[tuple[str, int]]
    ) -> str:
        self._record("create_raw_transaction", list(inputs), list(outputs))
        return self._new_raw(inputs=list(inputs), outputs=list(outputs), payload=None)

    async def fund_raw_transaction(
        self, raw_tx: str, change_address: str | None = None, change_position: int | None = None
    ) -> FundedTx:
        self._record("fund_raw_transaction", raw_tx, change_address, change_position)
        return FundedTx(hex=self._derive(raw_tx, funded=True), fee=1000,
                        change_position=change_position if change_position is not None else 1)

    async def sign_raw_transaction(self, raw_tx: str) -> SignedTx:
        self._record("sign_raw_transaction", raw_tx)
        return SignedTx(hex=self._derive(raw_tx, signed=True), complete=self.sign_complete)

    async def send_raw_transaction(self, signed_tx: str) -> str:
        self._record("send_raw_transaction", signed_tx)
        self._send_attempts += 1
        if self.max_sends is not None and len(self.sent) >= self.max_sends:
            raise RPCError("bad-txns-inputs-missingorspent", method="sendrawtransaction")
        txid = f"{len(self.sent) + 1:064x}"
        self.sent.append(signed_tx)
        self.raws[signed_tx]["txid"] = txid
        if self.auto_confirm:
            self.confirmed.add(txid)
        return txid

    async def get_new_address(self, label: str = "", address_type: str = "legacy") -> str:
        self._record("get_new_address", label, address_type)
        self._counter += 1
        return f"{self.address_prefixes[address_type]}new{self._counter}"

    async def create_payload_simple_send(self, property_id: int, amount: str) -> str:
        self._record("create_payload_simple_send", property_id, amount)
        return "00000000" + "00" * 12

    async def create_payload_dex_accept(self, property_id: int, amount: str) -> str:
        self._record("create_payload_dex_accept", property_id, amount)
        return "00000016" + "00" * 12

    async def create_payload_dex_sell(
        self,
        property_id: int,
        amount_for_sale: str,
        amount_desired: str,
        payment_window: int,
        min_accept_fee: str,
        action: int,
    ) -> str:
        self._record(
            "create_payload_dex_sell",
            property_id, amount_for_sale, amount_desired, payment_window, min_accept_fee, action,
        )
        return "00010014" + "00" * 30

    async def create_payload_change_issuer(self, property_id: int) -> str:
        self._record("create_payload_change_issuer", property_id)
        return "00000046" + "00" * 4

    async def create_payload_issuance_fixed(self, *args: Any) -> str:
        self._record("create_payload_issuance_fixed", *args)
        return "00000032" + "ab" * 40

    async def create_payload_issuance_managed(self, *args: Any) -> str:
        self._record("create_payload_issuance_managed", *args)
        return "00000036" + "ab" * 100

    async def create_payload_set_nft_data(self, *args: Any) -> str:
        self._record("create_payload_set_nft_data", *args)
        return "000000c9" + "ab" * 20

    async def create_payload_grant(
        self, property_id: int, amount: str, grant_data: str | None = None
    ) -> str:
        self._record("create_payload_grant", property_id, amount, grant_data)
        return "00000037" + "00" * 12

    async def create_payload_revoke(
        self, property_id: int, amount: str, memo: str | None = None
    ) -> str:
        self._record("create_payload_revoke", property_id, amount, memo)
        return "00000038" + "00" * 12

    async def create_raw_tx_opreturn(self, raw_tx: str, payload: str) -> str:
        self._record("create_raw_tx_opreturn", raw_tx, payload)
        return self._derive(raw_tx, payload=payload, payload_class="C")

    async def create_raw_tx_multisig(
        self, raw_tx: str, payload: str, seed_address: str, redeem_address: str
    ) -> str:
        self._record("create_raw_tx_multisig", raw_tx, payload, seed_address, redeem_address)
        return self._derive(raw_tx, payload=payload, payload_class="B")

    async def get_wallet_address_balances(self) -> list[AddressBalance]:
        self._record("get_wallet_address_balances")
        return list(self.balances)

    async def list_pending_transactions(self) -> list[OmniTx]:
        self._record("list_pending_transactions")
        return list(self.pending)

    async def get_active_dex_sells(self) -> list[DexSell]:
        self._record("get_active_dex_sells")
        return list(self.dex_sells)

    async def get_payload(self, txid: str) -> str:
        self._record("get_payload", txid)
        return self.payloads[txid]

    async def list_block_transactions(self, first_block: int, last_block: int) -> list[str]:
        self._record("list_block_transactions", first_block, last_block)
        return [
            txid
            for block, txids in sorted(self.block_txids.items())
            if first_block <= block <= last_block
            for txid in txids
        ]

    async def get_omni_transaction(self, txid: str) -> OmniTx:
        self._record("get_omni_transaction", txid)
        if txid not in self.omni_txs:
            raise RPCError(f"No such transaction {txid}", method="omni_gettransaction")
        return self.omni_txs[txid]

    async def get_omni_transactions(self, txids: list[str]) -> list[OmniTx | None]:
        self._record("get_omni_transactions", list(txids))
        return [self.omni_txs.get(txid) for txid in txids]

    async def get_blockchain_info(self) -> BlockchainInfo:
        self._record("get_blockchain_info")
        return BlockchainInfo(chain="main", blocks=self.height, headers=self.height)

    async def get_network_info(self) -> NetworkInfo:
        self._record("get_network_info")
        return NetworkInfo(subversion=self.subversion, version=130000)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def platform() -> PlatformConstants:
    return FEATHERCOIN


@pytest.fixture
def builder(backend: FakeBackend, platform: PlatformConstants) -> RawTxBuilder:
    """Builder with single attempts and no polling delay."""
    return RawTxBuilder(backend, platform, retries=1, retries_large=1, poll_interval=0)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "trades.db"


@pytest.fixture
def funding_utxo() -> UTXO:
    return UTXO(txid="aa" * 32, vout=0, address="6funder", amount=1_000_000)
