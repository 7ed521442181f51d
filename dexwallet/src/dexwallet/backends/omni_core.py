"""
Omni Core JSON-RPC backend.

Talks to an Omni-enabled coin daemon (Omni Core, OmniLite, Omnifeather)
with its wallet loaded: payload creation, raw transaction assembly and
signing are all delegated to the daemon.
"""

from __future__ import annotations

import os
from typing import Any

import httpx
from loguru import logger

from dexcore.amounts import format_amount, to_sats
from dexcore.constants import BATCH_SIZE
from dexcore.errors import DecodeError, RPCError
from dexcore.fees import feerate_from_coin_per_kb
from dexcore.models import UTXO
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

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 30.0

# Environment variable to enable sensitive logging (raw transactions, addresses)
SENSITIVE_LOGGING = os.environ.get("SENSITIVE_LOGGING", "").lower() in ("1", "true", "yes")


class OmniCoreBackend(OmniBackend):
    """
    Backend using the daemon's JSON-RPC interface.

    Every method maps to exactly one RPC (or one batched request) and wraps
    transport and daemon errors in ``RPCError``.
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:9337",
        rpc_user: str = "rpcuser",
        rpc_password: str = "rpcpassword",
        timeout: float = DEFAULT_RPC_TIMEOUT,
        legacy_sign: bool = False,
        batch_size: int = BATCH_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.rpc_url = rpc_url.rstrip("/")
        self.rpc_user = rpc_user
        self.rpc_password = rpc_password
        # Pre-0.17 daemons only know signrawtransaction
        self.legacy_sign = legacy_sign
        self.batch_size = batch_size
        self.client = httpx.AsyncClient(
            timeout=timeout, auth=(rpc_user, rpc_password), transport=transport
        )
        self._request_id = 0

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _rpc_call(self, method: str, params: list | None = None) -> Any:
        """
        Make an RPC call to the daemon.

        Raises:
            RPCError: On daemon errors and on connection/timeout errors
        """
        payload = {
            "jsonrpc": "1.0",
            "id": self._next_id(),
            "method": method,
            "params": params or [],
        }

        try:
            response = await self.client.post(self.rpc_url, json=payload)
            # The daemon answers RPC errors with HTTP 500 and a JSON body
            if response.status_code >= 400 and not response.content:
                response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"RPC call timed out: {method} - {e}")
            raise RPCError(f"RPC call timed out: {method}", method=method) from e
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise RPCError(f"RPC call failed: {method}: {e}", method=method) from e
        except ValueError as e:
            raise RPCError(f"Malformed RPC response for {method}", method=method) from e

        if data.get("error"):
            error_info = data["error"]
            error_code = error_info.get("code")
            error_msg = error_info.get("message", str(error_info))
            raise RPCError(f"RPC error {error_code}: {error_msg}", method=method, code=error_code)

        return data.get("result")

    async def _rpc_batch(self, method: str, param_lists: list[list]) -> list[Any]:
        """
        Issue one method many times as JSON-RPC batches of ``batch_size``.

        Per-entry errors yield None at that position; a transport failure
        fails the whole call.
        """
        results: list[Any] = []
        for i in range(0, len(param_lists), self.batch_size):
            chunk = param_lists[i : i + self.batch_size]
            ids = [self._next_id() for _ in chunk]
            payload = [
                {"jsonrpc": "1.0", "id": rid, "method": method, "params": params}
                for rid, params in zip(ids, chunk)
            ]
            try:
                response = await self.client.post(self.rpc_url, json=payload)
                data = response.json()
            except httpx.HTTPError as e:
                logger.error(f"RPC batch failed: {method} x{len(chunk)} - {e}")
                raise RPCError(f"RPC batch failed: {method}: {e}", method=method) from e
            except ValueError as e:
                raise RPCError(f"Malformed RPC batch response for {method}", method=method) from e

            if not isinstance(data, list):
                error = data.get("error") if isinstance(data, dict) else None
                raise RPCError(f"RPC batch rejected: {method}: {error}", method=method)

            by_id = {entry.get("id"): entry for entry in data}
            for rid in ids:
                entry = by_id.get(rid)
                if entry is None or entry.get("error"):
                    results.append(None)
                else:
                    results.append(entry.get("result"))
            logger.debug(f"RPC batch {method}: {min(i + self.batch_size, len(param_lists))}"
                         f"/{len(param_lists)}")
        return results

    async def decode_raw_transaction(self, raw_tx: str) -> DecodedTx:
        try:
            data = await self._rpc_call("decoderawtransaction", [raw_tx])
        except RPCError as e:
            raise DecodeError(f"Could not decode transaction: {e}", method=e.method) from e
        if not data or not data.get("vsize"):
            raise DecodeError("Could not decode transaction", method="decoderawtransaction")
        return DecodedTx.from_rpc(data)

    async def get_transaction(self, txid: str) -> WalletTx:
        return WalletTx.from_rpc(await self._rpc_call("gettransaction", [txid]))

    async def get_transactions(self, txids: list[str]) -> list[WalletTx | None]:
        results = await self._rpc_batch("gettransaction", [[txid] for txid in txids])
        return [WalletTx.from_rpc(r) if r else None for r in results]

    async def estimate_smart_fee(self, conf_target: int) -> int | None:
        result = await self._rpc_call("estimatesmartfee", [conf_target])
        if not result or "feerate" not in result:
            logger.debug(f"No fee estimate for {conf_target} blocks: {result}")
            return None
        return feerate_from_coin_per_kb(result["feerate"])

    async def list_unspent(self, addresses: list[str] | None = None) -> list[UTXO]:
        result = await self._rpc_call("listunspent", [0, 9999999, addresses or []])
        return [
            UTXO(
                txid=u["txid"],
                vout=u["vout"],
                address=u.get("address", ""),
                amount=to_sats(u["amount"], exact=False),
                confirmations=u.get("confirmations", 0),
            )
            for u in result or []
            if u.get("spendable", True)
        ]

    async def create_raw_transaction(
        self, inputs: list[tuple[str, int]], outputs: list[tuple[str, int]]
    ) -> str:
        ins = [{"txid": txid, "vout": vout} for txid, vout in inputs]
        outs = [{address: format_amount(amount)} for address, amount in outputs]
        return await self._rpc_call("createrawtransaction", [ins, outs])

    async def fund_raw_transaction(
        self, raw_tx: str, change_address: str | None = None, change_position: int | None = None
    ) -> FundedTx:
        options: dict[str, Any] = {}
        if change_address is not None:
            options["changeAddress"] = change_address
        if change_position is not None:
            options["changePosition"] = change_position
        result = await self._rpc_call("fundrawtransaction", [raw_tx, options])
        return FundedTx(
            hex=result["hex"],
            fee=to_sats(result.get("fee", 0), exact=False),
            change_position=result.get("changepos", -1),
        )

    async def sign_raw_transaction(self, raw_tx: str) -> SignedTx:
        method = "signrawtransaction" if self.legacy_sign else "signrawtransactionwithwallet"
        result = await self._rpc_call(method, [raw_tx])
        return SignedTx(hex=result["hex"], complete=bool(result.get("complete", False)))

    async def send_raw_transaction(self, signed_tx: str) -> str:
        if SENSITIVE_LOGGING:
            logger.debug(f"sendrawtransaction {signed_tx}")
        txid = await self._rpc_call("sendrawtransaction", [signed_tx])
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def get_new_address(self, label: str = "", address_type: str = "legacy") -> str:
        return await self._rpc_call("getnewaddress", [label, address_type])

    async def create_payload_simple_send(self, property_id: int, amount: str) -> str:
        return await self._rpc_call("omni_createpayload_simplesend", [property_id, amount])

    async def create_payload_dex_accept(self, property_id: int, amount: str) -> str:
        return await self._rpc_call("omni_createpayload_dexaccept", [property_id, amount])

    async def create_payload_dex_sell(
        self,
        property_id: int,
        amount_for_sale: str,
        amount_desired: str,
        payment_window: int,
        min_accept_fee: str,
        action: int,
    ) -> str:
        return await self._rpc_call(
            "omni_createpayload_dexsell",
            [property_id, amount_for_sale, amount_desired, payment_window, min_accept_fee, action],
        )

    async def create_payload_change_issuer(self, property_id: int) -> str:
        return await self._rpc_call("omni_createpayload_changeissuer", [property_id])

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
        return await self._rpc_call(
            "omni_createpayload_issuancefixed",
            [ecosystem, property_type, previous_id, category, subcategory, name, url, data, amount],
        )

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
        return await self._rpc_call(
            "omni_createpayload_issuancemanaged",
            [ecosystem, property_type, previous_id, category, subcategory, name, url, data],
        )

    async def create_payload_set_nft_data(
        self, property_id: int, token_start: int, token_end: int, is_issuer: bool, data: str
    ) -> str:
        return await self._rpc_call(
            "omni_createpayload_setnonfungibledata",
            [property_id, token_start, token_end, is_issuer, data],
        )

    async def create_payload_grant(
        self, property_id: int, amount: str, grant_data: str | None = None
    ) -> str:
        params: list[Any] = [property_id, amount]
        if grant_data is not None:
            params.append(grant_data)
        return await self._rpc_call("omni_createpayload_grant", params)

    async def create_payload_revoke(
        self, property_id: int, amount: str, memo: str | None = None
    ) -> str:
        params: list[Any] = [property_id, amount]
        if memo is not None:
            params.append(memo)
        return await self._rpc_call("omni_createpayload_revoke", params)

    async def create_raw_tx_opreturn(self, raw_tx: str, payload: str) -> str:
        return await self._rpc_call("omni_createrawtx_opreturn", [raw_tx, payload])

    async def create_raw_tx_multisig(
        self, raw_tx: str, payload: str, seed_address: str, redeem_address: str
    ) -> str:
        return await self._rpc_call(
            "omni_createrawtx_multisig", [raw_tx, payload, seed_address, redeem_address]
        )

    async def get_wallet_address_balances(self) -> list[AddressBalance]:
        result = await self._rpc_call("omni_getwalletaddressbalances", [])
        return [AddressBalance.from_rpc(entry) for entry in result or []]

    async def list_pending_transactions(self) -> list[OmniTx]:
        result = await self._rpc_call("omni_listpendingtransactions", [])
        return [OmniTx.from_rpc(entry) for entry in result or []]

    async def get_active_dex_sells(self) -> list[DexSell]:
        result = await self._rpc_call("omni_getactivedexsells", [])
        return [DexSell.from_rpc(entry) for entry in result or []]

    async def get_payload(self, txid: str) -> str:
        result = await self._rpc_call("omni_getpayload", [txid])
        return result["payload"]

    async def list_block_transactions(self, first_block: int, last_block: int) -> list[str]:
        return await self._rpc_call("omni_listblockstransactions", [first_block, last_block]) or []

    async def get_omni_transaction(self, txid: str) -> OmniTx:
        return OmniTx.from_rpc(await self._rpc_call("omni_gettransaction", [txid]))

    async def get_omni_transactions(self, txids: list[str]) -> list[OmniTx | None]:
        results = await self._rpc_batch("omni_gettransaction", [[txid] for txid in txids])
        return [OmniTx.from_rpc(r) if r else None for r in results]

    async def get_blockchain_info(self) -> BlockchainInfo:
        info = await self._rpc_call("getblockchaininfo", [])
        height = info.get("blocks", 0)
        logger.debug(f"Current block height: {height}")
        return BlockchainInfo(chain=info.get("chain", ""), blocks=height,
                              headers=info.get("headers", 0))

    async def get_network_info(self) -> NetworkInfo:
        info = await self._rpc_call("getnetworkinfo", [])
        return NetworkInfo(subversion=info.get("subversion", ""), version=info.get("version", 0))

    async def close(self) -> None:
        await self.client.aclose()
