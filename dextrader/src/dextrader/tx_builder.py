"""
Raw transaction builder for Omni DEx operations.

Builds unsigned transactions spending exactly one funding UTXO:
- one change output back to the funder (or to a given address)
- protocol-specific extra outputs (seller dust, payments, reference dust)
- the payload, as a null-data output or as class B multisig outputs

Payload bytes, raw transaction assembly, signing and broadcasting are all
delegated to the daemon.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Literal, TypeVar

from loguru import logger

from dexcore.amounts import format_amount, format_quantity, mul_price
from dexcore.constants import (
    ACCOUNT_LABEL,
    API_RETRIES,
    API_RETRIES_LARGE,
    MIN_ACCEPT_FEE,
    PAY_BLOCK_LIMIT,
    TX_POLL_INTERVAL,
    OrderAction,
)
from dexcore.errors import InsufficientFundsError, RPCError
from dexcore.models import UTXO
from dexcore.payload import payload_uses_multisig
from dexcore.platforms import PlatformConstants
from dexcore.retry import retry_async
from dexwallet.backends.base import OmniBackend

from dextrader.cancel import CancelToken

T = TypeVar("T")

AssetKind = Literal["managed", "fixed", "nft"]


class RawTxBuilder:
    """
    Builds, signs and broadcasts single-input protocol transactions.

    Every daemon call goes through the bounded retry policy; fund checks
    fail immediately with ``InsufficientFundsError`` before anything is
    asked of the daemon.
    """

    def __init__(
        self,
        backend: OmniBackend,
        platform: PlatformConstants,
        retries: int = API_RETRIES,
        retries_large: int = API_RETRIES_LARGE,
        poll_interval: float = TX_POLL_INTERVAL,
        label: str = ACCOUNT_LABEL,
    ):
        self.backend = backend
        self.platform = platform
        self.retries = retries
        self.retries_large = retries_large
        self.poll_interval = poll_interval
        self.label = label

    async def _call(
        self, func: Callable[..., Awaitable[T]], *args: object, attempts: int | None = None
    ) -> T:
        return await retry_async(func, *args, attempts=attempts or self.retries)

    def _check_change(self, utxo: UTXO, change: int, what: str, required: int) -> None:
        if change < self.platform.min_change:
            raise InsufficientFundsError(
                f"Could not create raw {what} transaction, fee too high: "
                f"input={format_amount(utxo.amount)} required={format_amount(required)}",
                available=utxo.amount,
                required=required,
            )

    async def build_payload_tx(
        self,
        payload: str,
        utxo: UTXO,
        fee: int,
        change_address: str | None = None,
    ) -> str:
        """
        Spend ``utxo`` to a single change output and embed ``payload``.

        Args:
            payload: Hex-encoded protocol payload
            utxo: Funding output
            fee: Transaction fee in sats
            change_address: Change (and reference) destination, defaults to
                the funding address

        Returns:
            Unsigned raw transaction hex

        Raises:
            InsufficientFundsError: If ``utxo.amount - fee`` is below the
                minimum change
        """
        change = utxo.amount - fee
        self._check_change(utxo, change, "payload", fee + self.platform.min_change)
        destination = change_address or utxo.address

        logger.debug(f"build_payload_tx: in={utxo.outpoint} change={change} -> {destination}")

        pretx = await self._call(
            self.backend.create_raw_transaction,
            [(utxo.txid, utxo.vout)],
            [(destination, change)],
        )

        if not payload_uses_multisig(payload):
            return await self._call(self.backend.create_raw_tx_opreturn, pretx, payload)

        redeem_address = await self._call(self.backend.get_new_address, self.label, "legacy")
        return await self._call(
            self.backend.create_raw_tx_multisig, pretx, payload, utxo.address, redeem_address
        )

    async def build_send(
        self, recipient: str, property_id: int, amount: int, utxo: UTXO, fee: int
    ) -> str:
        """Simple send of ``amount``; the change output lands on the recipient."""
        payload = await self._call(
            self.backend.create_payload_simple_send, property_id, format_quantity(amount)
        )
        return await self.build_payload_tx(payload, utxo, fee, recipient)

    async def build_accept(
        self, seller: str, property_id: int, amount: int, utxo: UTXO, fee: int
    ) -> str:
        """DEx accept: change back to the buyer plus a dust output marking the seller."""
        min_change = self.platform.min_change
        payload = await self._call(
            self.backend.create_payload_dex_accept, property_id, format_quantity(amount)
        )

        change = utxo.amount - min_change - fee
        self._check_change(utxo, change, "accept", fee + min_change * 2)

        pretx = await self._call(
            self.backend.create_raw_transaction,
            [(utxo.txid, utxo.vout)],
            [(utxo.address, change), (seller, min_change)],
        )
        return await self._call(self.backend.create_raw_tx_opreturn, pretx, payload)

    async def build_pay(self, orders: list[tuple[str, int]], utxo: UTXO, fee: int) -> str:
        """
        Payment settling accepted orders.

        Outputs: change to the buyer, reference dust to the exodus address,
        then one payment per ``(seller, amount)``.
        """
        min_change = self.platform.min_change
        total = sum(amount for _, amount in orders)
        change = utxo.amount - min_change - total - fee

        if change < min_change:
            required = total + fee + min_change * 2
            raise InsufficientFundsError(
                f"UTXO not large enough input={format_amount(utxo.amount)}, "
                f"total={format_amount(total)}, fee={format_amount(fee + min_change)}",
                available=utxo.amount,
                required=required,
            )

        outputs = [(utxo.address, change), (self.platform.exodus_address, min_change)]
        outputs.extend(orders)

        return await self._call(
            self.backend.create_raw_transaction, [(utxo.txid, utxo.vout)], outputs
        )

    async def build_order(
        self,
        property_id: int,
        action: OrderAction,
        utxo: UTXO,
        fee: int = 0,
        quantity: int = 0,
        price: int = 0,
        payment_window: int = PAY_BLOCK_LIMIT,
        min_accept_fee: int = MIN_ACCEPT_FEE,
    ) -> str:
        """DEx sell offer (new, update or cancel); ``price`` is per whole unit."""
        logger.debug(
            f"build_order: propid={property_id}, action={action.name}, fee={fee}, "
            f"quantity={quantity}, price={price}"
        )
        if action == OrderAction.CANCEL:
            payment_window, min_accept_fee = 0, 0

        payload = await self._call(
            self.backend.create_payload_dex_sell,
            property_id,
            format_quantity(quantity),
            format_amount(mul_price(quantity, price)),
            payment_window,
            format_amount(min_accept_fee),
            int(action),
        )
        return await self.build_payload_tx(payload, utxo, fee)

    async def build_change_issuer(
        self, new_issuer: str, property_id: int, utxo: UTXO, fee: int
    ) -> str:
        """
        Issuer change; the new issuer receives the reference dust output.

        Any excess over fee plus dust returns to the funder ahead of the
        reference output, which must be last.
        """
        min_change = self.platform.min_change
        logger.debug(f"build_change_issuer: new_issuer={new_issuer}")

        payload = await self._call(self.backend.create_payload_change_issuer, property_id)

        change = utxo.amount - fee
        self._check_change(utxo, change, "issuer", fee + min_change)

        outputs: list[tuple[str, int]] = []
        excess = change - min_change
        if excess >= min_change:
            outputs.append((utxo.address, excess))
        outputs.append((new_issuer, min_change))

        pretx = await self._call(
            self.backend.create_raw_transaction, [(utxo.txid, utxo.vout)], outputs
        )
        return await self._call(self.backend.create_raw_tx_opreturn, pretx, payload)

    async def build_create(
        self,
        kind: AssetKind,
        ecosystem: int,
        property_type: int,
        previous_id: int,
        name: str,
        category: str,
        subcategory: str,
        url: str,
        data: str,
        utxo: UTXO,
        fee: int,
        amount: int | None = None,
    ) -> str:
        """Property creation; fixed issuances need ``amount``."""
        previous_id = max(previous_id, 0)
        logger.debug(
            f"build_create: kind={kind}, ecosystem={ecosystem}, type={property_type}, "
            f"previous={previous_id}, name={name}"
        )
        if kind == "fixed":
            if amount is None:
                raise ValueError("Fixed issuance needs an amount")
            payload = await self._call(
                self.backend.create_payload_issuance_fixed,
                ecosystem, property_type, previous_id, category, subcategory, name, url, data,
                format_quantity(amount),
            )
        else:
            payload = await self._call(
                self.backend.create_payload_issuance_managed,
                ecosystem, property_type, previous_id, category, subcategory, name, url, data,
            )
        return await self.build_payload_tx(payload, utxo, fee)

    async def build_set_nft_data(
        self,
        address: str,
        property_id: int,
        token_start: int,
        token_end: int,
        is_issuer: bool,
        data: str,
        utxo: UTXO,
        fee: int,
    ) -> str:
        logger.debug(
            f"build_set_nft_data: propid={property_id}, "
            f"range=[{token_start}, {token_end}], issuer={is_issuer}"
        )
        payload = await self._call(
            self.backend.create_payload_set_nft_data,
            property_id, token_start, token_end, is_issuer, data,
        )
        return await self.build_payload_tx(payload, utxo, fee, address)

    async def build_grant(
        self,
        property_id: int,
        amount: int,
        utxo: UTXO,
        fee: int,
        recipient: str | None = None,
        grant_data: str | None = None,
    ) -> str:
        logger.debug(f"build_grant: propid={property_id}, amount={amount}")
        payload = await self._call(
            self.backend.create_payload_grant, property_id, format_quantity(amount), grant_data
        )
        return await self.build_payload_tx(payload, utxo, fee, recipient or utxo.address)

    async def build_revoke(
        self, property_id: int, amount: int, utxo: UTXO, fee: int, memo: str | None = None
    ) -> str:
        logger.debug(f"build_revoke: propid={property_id}, amount={amount}")
        payload = await self._call(
            self.backend.create_payload_revoke, property_id, format_quantity(amount), memo
        )
        return await self.build_payload_tx(payload, utxo, fee)

    async def fund_tx(
        self,
        raw_tx: str,
        change_address: str | None = None,
        change_position: int | None = None,
    ) -> str:
        """Let the wallet add inputs; change goes to a fresh address unless given."""
        if change_address is None:
            change_address = await self._call(self.backend.get_new_address, self.label, "legacy")
        funded = await self._call(
            self.backend.fund_raw_transaction,
            raw_tx,
            change_address,
            change_position,
            attempts=self.retries_large,
        )
        return funded.hex

    async def sign_tx(self, raw_tx: str) -> str:
        signed = await self._call(
            self.backend.sign_raw_transaction, raw_tx, attempts=self.retries_large
        )
        if not signed.complete:
            raise RPCError("Wallet could not fully sign transaction",
                           method="signrawtransaction")
        return signed.hex

    async def send_tx(self, signed_tx: str) -> str:
        return await self._call(
            self.backend.send_raw_transaction, signed_tx, attempts=self.retries_large
        )

    async def sign_and_send(self, raw_tx: str) -> str:
        return await self.send_tx(await self.sign_tx(raw_tx))

    async def fund_address(self, amount: int, address: str | None = None) -> UTXO:
        """
        Create a UTXO of exactly ``amount`` on ``address`` (fresh address if None).

        The funded output is always vout 0; wallet change is placed after it.
        """
        if address is None:
            address = await self._call(
                self.backend.get_new_address, self.label, "legacy", attempts=self.retries_large
            )
            logger.debug(f"fund_address: new address {address}")

        pretx = await self._call(
            self.backend.create_raw_transaction, [], [(address, amount)],
            attempts=self.retries_large,
        )
        funded = await self.fund_tx(pretx, change_position=1)
        txid = await self.sign_and_send(funded)
        logger.info(f"Funded {format_amount(amount)} to {address}: {txid}")
        return UTXO(txid=txid, vout=0, address=address, amount=amount)

    async def wait_for_tx(self, txid: str, token: CancelToken | None = None) -> bool:
        """
        Poll until ``txid`` has a confirmation.

        Returns:
            True once confirmed, False if ``token`` was cancelled first
        """
        while True:
            if token is not None and token.cancelled:
                logger.debug(f"Stopped waiting for {txid}: cancelled")
                return False
            try:
                tx = await self._call(self.backend.get_transaction, txid)
                if tx.confirmed:
                    return True
            except RPCError as e:
                logger.warning(f"Could not query tx {txid}: {e}")
            await asyncio.sleep(self.poll_interval)
