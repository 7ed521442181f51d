"""
Composite fee estimators.

Each estimator assembles the size constants for the address types actually
involved, prices them at one fee rate fetched up front, and adds the
protocol's minimum change so the funding UTXO it sizes can always leave a
standard change output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Literal

from loguru import logger

from dexcore.amounts import format_quantity
from dexcore.constants import (
    API_RETRIES,
    BLOCK_WAIT,
    EMPTY_TX_VSIZE,
    IN_P2WSH_VSIZE,
    OPRET_ACCEPT_VSIZE,
    OPRET_ISSUER_VSIZE,
    OPRET_ORDER_VSIZE,
    OUT_P2PKH_VSIZE,
    OUT_P2WSH_VSIZE,
)
from dexcore.errors import RPCError
from dexcore.fees import SendFeeTable, fee_for_size, input_vsize, output_vsize
from dexcore.models import FillOrder, FillSend
from dexcore.payload import calc_payload_outs
from dexcore.platforms import AddressType, PlatformConstants
from dexcore.retry import retry_async
from dexwallet.backends.base import OmniBackend

AssetKind = Literal["managed", "fixed", "nft"]

# Property id used in dummy payloads sized for estimation
DUMMY_PROPID = 255


@dataclass
class BuyFee:
    accept_fees: dict[str, int]
    pay_fee: int
    total_fee: int


@dataclass
class SellFee:
    send_fees: SendFeeTable
    post_fee: int
    total_fee: int


@dataclass
class SendFee:
    send_fees: SendFeeTable
    total_fee: int
    hop_fees: list[int] = field(default_factory=list)


@dataclass
class PayloadFee:
    """Fee of a single payload-carrying transaction, and the funding total it needs."""

    fee: int
    total_fee: int


class FeeEstimator:
    """Fee model bound to one daemon and one platform."""

    def __init__(
        self,
        backend: OmniBackend,
        platform: PlatformConstants,
        retries: int = API_RETRIES,
    ):
        self.backend = backend
        self.platform = platform
        self.retries = retries

    async def feerate(self) -> int:
        """
        Live fee rate in sats/kvB.

        Falls back to the platform default when the estimator is unavailable
        or has no data; fee estimation never fails for that reason alone.
        """
        try:
            rate = await retry_async(
                self.backend.estimate_smart_fee, BLOCK_WAIT, attempts=self.retries
            )
        except RPCError as e:
            logger.warning(f"Fee rate estimation failed, using default: {e}")
            return self.platform.default_feerate
        if rate is None or rate <= 0:
            logger.debug("No fee rate estimate available, using default")
            return self.platform.default_feerate
        return rate

    async def estimate_fee(
        self,
        raw_tx: str | None = None,
        size: Decimal | int | None = None,
        feerate: int | None = None,
    ) -> int:
        """
        Fee in sats for a transaction given by size or by raw hex.

        Raises:
            DecodeError: ``raw_tx`` could not be decoded to a virtual size
        """
        if size is None:
            if raw_tx is None:
                raise ValueError("estimate_fee needs either raw_tx or size")
            decoded = await retry_async(
                self.backend.decode_raw_transaction, raw_tx, attempts=self.retries
            )
            size = decoded.vsize
        rate = feerate if feerate is not None else await self.feerate()
        return fee_for_size(size, rate)

    def _in(self, address: str) -> Decimal:
        return input_vsize(self.platform.address_type(address))

    def _out(self, address: str) -> Decimal:
        return output_vsize(self.platform.address_type(address))

    async def send_fee_table(self, feerate: int | None = None) -> SendFeeTable:
        rate = feerate if feerate is not None else await self.feerate()
        return SendFeeTable.at_feerate(rate)

    def _hop_fees(
        self, table: SendFeeTable, sends: list[FillSend], final_type: AddressType
    ) -> list[int]:
        fees = []
        for i, send in enumerate(sends):
            from_type = self.platform.address_type(send.address)
            to_type = (
                final_type
                if i == len(sends) - 1
                else self.platform.address_type(sends[i + 1].address)
            )
            fees.append(table.lookup(from_type, to_type))
        return fees

    async def estimate_buy_fee(self, orders: list[FillOrder]) -> BuyFee:
        """
        Fees for accepting ``orders`` and paying for them.

        Each accept is its own transaction, sized for a segwit funding
        input; the accept fee per seller is the larger of the computed fee
        and the seller's declared minimum.
        """
        feerate = await self.feerate()

        # overhead + SW in + SW change out + L signal out + accept null-data
        leg_accept_fee = fee_for_size(
            EMPTY_TX_VSIZE + IN_P2WSH_VSIZE + OUT_P2WSH_VSIZE + OUT_P2PKH_VSIZE
            + OPRET_ACCEPT_VSIZE,
            feerate,
        )
        # overhead + SW in + SW change out + SW signal out + accept null-data
        sw_accept_fee = fee_for_size(
            EMPTY_TX_VSIZE + IN_P2WSH_VSIZE + OUT_P2WSH_VSIZE * 2 + OPRET_ACCEPT_VSIZE,
            feerate,
        )
        # overhead + SW in + per-order outs + SW change out + L reference out
        pay_size = EMPTY_TX_VSIZE + IN_P2WSH_VSIZE + OUT_P2WSH_VSIZE + OUT_P2PKH_VSIZE
        for order in orders:
            pay_size += self._out(order.address)
        pay_fee = fee_for_size(pay_size, feerate)

        accept_fees: dict[str, int] = {}
        for order in orders:
            computed = (
                leg_accept_fee
                if self.platform.address_type(order.address) == AddressType.LEGACY
                else sw_accept_fee
            )
            accept_fees[order.address] = max(computed, order.min_fee)

        total_fee = sum(accept_fees.values()) + pay_fee + self.platform.min_change * 2
        logger.debug(f"estimate_buy_fee: accepts={sum(accept_fees.values())} pay={pay_fee}")
        return BuyFee(accept_fees=accept_fees, pay_fee=pay_fee, total_fee=total_fee)

    async def estimate_sell_fee(self, sends: list[FillSend]) -> SellFee:
        """Fees for consolidating ``sends`` onto a segwit address and posting the order."""
        feerate = await self.feerate()
        table = SendFeeTable.at_feerate(feerate)
        post_fee = fee_for_size(
            EMPTY_TX_VSIZE + IN_P2WSH_VSIZE + OUT_P2WSH_VSIZE + OPRET_ORDER_VSIZE, feerate
        )
        hop_fees = self._hop_fees(table, sends, AddressType.SEGWIT)
        total_fee = sum(hop_fees) + post_fee + self.platform.min_change
        return SellFee(send_fees=table, post_fee=post_fee, total_fee=total_fee)

    async def estimate_send_fee(self, sends: list[FillSend], final_address: str) -> SendFee:
        table = await self.send_fee_table()
        final_type = self.platform.address_type(final_address)
        hop_fees = self._hop_fees(table, sends, final_type)
        return SendFee(
            send_fees=table,
            total_fee=sum(hop_fees) + self.platform.min_change,
            hop_fees=hop_fees,
        )

    async def _payload_fee(self, payload: str, base_size: Decimal) -> PayloadFee:
        outs = calc_payload_outs(payload, self.platform)
        fee = outs.extra_change + await self.estimate_fee(size=base_size + outs.extra_size)
        return PayloadFee(fee=fee, total_fee=fee + self.platform.min_change)

    async def estimate_create_fee(
        self,
        kind: AssetKind,
        name: str,
        category: str,
        subcategory: str,
        url: str,
        data: str,
    ) -> PayloadFee:
        if kind == "fixed":
            payload = await retry_async(
                self.backend.create_payload_issuance_fixed,
                1, 2, 0, category, subcategory, name, url, data, "1",
                attempts=self.retries,
            )
        else:
            payload = await retry_async(
                self.backend.create_payload_issuance_managed,
                1, 2, 0, category, subcategory, name, url, data,
                attempts=self.retries,
            )
        return await self._payload_fee(payload, EMPTY_TX_VSIZE + IN_P2WSH_VSIZE + OUT_P2WSH_VSIZE)

    async def estimate_issuer_fee(self, issuer: str, new_issuer: str) -> PayloadFee:
        size = EMPTY_TX_VSIZE + OPRET_ISSUER_VSIZE + self._in(issuer) + self._out(new_issuer)
        fee = await self.estimate_fee(size=size)
        return PayloadFee(fee=fee, total_fee=fee + self.platform.min_change)

    async def estimate_nft_fee(
        self, data: str, sender: str, reference: str | None = None
    ) -> PayloadFee:
        payload = await retry_async(
            self.backend.create_payload_set_nft_data, DUMMY_PROPID, 1, 1, True, data,
            attempts=self.retries,
        )
        size = EMPTY_TX_VSIZE + self._in(sender) + self._out(reference or sender)
        return await self._payload_fee(payload, size)

    async def estimate_grant_fee(
        self, issuer: str, recipient: str | None = None, grant_data: str | None = None
    ) -> PayloadFee:
        payload = await retry_async(
            self.backend.create_payload_grant, DUMMY_PROPID, format_quantity(100_000_000),
            grant_data, attempts=self.retries,
        )
        size = EMPTY_TX_VSIZE + self._in(issuer) + self._out(recipient or issuer)
        return await self._payload_fee(payload, size)

    async def estimate_revoke_fee(self, issuer: str, memo: str | None = None) -> PayloadFee:
        payload = await retry_async(
            self.backend.create_payload_revoke, DUMMY_PROPID, format_quantity(100_000_000),
            memo, attempts=self.retries,
        )
        size = EMPTY_TX_VSIZE + self._in(issuer) + self._out(issuer)
        return await self._payload_fee(payload, size)
