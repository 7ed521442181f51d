"""
Order state machine.

An order is a pre-signed final transaction (the DEx payment for a buy, the
sell offer for a sell) waiting on a set of precursor transactions (accepts
or chain-send hops). ``run`` waits for every precursor to confirm, broadcasts
the final transaction and waits for it in turn:

    PENDING -> CONFIRMING -> DONE
       |            |
       +- cancel() -+-> CANCELLING -> DONE (not succeeded)

Cancellation is honoured only until the final broadcast; after that the
transaction is irreversible and the order polls to completion.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any

from loguru import logger

from dexcore.amounts import format_amount, format_quantity, mul_price
from dexcore.constants import PROPID_COIN
from dexcore.errors import DexError, OrderError
from dexcore.models import OrderType, Side

from dextrader.cancel import CancelToken
from dextrader.tx_builder import RawTxBuilder


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMING = "CONFIRMING"
    CANCELLING = "CANCELLING"
    DONE = "DONE"


class Order:
    """A single buy or sell order driven to completion by ``run``."""

    def __init__(
        self,
        builder: RawTxBuilder,
        side: Side,
        order_type: OrderType,
        property_id: int,
        quantity: int,
        price: int,
        fee: int,
        funding_address: str,
        final_tx: str,
        precursor_txids: list[str] | None = None,
        no_high_fees: bool = True,
        order_id: int = 0,
    ):
        self.builder = builder
        self.side = side
        self.order_type = order_type
        self.property_id = property_id
        self.quantity = quantity
        self.remaining = quantity
        self.price = price
        self.fee = fee
        self.funding_address = funding_address
        self.final_tx = final_tx
        self.precursor_txids = list(precursor_txids or [])
        self.no_high_fees = no_high_fees
        self.order_id = order_id
        self.created_at = int(time.time())

        self.status = OrderStatus.PENDING
        self.token = CancelToken()
        self.final_txid: str | None = None
        self.is_finalizing = False
        self.is_done = False
        self.succeeded = False
        self._started = False

    @property
    def is_cancel_requested(self) -> bool:
        return self.token.cancelled

    def cancel(self) -> bool:
        """
        Request cancellation.

        Returns:
            False if the final transaction is already out (or the order is
            done) and the request has no effect
        """
        if self.is_done or self.is_finalizing:
            logger.info(f"Order {self.order_id}: final transaction already sent, cannot cancel")
            return False
        self.token.cancel()
        self.status = OrderStatus.CANCELLING
        logger.info(f"Order {self.order_id}: cancelling")
        return True

    def _finish(self, succeeded: bool) -> bool:
        self.is_finalizing = False
        self.is_done = True
        self.succeeded = succeeded
        self.status = OrderStatus.DONE
        return succeeded

    async def run(self) -> bool:
        """
        Drive the order to a terminal state.

        Returns:
            True if the final transaction confirmed

        Raises:
            OrderError: If the order was already run
        """
        if self._started:
            raise OrderError(f"Order {self.order_id} has already been run")
        self._started = True

        if self.token.cancelled:
            return self._finish(False)

        if self.precursor_txids:
            logger.debug(
                f"Order {self.order_id}: waiting on {len(self.precursor_txids)} precursor(s)"
            )
            confirmed = await asyncio.gather(
                *(self.builder.wait_for_tx(txid, self.token) for txid in self.precursor_txids)
            )
            if not all(confirmed):
                logger.info(f"Order {self.order_id}: cancelled while waiting on precursors")
                return self._finish(False)

        if self.token.cancelled:
            return self._finish(False)

        self.status = OrderStatus.CONFIRMING
        # No cancel can take effect once the broadcast is in flight
        self.is_finalizing = True
        try:
            self.final_txid = await self.builder.send_tx(self.final_tx)
        except DexError as e:
            logger.error(f"Order {self.order_id}: could not send final {self.side.value} "
                         f"transaction: {e}")
            return self._finish(False)

        logger.info(f"Order {self.order_id}: final transaction {self.final_txid} broadcast")

        await self.builder.wait_for_tx(self.final_txid)
        self.remaining = 0
        logger.info(f"Order {self.order_id}: confirmed")
        return self._finish(True)

    def summary(self) -> dict[str, Any]:
        """Display row for an open-orders table."""
        return {
            "time": self.created_at,
            "status": self.status.value,
            "id_buy": self.property_id if self.side == Side.BUY else PROPID_COIN,
            "id_sell": self.property_id if self.side == Side.SELL else PROPID_COIN,
            "quantity": self.quantity,
            "remaining": self.remaining,
            "price": self.price,
            "fee": self.fee,
            "total": mul_price(self.quantity, self.price) + self.fee,
        }

    def describe(self) -> str:
        return (
            f"#{self.order_id} {self.order_type.value} {self.side.value} "
            f"{format_quantity(self.quantity)} of property {self.property_id} "
            f"@ {format_amount(self.price)} ({self.status.value})"
        )

    def __repr__(self) -> str:
        return f"Order({self.describe()})"
