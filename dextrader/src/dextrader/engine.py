"""
Trading engine context.

One ``TradingEngine`` is created per session and handed to every consumer.
It owns the daemon backend, the fee estimator and transaction builder, the
trades database and its time cache, the pending-orders list and the named
locks that serialize work on each shared resource.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import httpx
from loguru import logger

from dexcore.constants import ACCOUNT_LABEL, OrderAction
from dexcore.errors import DexError, InsufficientFundsError, OrderError
from dexcore.models import AssetTrade, FillSend, OrderType, Side
from dexcore.platforms import PlatformConstants, get_platform, platform_from_subversion
from dexcore.retry import retry_async
from dexwallet.backends.base import OmniBackend
from dexwallet.backends.omni_core import OmniCoreBackend

from dextrader.chain_send import ChainSendResult, chain_send, plan_chain_sends
from dextrader.config import TraderConfig
from dextrader.estimate import FeeEstimator
from dextrader.order import Order
from dextrader.orderbook import get_address_assets, get_fill_orders
from dextrader.timecache import TimeCache
from dextrader.tradesdb import TradesDB
from dextrader.tx_builder import RawTxBuilder


@dataclass
class EngineLocks:
    """One lock per shared resource; a new trigger queues behind the one in flight."""

    fee: asyncio.Lock = field(default_factory=asyncio.Lock)
    trade: asyncio.Lock = field(default_factory=asyncio.Lock)
    trades_db: asyncio.Lock = field(default_factory=asyncio.Lock)


class TradingEngine:
    """Session-wide handle on the daemon, the trade history and pending orders."""

    def __init__(
        self,
        backend: OmniBackend,
        platform: PlatformConstants,
        config: TraderConfig | None = None,
    ):
        self.backend = backend
        self.platform = platform
        self.config = config or TraderConfig()

        self.estimator = FeeEstimator(backend, platform, retries=self.config.retries)
        self.builder = RawTxBuilder(
            backend,
            platform,
            retries=self.config.retries,
            poll_interval=self.config.poll_interval,
        )
        self.trades_db = TradesDB(self.config.db_path, platform)
        self.trade_cache: TimeCache[AssetTrade] = TimeCache(
            fetch=self._fetch_trades, key=lambda t: t.block_height
        )

        self.locks = EngineLocks()
        self.orders: list[Order] = []
        self._tasks: dict[int, asyncio.Task[bool]] = {}
        self._next_order_id = 0

    @classmethod
    async def connect(
        cls, config: TraderConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> TradingEngine:
        """Open the daemon connection, resolve the platform and open the trades DB."""
        backend = OmniCoreBackend(
            rpc_url=config.rpc_url,
            rpc_user=config.rpc_user,
            rpc_password=config.rpc_password,
            timeout=config.rpc_timeout,
            legacy_sign=config.legacy_sign,
            batch_size=config.batch_size,
            transport=transport,
        )
        try:
            if config.platform is not None:
                platform = get_platform(config.platform)
            else:
                info = await retry_async(backend.get_network_info, attempts=config.retries)
                platform = platform_from_subversion(info.subversion)
                logger.info(f"Detected {platform.coin_name} daemon ({info.subversion})")
        except Exception:
            await backend.close()
            raise

        engine = cls(backend, platform, config)
        engine.trades_db.init()
        return engine

    async def close(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        self.trades_db.close()
        await self.backend.close()

    async def __aenter__(self) -> TradingEngine:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def next_order_id(self) -> int:
        self._next_order_id += 1
        return self._next_order_id

    def submit_order(self, order: Order) -> asyncio.Task[bool]:
        """Add ``order`` to the pending list and start running it."""
        self.orders.append(order)
        task = asyncio.create_task(order.run(), name=f"order-{order.order_id}")
        self._tasks[order.order_id] = task
        logger.info(f"Created new order {order.describe()}")
        return task

    def prune_orders(self) -> list[Order]:
        """Drop finished orders from the pending list; returns those dropped."""
        done = [o for o in self.orders if o.is_done]
        self.orders = [o for o in self.orders if not o.is_done]
        for order in done:
            self._tasks.pop(order.order_id, None)
        return done

    def cancel_order(self, order_id: int) -> bool:
        for order in self.orders:
            if order.order_id == order_id:
                return order.cancel()
        raise OrderError(f"No pending order with id {order_id}")

    async def _fetch_trades(self, start: int, end: int) -> list[AssetTrade]:
        return await self.trades_db.refresh(self.backend, start, end)

    async def sync_trades(
        self, start: int | None = None, end: int | None = None
    ) -> list[AssetTrade]:
        """Trades in ``[start, end]`` (defaults: activation height to chain tip)."""
        if end is None:
            info = await retry_async(
                self.backend.get_blockchain_info, attempts=self.config.retries
            )
            end = info.blocks
        if start is None:
            start = self.platform.omni_start_height
        async with self.locks.trades_db:
            return await self.trade_cache.refresh(start, end)

    async def _plan_sends(self, property_id: int, quantity: int) -> list[FillSend]:
        assets = await get_address_assets(self.backend, property_id)
        available = sum(a.amount for a in assets)
        if available < quantity:
            raise InsufficientFundsError(
                f"Only {available} of property {property_id} available, need {quantity}",
                available=available,
                required=quantity,
            )
        return plan_chain_sends(assets, quantity)

    async def send_asset(
        self, property_id: int, quantity: int, recipient: str
    ) -> ChainSendResult:
        """Gather ``quantity`` from wallet addresses and chain-send it to ``recipient``."""
        async with self.locks.trade:
            sends = await self._plan_sends(property_id, quantity)
            async with self.locks.fee:
                fee = await self.estimator.estimate_send_fee(sends, recipient)

            utxo = await self.builder.fund_address(fee.total_fee, sends[0].address)
            return await chain_send(
                self.builder, property_id, sends, utxo, recipient, fee_table=fee.send_fees
            )

    async def sell(
        self,
        property_id: int,
        quantity: int,
        price: int,
        order_type: OrderType = OrderType.LIMIT,
    ) -> Order:
        """
        Post a sell offer for ``quantity`` at ``price`` per unit.

        Tokens are first gathered onto a fresh segwit address by a chain
        send; the signed offer becomes the order's final transaction, sent
        once every hop confirms.
        """
        async with self.locks.trade:
            sends = await self._plan_sends(property_id, quantity)
            address = await retry_async(
                self.backend.get_new_address, ACCOUNT_LABEL, "p2sh-segwit",
                attempts=self.config.retries,
            )
            # Fail before funding if the daemon hands out an address we cannot size
            self.platform.address_type(address)
            async with self.locks.fee:
                fee = await self.estimator.estimate_sell_fee(sends)

            utxo = await self.builder.fund_address(fee.total_fee, sends[0].address)
            chain = await chain_send(
                self.builder, property_id, sends, utxo, address, fee_table=fee.send_fees
            )

            raw_tx = await self.builder.build_order(
                property_id, OrderAction.NEW, chain.final_utxo, fee.post_fee, quantity, price
            )
            final_tx = await self.builder.sign_tx(raw_tx)

            order = Order(
                self.builder,
                Side.SELL,
                order_type,
                property_id,
                quantity,
                price,
                fee.total_fee,
                chain.final_utxo.address,
                final_tx,
                precursor_txids=chain.broadcast_txids,
                order_id=self.next_order_id(),
            )
            self.submit_order(order)
            return order

    async def buy(
        self,
        property_id: int,
        quantity: int,
        price: int | None = None,
        order_type: OrderType = OrderType.MARKET,
        max_fee: int | None = None,
    ) -> Order:
        """
        Accept sell offers covering ``quantity`` and queue the payment.

        Market orders take any price; limit orders stop at ``price``. The
        unfilled remainder is not kept on the book. Sellers whose accept
        cannot be sent are skipped.
        """
        if order_type == OrderType.LIMIT and price is None:
            raise OrderError("Limit buy needs a price")

        async with self.locks.trade:
            plan = await get_fill_orders(
                self.backend,
                property_id,
                quantity,
                price if order_type == OrderType.LIMIT else None,
                no_high_fees=self.config.no_high_fees,
                max_accept_fee=self.config.max_accept_fee,
            )
            if not plan.orders:
                raise OrderError("Could not find any sell orders to fill")

            async with self.locks.fee:
                fee = await self.estimator.estimate_buy_fee(plan.orders)
            if max_fee is not None and fee.total_fee > max_fee:
                raise OrderError(f"Fee too low, need at least {fee.total_fee} sats")

            # Every accept leaves a dust output with its seller; the payment
            # still needs its exodus reference and a change output after that
            dust = self.platform.min_change * len(plan.orders)
            utxo = await self.builder.fund_address(plan.total_pay + fee.total_fee + dust)

            accepted = []
            precursors: list[str] = []
            for fill in plan.orders:
                accept_fee = fee.accept_fees[fill.address]
                try:
                    raw_tx = await self.builder.build_accept(
                        fill.address, property_id, fill.quantity, utxo, accept_fee
                    )
                    txid = await self.builder.sign_and_send(raw_tx)
                except DexError as e:
                    logger.warning(
                        f"Could not fill order from seller {fill.address}, skipping: {e}"
                    )
                    continue
                accepted.append(fill)
                precursors.append(txid)
                utxo = utxo.successor(
                    txid, utxo.address, utxo.amount - self.platform.min_change - accept_fee
                )

            if not accepted:
                raise OrderError(f"No order could be accepted; funds remain at {utxo.outpoint}")

            raw_tx = await self.builder.build_pay(
                [(fill.address, fill.pay_amount) for fill in accepted], utxo, fee.pay_fee
            )
            final_tx = await self.builder.sign_tx(raw_tx)

            order = Order(
                self.builder,
                Side.BUY,
                order_type,
                property_id,
                sum(fill.quantity for fill in accepted),
                price or 0,
                fee.total_fee,
                utxo.address,
                final_tx,
                precursor_txids=precursors,
                no_high_fees=self.config.no_high_fees,
                order_id=self.next_order_id(),
            )
            self.submit_order(order)
            return order
