"""
Tests for the trading engine.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import pytest
import pytest_asyncio

from dexcore.constants import COIN, TX_TYPE_DEX_SELL
from dexcore.errors import (
    InsufficientFundsError,
    LogicalInvariantError,
    OrderError,
    UnsupportedAddressError,
)
from dexcore.models import OrderType, Side
from dexcore.platforms import BITCOIN, FEATHERCOIN, LITECOIN
from dexwallet.backends.base import AddressBalance, DexSell, OmniTx, PropertyBalance

from dextrader.config import TraderConfig
from dextrader.engine import TradingEngine

if TYPE_CHECKING:
    from conftest import FakeBackend

START = FEATHERCOIN.omni_start_height


@pytest.fixture
def config(tmp_path: Path) -> TraderConfig:
    return TraderConfig(db_path=tmp_path / "trades.db", retries=1, poll_interval=0.001)


@pytest_asyncio.fixture
async def engine(backend: FakeBackend, config: TraderConfig) -> AsyncIterator[TradingEngine]:
    trading_engine = TradingEngine(backend, FEATHERCOIN, config)
    trading_engine.trades_db.init()
    yield trading_engine
    await trading_engine.close()


def daemon(subversion: str) -> tuple[httpx.MockTransport, list[str]]:
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        methods.append(body["method"])
        result = {"subversion": subversion, "version": 130000}
        return httpx.Response(200, json={"id": body["id"], "result": result, "error": None})

    return httpx.MockTransport(handler), methods


class TestConnect:
    """Tests for opening an engine against a daemon."""

    @pytest.mark.asyncio
    async def test_detects_platform(self, config: TraderConfig) -> None:
        transport, methods = daemon("/Feathercoin:0.13.0/")

        async with await TradingEngine.connect(config, transport=transport) as engine:
            assert engine.platform is FEATHERCOIN
            assert engine.trades_db.ready
            assert methods == ["getnetworkinfo"]

        assert not engine.trades_db.ready

    @pytest.mark.asyncio
    async def test_configured_platform(self, config: TraderConfig) -> None:
        transport, methods = daemon("/Feathercoin:0.13.0/")
        config.platform = "bitcoin"

        async with await TradingEngine.connect(config, transport=transport) as engine:
            assert engine.platform is BITCOIN
        assert methods == []

    @pytest.mark.asyncio
    async def test_unknown_daemon(self, config: TraderConfig) -> None:
        transport, _ = daemon("/Dogecoin:1.14.0/")

        with pytest.raises(LogicalInvariantError):
            await TradingEngine.connect(config, transport=transport)


class TestSendAsset:
    """Tests for gathering tokens onto one address."""

    @pytest.mark.asyncio
    async def test_chain_sends_from_largest(
        self, engine: TradingEngine, backend: FakeBackend
    ) -> None:
        backend.balances = [
            AddressBalance("6b", [PropertyBalance(3, "TKN", 3 * COIN)]),
            AddressBalance("6a", [PropertyBalance(3, "TKN", 5 * COIN)]),
        ]

        result = await engine.send_asset(3, 7 * COIN, "6dest")

        # two legacy -> legacy hops at 223 sats plus the final dust
        assert backend.called("create_raw_transaction")[0] == ([], [("6a", 223 * 2 + 546)])
        assert backend.called("create_payload_simple_send") == [(3, "5"), (3, "7")]
        assert result.final_utxo.address == "6dest"
        assert result.final_utxo.amount == 546
        assert len(result.broadcast_txids) == 2

    @pytest.mark.asyncio
    async def test_insufficient_tokens(self, engine: TradingEngine, backend: FakeBackend) -> None:
        backend.balances = [AddressBalance("6a", [PropertyBalance(3, "TKN", COIN)])]

        with pytest.raises(InsufficientFundsError) as exc_info:
            await engine.send_asset(3, 2 * COIN, "6dest")

        assert exc_info.value.available == COIN
        assert backend.sent == []


class TestSell:
    """Tests for posting sell offers."""

    @pytest.mark.asyncio
    async def test_sell_order_runs_after_chain_send(
        self, engine: TradingEngine, backend: FakeBackend
    ) -> None:
        backend.balances = [AddressBalance("6a", [PropertyBalance(3, "TKN", 5 * COIN)])]

        order = await engine.sell(3, 2 * COIN, 10_000_000)

        assert order.side == Side.SELL
        assert order.funding_address.startswith("3new")
        assert len(order.precursor_txids) == 1
        assert backend.called("create_payload_dex_sell") == [
            (3, "2", "0.20000000", 50, "0.00010000", 1)
        ]

        assert await engine._tasks[order.order_id] is True
        assert order.succeeded
        # funding, one hop, then the offer itself
        assert len(backend.sent) == 3
        assert engine.prune_orders() == [order]
        assert engine.orders == []

    @pytest.mark.asyncio
    async def test_litecoin_sell(self, backend: FakeBackend, config: TraderConfig) -> None:
        backend.address_prefixes = {"legacy": "L", "p2sh-segwit": "M", "bech32": "ltc1q"}
        backend.balances = [AddressBalance("Labc", [PropertyBalance(3, "TKN", 2 * COIN)])]
        engine = TradingEngine(backend, LITECOIN, config)
        engine.trades_db.init()
        try:
            order = await engine.sell(3, COIN, 10_000_000)

            assert order.funding_address.startswith("Mnew")
            # legacy -> segwit hop, the offer, and Litecoin's larger dust
            assert backend.called("create_raw_transaction")[0] == (
                [], [("Labc", 222 + 183 + 5460)]
            )
            assert await engine._tasks[order.order_id] is True
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_unusable_address_fails_before_funding(
        self, engine: TradingEngine, backend: FakeBackend
    ) -> None:
        backend.address_prefixes["p2sh-segwit"] = "ltc1q"
        backend.balances = [AddressBalance("6a", [PropertyBalance(3, "TKN", 5 * COIN)])]

        with pytest.raises(UnsupportedAddressError):
            await engine.sell(3, 2 * COIN, 10_000_000)

        assert backend.sent == []
        assert engine.orders == []


class TestBuy:
    """Tests for accepting offers and queueing payment."""

    @pytest.fixture
    def book(self, backend: FakeBackend) -> FakeBackend:
        backend.dex_sells = [
            DexSell(txid="offer", seller="6A", property_id=3, amount_available=5 * COIN,
                    unit_price=10_000_000, minimum_fee=10_000),
        ]
        return backend

    @pytest.mark.asyncio
    async def test_market_buy(self, engine: TradingEngine, book: FakeBackend) -> None:
        order = await engine.buy(3, 2 * COIN)

        assert order.side == Side.BUY
        assert order.order_type == OrderType.MARKET
        assert order.quantity == 2 * COIN
        assert book.called("create_payload_dex_accept") == [(3, "2")]

        assert await engine._tasks[order.order_id] is True
        pay_outputs = book.info(book.sent[-1])["outputs"]
        assert pay_outputs[0][1] == 546
        assert pay_outputs[2:] == [("6A", 20_000_000)]

    @pytest.mark.asyncio
    async def test_limit_buy_needs_price(self, engine: TradingEngine, book: FakeBackend) -> None:
        with pytest.raises(OrderError):
            await engine.buy(3, COIN, order_type=OrderType.LIMIT)

    @pytest.mark.asyncio
    async def test_limit_below_book(self, engine: TradingEngine, book: FakeBackend) -> None:
        with pytest.raises(OrderError):
            await engine.buy(3, COIN, price=5_000_000, order_type=OrderType.LIMIT)
        assert book.sent == []

    @pytest.mark.asyncio
    async def test_fee_cap(self, engine: TradingEngine, book: FakeBackend) -> None:
        with pytest.raises(OrderError):
            await engine.buy(3, COIN, max_fee=1_000)
        assert book.sent == []

    @pytest.mark.asyncio
    async def test_no_accept_succeeds(self, engine: TradingEngine, book: FakeBackend) -> None:
        book.max_sends = 1

        with pytest.raises(OrderError):
            await engine.buy(3, COIN)

        assert len(book.sent) == 1
        assert engine.orders == []


class TestOrders:
    """Tests for the pending-orders list."""

    def test_cancel_unknown_order(self, engine: TradingEngine) -> None:
        with pytest.raises(OrderError):
            engine.cancel_order(99)

    def test_order_ids_increase(self, engine: TradingEngine) -> None:
        assert [engine.next_order_id() for _ in range(3)] == [1, 2, 3]


class TestSyncTrades:
    """Tests for trade history through the time cache."""

    @pytest.mark.asyncio
    async def test_sync_uses_cache(self, engine: TradingEngine, backend: FakeBackend) -> None:
        backend.height = START + 10
        offer = OmniTx(
            txid=f"{5:064x}", type=TX_TYPE_DEX_SELL, type_int=20, sending_address="6s",
            valid=True, block=START + 5, blocktime=1_700_000_000, property_id=3,
            amount=COIN, desired=10_000_000, action="new",
        )
        backend.block_txids[START + 5] = [offer.txid]
        backend.omni_txs[offer.txid] = offer

        first = await engine.sync_trades()
        second = await engine.sync_trades()

        assert [t.txid for t in first] == [offer.txid]
        assert second == first
        assert len(backend.called("list_block_transactions")) == 1
        assert engine.trades_db.best_height() == START + 10
