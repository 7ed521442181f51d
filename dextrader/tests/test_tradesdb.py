"""
Tests for the trade-history database.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from dexcore.constants import COIN, PROPID_COIN, TX_TYPE_DEX_PURCHASE, TX_TYPE_DEX_SELL
from dexcore.errors import InvalidRangeError
from dexcore.models import AssetTrade, TradeStatus
from dexcore.platforms import FEATHERCOIN
from dexwallet.backends.base import OmniTx, Purchase, WalletTx

from dextrader.tradesdb import TradesDB, classify_trades, from_db_cols, to_db_cols

if TYPE_CHECKING:
    from conftest import FakeBackend

START = FEATHERCOIN.omni_start_height


def txid(n: int) -> str:
    return f"{n:064x}"


def purchase_tx(n: int, block: int) -> OmniTx:
    return OmniTx(
        txid=txid(n),
        type=TX_TYPE_DEX_PURCHASE,
        type_int=-1,
        valid=True,
        block=block,
        blocktime=1_700_000_000 + block,
        purchases=[
            Purchase(property_id=3, amount_bought=COIN, amount_paid=10_000_000,
                     is_mine=True, valid=True),
        ],
    )


def sell_tx(n: int, block: int, action: str = "new") -> OmniTx:
    return OmniTx(
        txid=txid(n),
        type=TX_TYPE_DEX_SELL,
        type_int=20,
        sending_address="6seller",
        valid=True,
        block=block,
        blocktime=1_700_000_000 + block,
        property_id=3,
        amount=5 * COIN,
        desired=50_000_000,
        action=action,
    )


def make_trade(n: int, block: int, quantity: int = COIN) -> AssetTrade:
    return AssetTrade(
        txid=txid(n),
        block_height=block,
        timestamp=1_700_000_000 + block,
        status=TradeStatus.CLOSED if quantity else TradeStatus.CANCELED,
        id_buy=3,
        id_sell=PROPID_COIN,
        quantity=quantity,
        amount=10_000_000,
        fee=2_000,
        is_mine=True,
    )


@pytest.fixture
def db(db_path: Path) -> Iterator[TradesDB]:
    trades_db = TradesDB(db_path, FEATHERCOIN)
    trades_db.init()
    yield trades_db
    trades_db.close()


@pytest.fixture
def chain(backend: FakeBackend) -> FakeBackend:
    """Three DEx transactions plus an unrelated one, tip ten blocks past activation."""
    backend.height = START + 10
    txs = [
        purchase_tx(1, START + 2),
        sell_tx(2, START + 5),
        sell_tx(3, START + 8, action="cancel"),
        OmniTx(txid=txid(4), type="Simple Send", type_int=0, valid=True, block=START + 8),
    ]
    for tx in txs:
        backend.block_txids.setdefault(tx.block, []).append(tx.txid)
        backend.omni_txs[tx.txid] = tx
    backend.wallet_txs[txid(1)] = WalletTx(txid=txid(1), confirmations=9, fee=-2_000)
    return backend


class TestRowConversion:
    """Tests for the row mapping."""

    def test_round_trip(self) -> None:
        trade = make_trade(7, START + 1)
        assert from_db_cols(to_db_cols(trade)) == trade

    def test_txid_stored_as_bytes(self) -> None:
        row = to_db_cols(make_trade(7, START + 1))
        assert row[0] == bytes.fromhex(txid(7))
        assert row[3] == 1

    def test_zero_quantity_is_cancelled(self) -> None:
        trade = from_db_cols(to_db_cols(make_trade(7, START + 1, quantity=0)))
        assert trade.status == TradeStatus.CANCELED


class TestClassifyTrades:
    """Tests for turning protocol transactions into trades."""

    def test_purchase_and_sells(self) -> None:
        trades = classify_trades(
            [sell_tx(2, START + 5), purchase_tx(1, START + 2), sell_tx(3, START + 8, "cancel")],
            {txid(1): -2_000, txid(2): -3_000},
        )

        assert [t.txid for t in trades] == [txid(1), txid(2), txid(3)]
        buy, offer, cancel = trades
        assert (buy.id_buy, buy.id_sell) == (3, PROPID_COIN)
        assert (buy.quantity, buy.amount, buy.fee) == (COIN, 10_000_000, 2_000)
        assert (offer.id_buy, offer.id_sell) == (PROPID_COIN, 3)
        assert (offer.quantity, offer.amount, offer.fee) == (5 * COIN, 50_000_000, 3_000)
        assert offer.seller_address == "6seller"
        assert cancel.status == TradeStatus.CANCELED
        assert (cancel.quantity, cancel.amount) == (0, 0)

    def test_skips_unconfirmed_and_invalid(self) -> None:
        unconfirmed = sell_tx(1, START)
        unconfirmed.block = None
        invalid = sell_tx(2, START)
        invalid.valid = False
        bad_purchase = purchase_tx(3, START)
        bad_purchase.purchases[0].valid = False

        assert classify_trades([unconfirmed, invalid, bad_purchase], {}) == []


class TestTradesDB:
    """Tests for storage and incremental sync."""

    def test_init_creates_tables(self, db: TradesDB, db_path: Path) -> None:
        assert db.ready
        assert db.best_height() == START
        assert db.row_count() == 0

        conn = sqlite3.connect(db_path)
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master")}
        conn.close()
        assert {"Variables", "Feathercoin"} <= tables

    def test_uninitialised(self, db_path: Path) -> None:
        with pytest.raises(RuntimeError):
            TradesDB(db_path, FEATHERCOIN).row_count()

    def test_write_is_idempotent(self, db: TradesDB) -> None:
        trades = [make_trade(1, START + 1), make_trade(2, START + 2)]

        db.write(trades, START + 5)
        db.write(trades, START + 5)

        assert db.row_count() == 2
        assert db.best_height() == START + 5
        assert db.read(START, START + 10) == trades

    def test_write_rolls_back_on_error(self, db: TradesDB) -> None:
        bad = make_trade(1, START + 1)
        object.__setattr__(bad, "txid", "not hex")

        with pytest.raises(ValueError):
            db.write([make_trade(2, START + 2), bad], START + 5)

        assert db.row_count() == 0
        assert db.best_height() == START

    @pytest.mark.asyncio
    async def test_refresh_writes_up_to_end(self, db: TradesDB, chain: FakeBackend) -> None:
        trades = await db.refresh(chain, START, START + 6)

        assert [t.txid for t in trades] == [txid(1), txid(2)]
        assert db.row_count() == 2
        assert db.best_height() == START + 6
        assert db.progress_message is None

    @pytest.mark.asyncio
    async def test_refresh_resumes_from_watermark(
        self, db: TradesDB, chain: FakeBackend
    ) -> None:
        await db.refresh(chain, START, START + 6)
        trades = await db.refresh(chain, START, START + 10)

        assert chain.called("list_block_transactions") == [
            (START, START + 10),
            (START + 6, START + 10),
        ]
        assert [t.txid for t in trades] == [txid(1), txid(2), txid(3)]
        assert trades[2].status == TradeStatus.CANCELED
        assert db.row_count() == 3
        assert db.best_height() == START + 10

    @pytest.mark.asyncio
    async def test_refresh_is_idempotent(self, db: TradesDB, chain: FakeBackend) -> None:
        first = await db.refresh(chain, START, START + 10)
        second = await db.refresh(chain, START, START + 10)

        assert first == second
        assert db.row_count() == 3
        distinct = db.conn.execute('SELECT COUNT(DISTINCT txid) FROM "Feathercoin"').fetchone()
        assert distinct[0] == 3

    @pytest.mark.asyncio
    async def test_refresh_past_tip_keeps_unfetched_blocks(
        self, db: TradesDB, chain: FakeBackend
    ) -> None:
        await db.refresh(chain, START, START + 20)
        assert db.best_height() == START + 10

        late = sell_tx(5, START + 15)
        chain.block_txids[START + 15] = [late.txid]
        chain.omni_txs[late.txid] = late
        chain.height = START + 20

        trades = await db.refresh(chain, START, START + 20)

        assert chain.called("list_block_transactions") == [
            (START, START + 10),
            (START + 10, START + 20),
        ]
        assert txid(5) in [t.txid for t in trades]
        assert db.row_count() == 4
        assert db.best_height() == START + 20

    @pytest.mark.asyncio
    async def test_refresh_window_filters_rows(self, db: TradesDB, chain: FakeBackend) -> None:
        await db.refresh(chain, START, START + 10)

        trades = await db.refresh(chain, START + 4, START + 6)

        assert [t.txid for t in trades] == [txid(2)]

    @pytest.mark.asyncio
    async def test_refresh_invalid_ranges(self, db: TradesDB, chain: FakeBackend) -> None:
        with pytest.raises(InvalidRangeError):
            await db.refresh(chain, START + 5, START + 1)
        with pytest.raises(InvalidRangeError):
            await db.refresh(chain, START - 1, START + 1)
        assert chain.called("list_block_transactions") == []
