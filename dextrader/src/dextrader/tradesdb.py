"""
Local trade-history database.

One sqlite table per coin holds every DEx trade seen on chain, keyed by
txid, with monetary columns as satoshi integers. A ``Variables`` table keeps
the per-coin sync watermark. ``refresh`` answers a height-range query and at
the same time extends the watermark: the rows it fetched and the new
watermark are written in one transaction, so readers never see half a sync.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger

from dexcore.constants import (
    API_RETRIES,
    API_RETRIES_LARGE,
    PROPID_COIN,
    TX_TYPE_DEX_PURCHASE,
    TYPE_SELL_OFFER,
)
from dexcore.errors import InvalidRangeError
from dexcore.models import AssetTrade, TradeStatus
from dexcore.platforms import PlatformConstants
from dexcore.retry import retry_async
from dexwallet.backends.base import OmniBackend, OmniTx, WalletTx

DBRow = tuple[bytes, int, int, int, int, int, int, int, int]

TRADE_COLUMNS = (
    ("txid", "BLOB PRIMARY KEY"),
    ("unixtime", "INTEGER"),
    ("block", "INTEGER"),
    ("is_mine", "INTEGER"),
    ("id_buy", "INTEGER"),
    ("id_sell", "INTEGER"),
    ("quantity", "INTEGER"),
    ("amount", "INTEGER"),
    ("fee", "INTEGER"),
)


def to_db_cols(trade: AssetTrade) -> DBRow:
    return (
        bytes.fromhex(trade.txid),
        trade.timestamp,
        trade.block_height,
        1 if trade.is_mine else 0,
        trade.id_buy,
        trade.id_sell,
        trade.quantity,
        trade.amount,
        trade.fee,
    )


def from_db_cols(row: DBRow | sqlite3.Row) -> AssetTrade:
    """Rebuild a trade from a stored row; a zero quantity is a cancelled offer."""
    txid, unixtime, block, is_mine, id_buy, id_sell, quantity, amount, fee = tuple(row)
    return AssetTrade(
        txid=bytes(txid).hex(),
        block_height=block,
        timestamp=unixtime,
        status=TradeStatus.CANCELED if quantity == 0 else TradeStatus.CLOSED,
        id_buy=id_buy,
        id_sell=id_sell,
        quantity=quantity,
        amount=amount,
        fee=fee,
        is_mine=bool(is_mine),
    )


def _tx_fee(fees: dict[str, int], txid: str) -> int:
    # Wallet fees are reported negative for sends
    return -fees.get(txid, 0)


def classify_trades(omni_txs: list[OmniTx], fees: dict[str, int]) -> list[AssetTrade]:
    """
    Turn protocol transactions into trade records.

    Valid purchases inside a DEx payment become buy-side trades; valid sell
    offers become sell-side trades, a cancel being a zero-quantity record.
    Everything else is ignored.
    """
    trades: list[AssetTrade] = []

    for tx in omni_txs:
        if tx.block is None:
            continue
        if tx.type == TX_TYPE_DEX_PURCHASE:
            for purchase in tx.purchases:
                if not purchase.valid:
                    continue
                trades.append(
                    AssetTrade(
                        txid=tx.txid,
                        block_height=tx.block,
                        timestamp=tx.blocktime or 0,
                        status=TradeStatus.CLOSED,
                        id_buy=purchase.property_id,
                        id_sell=PROPID_COIN,
                        quantity=purchase.amount_bought,
                        amount=purchase.amount_paid,
                        fee=_tx_fee(fees, tx.txid),
                        is_mine=purchase.is_mine,
                    )
                )
        elif tx.type_int == TYPE_SELL_OFFER and tx.valid:
            cancelled = tx.action == "cancel"
            trades.append(
                AssetTrade(
                    txid=tx.txid,
                    block_height=tx.block,
                    timestamp=tx.blocktime or 0,
                    status=TradeStatus.CANCELED if cancelled else TradeStatus.CLOSED,
                    id_buy=PROPID_COIN,
                    id_sell=tx.property_id or 0,
                    quantity=0 if cancelled else tx.amount,
                    amount=0 if cancelled else tx.desired,
                    fee=_tx_fee(fees, tx.txid),
                    is_mine=tx.is_mine,
                    seller_address=tx.sending_address or None,
                )
            )

    trades.sort(key=lambda t: t.timestamp)
    return trades


class TradesDB:
    """
    Durable per-coin trade cache with an incremental sync watermark.

    Args:
        path: sqlite database file, or ``":memory:"``
        platform: Coin whose table and activation height are used
    """

    def __init__(self, path: str | Path, platform: PlatformConstants):
        self.path = str(path)
        self.platform = platform
        self.progress_message: str | None = None
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def table(self) -> str:
        return f'"{self.platform.coin_name}"'

    @property
    def ready(self) -> bool:
        return self._conn is not None

    def init(self) -> None:
        if self._conn is not None:
            return
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path)
        columns = ", ".join(f"{name} {kind}" for name, kind in TRADE_COLUMNS)
        with self._conn:
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS Variables (coin TEXT PRIMARY KEY, best_height INTEGER)"
            )
            self._conn.execute(f"CREATE TABLE IF NOT EXISTS {self.table} ({columns})")
            self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS "
                f'"idx_{self.platform.coin_name}_block" ON {self.table} (block)'
            )
        logger.debug(f"Trades database opened at {self.path}")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Trades database not initialised")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.conn
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def best_height(self) -> int:
        row = self.conn.execute(
            "SELECT best_height FROM Variables WHERE coin = ?", (self.platform.coin_name,)
        ).fetchone()
        if row is None or not row[0]:
            return self.platform.omni_start_height
        return int(row[0])

    def row_count(self) -> int:
        return int(self.conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()[0])

    def read(self, start: int, end: int) -> list[AssetTrade]:
        rows = self.conn.execute(
            f"SELECT txid, unixtime, block, is_mine, id_buy, id_sell, quantity, amount, fee "
            f"FROM {self.table} WHERE block BETWEEN ? AND ? ORDER BY unixtime ASC",
            (start, end),
        ).fetchall()
        return [from_db_cols(row) for row in rows]

    def write(self, trades: list[AssetTrade], best_height: int) -> None:
        """Upsert ``trades`` and move the watermark in one transaction."""
        placeholders = ", ".join("?" for _ in TRADE_COLUMNS)
        with self.transaction() as conn:
            conn.executemany(
                f"INSERT OR REPLACE INTO {self.table} VALUES ({placeholders})",
                [to_db_cols(trade) for trade in trades],
            )
            conn.execute(
                "INSERT OR REPLACE INTO Variables (coin, best_height) VALUES (?, ?)",
                (self.platform.coin_name, best_height),
            )

    async def list_asset_trades(
        self, backend: OmniBackend, start: int, end: int
    ) -> list[AssetTrade]:
        """Fetch and classify every DEx trade in blocks ``[start, end]``."""
        logger.debug(f"list_asset_trades [{start}, {end}]")
        txids = await retry_async(
            backend.list_block_transactions, start, end, attempts=API_RETRIES_LARGE
        )
        total = len(txids)

        self.progress_message = f"Querying {total} transaction fees"
        wallet_txs: list[WalletTx | None] = await retry_async(
            backend.get_transactions, txids, attempts=API_RETRIES
        )
        fees = {tx.txid: tx.fee for tx in wallet_txs if tx is not None}

        self.progress_message = f"Querying {total} transactions"
        omni_txs = await retry_async(backend.get_omni_transactions, txids, attempts=API_RETRIES)

        self.progress_message = "Processing transactions"
        return classify_trades([tx for tx in omni_txs if tx is not None], fees)

    async def refresh(self, backend: OmniBackend, start: int, end: int) -> list[AssetTrade]:
        """
        Trades in blocks ``[start, end]``, syncing new chain data first.

        Chain data from the watermark up to the current tip is fetched; rows
        up to ``min(end, tip)`` are written and the watermark advanced there in
        one transaction. Cached and fresh rows are merged by txid, fresh
        winning, and returned oldest first.

        Raises:
            InvalidRangeError: ``start > end`` or ``start`` before protocol
                activation
        """
        if start > end:
            raise InvalidRangeError(f"start {start} > end {end}")
        if start < self.platform.omni_start_height:
            raise InvalidRangeError(
                f"Height {start} precedes activation height {self.platform.omni_start_height}"
            )

        async with self._lock:
            best = self.best_height()
            info = await retry_async(backend.get_blockchain_info, attempts=API_RETRIES)
            height = info.blocks

            cached = self.read(start, end)
            try:
                fetched = (
                    await self.list_asset_trades(backend, best, height) if best <= height else []
                )
            finally:
                self.progress_message = None

            # Blocks past the tip have not been fetched yet
            watermark = max(best, min(end, height))
            to_write = [t for t in fetched if t.block_height <= watermark]
            self.write(to_write, watermark)
            logger.info(
                f"Synced {len(to_write)} trade(s) for {self.platform.coin_name}, "
                f"watermark {watermark}"
            )

            # Fresh trades go through the row mapping so both sources agree
            merged = {t.txid: t for t in cached}
            merged.update(
                {
                    t.txid: from_db_cols(to_db_cols(t))
                    for t in fetched
                    if start <= t.block_height <= end
                }
            )
            return sorted(merged.values(), key=lambda t: t.timestamp)
