"""
Command-line interface for the DEx trader.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger

from dexcore.amounts import format_amount, format_quantity
from dexcore.errors import DexError
from dexcore.models import AssetTrade, FillSend
from dexcore.platforms import get_platform

from dextrader.config import TraderConfig, get_settings
from dextrader.engine import TradingEngine
from dextrader.tradesdb import TradesDB

app = typer.Typer(
    name="dex-trader",
    help="Omni DEx trader - fee estimation, trade history and pending transactions",
    add_completion=False,
)

RpcUrlOption = Annotated[
    str | None, typer.Option("--rpc-url", envvar="DEX_RPC_URL", help="Daemon RPC URL")
]
RpcUserOption = Annotated[
    str | None, typer.Option("--rpc-user", envvar="DEX_RPC_USER", help="Daemon RPC user")
]
RpcPasswordOption = Annotated[
    str | None,
    typer.Option("--rpc-password", envvar="DEX_RPC_PASSWORD", help="Daemon RPC password"),
]
RpcConfOption = Annotated[
    Path | None,
    typer.Option("--rpc-conf", help="Read RPC credentials from a daemon .conf file"),
]
PlatformOption = Annotated[
    str | None,
    typer.Option("--platform", help="Coin platform: feathercoin | litecoin | bitcoin"),
]
DbPathOption = Annotated[Path | None, typer.Option("--db-path", help="Trades database file")]
LogLevelOption = Annotated[str, typer.Option("--log-level", "-l", help="Log level")]


def setup_logging(level: str, log_file: Path | None = None) -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
    if log_file is not None:
        logger.add(log_file, level="DEBUG", rotation="10 MB", retention=3)


def build_config(
    rpc_url: str | None = None,
    rpc_user: str | None = None,
    rpc_password: str | None = None,
    rpc_conf: Path | None = None,
    platform: str | None = None,
    db_path: Path | None = None,
) -> TraderConfig:
    settings = get_settings()
    if rpc_conf is not None:
        settings.rpc_conf = rpc_conf
    return settings.to_config(
        rpc_url=rpc_url,
        rpc_user=rpc_user,
        rpc_password=rpc_password,
        platform=platform,
        db_path=db_path,
    )


def format_trade(trade: AssetTrade) -> str:
    when = datetime.fromtimestamp(trade.timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
    return (
        f"{when}  {trade.block_height:>9}  {trade.status.value:<8}  "
        f"{trade.id_buy:>6}/{trade.id_sell:<6}  {format_quantity(trade.quantity):>18}  "
        f"{format_amount(trade.amount):>18}  {format_amount(trade.fee):>12}  "
        f"{'*' if trade.is_mine else ' '}  {trade.txid}"
    )


def print_trades(trades: list[AssetTrade]) -> None:
    typer.echo(
        f"{'time':<16}  {'block':>9}  {'status':<8}  {'buy/sell':^13}  {'quantity':>18}  "
        f"{'amount':>18}  {'fee':>12}  m  txid"
    )
    for trade in trades:
        typer.echo(format_trade(trade))
    typer.echo(f"\n{len(trades)} trade(s)")


def _setup(log_level: str) -> None:
    settings = get_settings()
    setup_logging(log_level or settings.log_level, settings.log_file)


@app.command("estimate-fee")
def estimate_fee(
    addresses: Annotated[
        list[str], typer.Argument(help="Addresses the asset is gathered from, in order")
    ],
    destination: Annotated[str, typer.Option("--to", "-t", help="Final destination address")],
    rpc_url: RpcUrlOption = None,
    rpc_user: RpcUserOption = None,
    rpc_password: RpcPasswordOption = None,
    rpc_conf: RpcConfOption = None,
    platform: PlatformOption = None,
    log_level: LogLevelOption = "INFO",
) -> None:
    """Estimate the fee of chain-sending an asset through ADDRESSES to a destination."""
    _setup(log_level)
    config = build_config(rpc_url, rpc_user, rpc_password, rpc_conf, platform)
    asyncio.run(_run_estimate_fee(config, addresses, destination))


async def _run_estimate_fee(
    config: TraderConfig, addresses: list[str], destination: str
) -> None:
    try:
        async with await TradingEngine.connect(config) as engine:
            sends = [FillSend(address=address, amount=0) for address in addresses]
            fee = await engine.estimator.estimate_send_fee(sends, destination)
    except DexError as e:
        logger.error(f"Fee estimation failed: {e}")
        raise typer.Exit(1)

    ticker = engine.platform.coin_ticker
    for i, hop_fee in enumerate(fee.hop_fees):
        typer.echo(f"hop {i}: {format_amount(hop_fee)} {ticker}")
    typer.echo(f"total (with change): {format_amount(fee.total_fee)} {ticker}")


@app.command("sync-trades")
def sync_trades(
    start: Annotated[
        int | None, typer.Option("--start", help="First block (default: activation)")
    ] = None,
    end: Annotated[int | None, typer.Option("--end", help="Last block (default: tip)")] = None,
    rpc_url: RpcUrlOption = None,
    rpc_user: RpcUserOption = None,
    rpc_password: RpcPasswordOption = None,
    rpc_conf: RpcConfOption = None,
    platform: PlatformOption = None,
    db_path: DbPathOption = None,
    log_level: LogLevelOption = "INFO",
) -> None:
    """Sync the local trades database with the chain and print the trades."""
    _setup(log_level)
    config = build_config(rpc_url, rpc_user, rpc_password, rpc_conf, platform, db_path)
    asyncio.run(_run_sync_trades(config, start, end))


async def _run_sync_trades(config: TraderConfig, start: int | None, end: int | None) -> None:
    try:
        async with await TradingEngine.connect(config) as engine:
            trades = await engine.sync_trades(start, end)
            best = engine.trades_db.best_height()
    except DexError as e:
        logger.error(f"Trade sync failed: {e}")
        raise typer.Exit(1)

    print_trades(trades)
    typer.echo(f"Synced up to block {best}")


@app.command()
def history(
    start: Annotated[int, typer.Option("--start", help="First block")],
    end: Annotated[int, typer.Option("--end", help="Last block")],
    platform: Annotated[str, typer.Option("--platform", help="Coin platform")] = "feathercoin",
    db_path: DbPathOption = None,
    log_level: LogLevelOption = "INFO",
) -> None:
    """Print trades in a block range from the local database (no daemon needed)."""
    _setup(log_level)
    config = build_config(platform=platform, db_path=db_path)

    try:
        coin = get_platform(platform)
    except DexError:
        logger.error(f"Unknown platform: {platform}")
        raise typer.Exit(1)

    db = TradesDB(config.db_path, coin)
    db.init()
    try:
        trades = db.read(start, end)
    finally:
        db.close()
    print_trades(trades)


@app.command()
def pending(
    rpc_url: RpcUrlOption = None,
    rpc_user: RpcUserOption = None,
    rpc_password: RpcPasswordOption = None,
    rpc_conf: RpcConfOption = None,
    platform: PlatformOption = None,
    log_level: LogLevelOption = "INFO",
) -> None:
    """List pending protocol transactions seen by the daemon."""
    _setup(log_level)
    config = build_config(rpc_url, rpc_user, rpc_password, rpc_conf, platform)
    asyncio.run(_run_pending(config))


async def _run_pending(config: TraderConfig) -> None:
    try:
        async with await TradingEngine.connect(config) as engine:
            txs = await engine.backend.list_pending_transactions()
    except DexError as e:
        logger.error(f"Could not list pending transactions: {e}")
        raise typer.Exit(1)

    for tx in txs:
        typer.echo(
            f"{tx.txid}  {tx.type:<20}  {tx.sending_address:<36}  "
            f"property={tx.property_id}  amount={format_quantity(tx.amount)}"
        )
    typer.echo(f"\n{len(txs)} pending transaction(s)")


def main() -> None:
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
