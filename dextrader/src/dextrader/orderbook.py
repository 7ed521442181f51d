"""
Order-book queries and order selection.

Implements:
- Wallet address balances for a property, net of pending sell offers
- Pending accepts per seller, decoded from their payloads
- Fill planning against active DEx sell offers
"""

from __future__ import annotations

from loguru import logger

from dexcore.amounts import mul_price
from dexcore.constants import (
    API_RETRIES,
    API_RETRIES_LARGE,
    COIN,
    MAX_ACCEPT_FEE,
    TX_TYPE_DEX_ACCEPT,
    TYPE_SELL_OFFER,
)
from dexcore.models import AddressAsset, FillOrder, FillPlan
from dexcore.retry import retry_async
from dexwallet.backends.base import OmniBackend, OmniTx

# Hex offset of the amount field in a DEx accept payload:
# version (2 bytes) + type (2 bytes) + property id (4 bytes)
ACCEPT_AMOUNT_OFFSET = 16
ACCEPT_AMOUNT_LENGTH = 16


def _is_pending_sell(tx: OmniTx, property_id: int) -> bool:
    return tx.type_int == TYPE_SELL_OFFER and tx.property_id == property_id


def _is_pending_cancel(tx: OmniTx, property_id: int) -> bool:
    return _is_pending_sell(tx, property_id) and tx.action == "cancel"


def decode_accept_amount(payload: str, divisible: bool = True) -> int:
    """Amount in satoshi units carried by a DEx accept payload."""
    raw = int(payload[ACCEPT_AMOUNT_OFFSET:ACCEPT_AMOUNT_OFFSET + ACCEPT_AMOUNT_LENGTH], 16)
    return raw if divisible else raw * COIN


async def get_address_assets(backend: OmniBackend, property_id: int) -> list[AddressAsset]:
    """
    Wallet addresses holding ``property_id``, sorted by descending balance.

    Balances are reduced by amounts locked in pending sell offers; addresses
    left with nothing are dropped.
    """
    pending = await retry_async(backend.list_pending_transactions, attempts=API_RETRIES)

    pending_sells: dict[str, int] = {}
    for tx in pending:
        if _is_pending_sell(tx, property_id):
            pending_sells[tx.sending_address] = (
                pending_sells.get(tx.sending_address, 0) - tx.amount
            )
    logger.debug(f"Pending sells for property {property_id}: {pending_sells}")

    balances = await retry_async(backend.get_wallet_address_balances, attempts=API_RETRIES_LARGE)

    assets = []
    for address_balance in balances:
        for balance in address_balance.balances:
            if balance.property_id != property_id:
                continue
            amount = balance.balance + pending_sells.get(address_balance.address, 0)
            if amount <= 0:
                continue
            assets.append(
                AddressAsset(
                    address=address_balance.address,
                    amount=amount,
                    occupied=balance.reserved > 0,
                    pending=address_balance.address in pending_sells,
                )
            )

    assets.sort(key=lambda a: a.amount, reverse=True)
    return assets


async def get_pending_accepts(
    backend: OmniBackend,
    property_id: int | None = None,
    pending: list[OmniTx] | None = None,
) -> dict[str, int]:
    """
    Unconfirmed accepts per seller address, as negative amounts.

    Adding the result to a seller's available amount gives what is still
    free to accept.
    """
    if pending is None:
        pending = await retry_async(
            backend.list_pending_transactions, attempts=API_RETRIES_LARGE
        )

    accepts: dict[str, int] = {}
    for tx in pending:
        if tx.type != TX_TYPE_DEX_ACCEPT:
            continue
        if property_id is not None and tx.property_id != property_id:
            continue
        payload = await retry_async(backend.get_payload, tx.txid, attempts=API_RETRIES)
        amount = decode_accept_amount(payload, tx.divisible)
        accepts[tx.reference_address] = accepts.get(tx.reference_address, 0) - amount

    return accepts


async def get_fill_orders(
    backend: OmniBackend,
    property_id: int,
    quantity: int,
    price: int | None = None,
    no_high_fees: bool = True,
    max_accept_fee: int = MAX_ACCEPT_FEE,
) -> FillPlan:
    """
    Select sell offers to fill a buy of ``quantity``.

    Offers are walked from the cheapest unit price up. Sellers with a
    pending cancel are skipped, as are sellers demanding more than
    ``max_accept_fee`` when ``no_high_fees`` is set. Pending accepts are
    subtracted from what a seller has available.

    Args:
        backend: Daemon backend
        property_id: Property to buy
        quantity: Quantity wanted, in satoshi units
        price: Limit price per whole unit; offers above it end the walk
        no_high_fees: Skip offers with a high minimum accept fee
        max_accept_fee: Highest acceptable minimum accept fee

    Returns:
        Orders to accept and the quantity left unfilled
    """
    sells = await retry_async(backend.get_active_dex_sells, attempts=API_RETRIES_LARGE)
    sells = sorted(
        (s for s in sells if s.property_id == property_id), key=lambda s: s.unit_price
    )

    pending = await retry_async(backend.list_pending_transactions, attempts=API_RETRIES)
    pending_accepts = await get_pending_accepts(backend, property_id, pending)
    pending_cancels = {
        tx.sending_address for tx in pending if _is_pending_cancel(tx, property_id)
    }
    logger.debug(f"Pending accepts: {pending_accepts}, pending cancels: {pending_cancels}")

    orders: list[FillOrder] = []
    remaining = quantity

    for sell in sells:
        if sell.seller in pending_cancels:
            continue
        if no_high_fees and sell.minimum_fee > max_accept_fee:
            logger.debug(f"Skipping {sell.seller}: minimum fee {sell.minimum_fee} too high")
            continue
        if price is not None and sell.unit_price > price:
            break

        available = sell.amount_available + pending_accepts.get(sell.seller, 0)
        if available <= 0:
            continue

        take = min(remaining, available)
        orders.append(
            FillOrder(
                address=sell.seller,
                quantity=take,
                pay_amount=mul_price(take, sell.unit_price),
                min_fee=sell.minimum_fee,
            )
        )
        remaining -= take
        if remaining == 0:
            break

    return FillPlan(orders=orders, remaining=remaining)
