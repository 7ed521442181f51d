"""
Chain-send planning and execution.

Tokens held across several wallet addresses are gathered by a chain of
simple sends ``[a] -> [b] -> [c] -> ... -> [final]``. Each hop spends the
previous hop's output, so the single funding UTXO pays every fee along the
way and hops run strictly one after another.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from loguru import logger

from dexcore.errors import ChainSendPartialFailure
from dexcore.fees import SendFeeTable
from dexcore.models import UTXO, AddressAsset, FillSend

from dextrader.tx_builder import RawTxBuilder

BroadcastCallback = Callable[[int, str], Awaitable[None] | None]


def plan_chain_sends(address_assets: list[AddressAsset], target: int) -> list[FillSend]:
    """
    Greedily pick hops until ``target`` is covered.

    Addresses are consumed in the order given (conventionally descending
    balance); the last hop is truncated to the exact remainder. Occupied
    addresses are not filtered here.
    """
    sends: list[FillSend] = []
    remaining = target

    for asset in address_assets:
        if remaining <= asset.amount:
            sends.append(FillSend(address=asset.address, amount=remaining))
            break
        sends.append(FillSend(address=asset.address, amount=asset.amount))
        remaining -= asset.amount

    return sends


@dataclass
class ChainSendResult:
    final_utxo: UTXO
    broadcast_txids: list[str] = field(default_factory=list)


async def chain_send(
    builder: RawTxBuilder,
    property_id: int,
    sends: list[FillSend],
    funding_utxo: UTXO,
    final_address: str,
    fee_table: SendFeeTable | None = None,
    on_broadcast: BroadcastCallback | None = None,
    per_hop_fee: int | None = None,
) -> ChainSendResult:
    """
    Execute a chain of sends, one hop at a time.

    Hop ``i`` moves the running total gathered so far to the next hop's
    address (``final_address`` for the last one). The next hop spends
    output 0 of the previous broadcast.

    Args:
        builder: Transaction builder bound to the daemon
        property_id: Property being moved
        sends: Hops from ``plan_chain_sends``
        funding_utxo: UTXO paying every hop's fee
        final_address: Destination of the last hop
        fee_table: Per address-type-pair hop fees
        on_broadcast: Called with ``(hop, txid)`` after each broadcast
        per_hop_fee: Flat fee overriding ``fee_table``

    Returns:
        The UTXO left after the last hop and every broadcast txid in order

    Raises:
        ChainSendPartialFailure: A hop failed; carries the hop index, the
            txids already broadcast and the last UTXO that exists on chain
    """
    if fee_table is None and per_hop_fee is None:
        raise ValueError("chain_send needs a fee table or a per-hop fee")

    utxo = funding_utxo
    amount = 0
    txids: list[str] = []

    for i, send in enumerate(sends):
        next_address = final_address if i == len(sends) - 1 else sends[i + 1].address
        amount += send.amount

        try:
            if per_hop_fee is not None:
                fee = per_hop_fee
            else:
                fee = fee_table.for_hop(builder.platform, send.address, next_address)

            logger.debug(f"chain_send hop {i}: {send.address} -> {next_address} amount={amount}")
            raw_tx = await builder.build_send(next_address, property_id, amount, utxo, fee)
            txid = await builder.sign_and_send(raw_tx)
        except Exception as e:
            logger.error(f"Chain send failed at hop {i} after {len(txids)} broadcast(s): {e}")
            raise ChainSendPartialFailure(
                failed_hop=i,
                last_utxo=utxo,
                broadcast_txids=list(txids),
                cause=e,
            ) from e

        txids.append(txid)
        utxo = utxo.successor(txid, next_address, utxo.amount - fee)
        logger.debug(f"chain_send hop {i} broadcast: {txid}")

        if on_broadcast is not None:
            result = on_broadcast(i, txid)
            if result is not None:
                await result

    return ChainSendResult(final_utxo=utxo, broadcast_txids=txids)
