"""
Omni DEx protocol and transaction size constants.

Sizes are virtual bytes. Segwit inputs are P2SH-wrapped P2WPKH, which is
what the supported daemons hand out for their "segwit" address type, so the
segwit output size is the P2SH output size.

Null-data sizes include the 8-byte value, the script length byte, OP_RETURN,
the push opcode and the 4-byte "omni" marker, followed by the payload.
"""

from __future__ import annotations

from decimal import Decimal
from enum import IntEnum

# Transaction skeleton: version, locktime, in/out counts and segwit marker/flag
EMPTY_TX_VSIZE = Decimal("10.5")

# P2PKH input: outpoint, scriptSig (sig + compressed pubkey), sequence
IN_P2PKH_VSIZE = Decimal("148")
# P2SH-P2WPKH input: outpoint, redeem script push, sequence, discounted witness
IN_P2WSH_VSIZE = Decimal("90.75")

OUT_P2PKH_VSIZE = Decimal("34")
OUT_P2WSH_VSIZE = Decimal("32")

# Null-data output carrying no payload bytes
OPRET_EMPTY_VSIZE = Decimal("15")

# Null-data outputs for fixed-size payloads
OPRET_SEND_VSIZE = OPRET_EMPTY_VSIZE + 16
OPRET_ACCEPT_VSIZE = OPRET_EMPTY_VSIZE + 16
OPRET_ORDER_VSIZE = OPRET_EMPTY_VSIZE + 34
OPRET_ISSUER_VSIZE = OPRET_EMPTY_VSIZE + 8

# Bare multisig outputs: 1-of-2 carries one packet, 1-of-3 carries two
MULTISIG_ONE_VSIZE = Decimal("80")
MULTISIG_TWO_VSIZE = Decimal("114")

# Payloads longer than this no longer fit in a null-data output
MAX_OPRETURN_PAYLOAD = 76

# Class B packet size (bytes of payload per compressed pubkey)
PACKET_SIZE = 30
PACKETS_PER_MULTISIG = 2

# Satoshi units per coin
COIN = 100_000_000

# Daemon request policy
API_RETRIES = 5
API_RETRIES_LARGE = 10
BATCH_SIZE = 100

# Confirmation target (blocks) for estimatesmartfee
BLOCK_WAIT = 3

# DEx order defaults
PAY_BLOCK_LIMIT = 50
MIN_ACCEPT_FEE = 10_000  # sats
MAX_ACCEPT_FEE = 10_000_000  # sats

# Seconds between confirmation polls
TX_POLL_INTERVAL = 1.0

# Wallet label used for addresses created by the engine
ACCOUNT_LABEL = "featherdex"

# Protocol property ids
PROPID_BITCOIN = 0
PROPID_COIN = 1

# Omni transaction types
TYPE_SIMPLE_SEND = 0
TYPE_UNIQUE_SEND = 5
TYPE_SELL_OFFER = 20
TYPE_ACCEPT_OFFER = 22
TYPE_CREATE_PROPERTY_FIXED = 50
TYPE_CREATE_PROPERTY_MANUAL = 54
TYPE_GRANT_PROPERTY = 55

TX_TYPE_DEX_PURCHASE = "DEx Purchase"
TX_TYPE_DEX_ACCEPT = "DEx Accept Offer"
TX_TYPE_DEX_SELL = "DEx Sell Offer"


class OrderAction(IntEnum):
    """Action byte of a DEx sell offer payload."""

    NEW = 1
    UPDATE = 2
    CANCEL = 3
