"""Exchange module for authenticated trading and withdrawals.

Provides:
- ExchangeClient: signed REST client for orders, withdrawals and metadata
- Order / withdrawal domain models
- Chain-name to chain-type mapping
"""

from cexswap.exchange.base import (
    ChainData,
    CurrencyInfo,
    Order,
    OrderSide,
    OrderType,
    WithdrawalHistoryFilter,
    WithdrawalRecord,
    WithdrawalStatus,
)
from cexswap.exchange.chains import chain_id_for, native_symbol_for, to_chain_type
from cexswap.exchange.client import ExchangeClient

__all__ = [
    # Client
    "ExchangeClient",
    # Models
    "ChainData",
    "CurrencyInfo",
    "Order",
    "OrderSide",
    "OrderType",
    "WithdrawalHistoryFilter",
    "WithdrawalRecord",
    "WithdrawalStatus",
    # Chains
    "chain_id_for",
    "native_symbol_for",
    "to_chain_type",
]
