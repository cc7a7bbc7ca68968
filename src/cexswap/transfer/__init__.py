"""On-chain transfer module.

Moves withdrawn funds from the custody wallet to the caller's wallet.
"""

from cexswap.transfer.base import NATIVE_ADDRESS, ZERO_ADDRESS, TransferResult, is_native_token
from cexswap.transfer.evm import OnChainTransferAgent

__all__ = [
    "NATIVE_ADDRESS",
    "ZERO_ADDRESS",
    "OnChainTransferAgent",
    "TransferResult",
    "is_native_token",
]
