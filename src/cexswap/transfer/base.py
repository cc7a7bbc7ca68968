"""Base types for on-chain transfers out of the custody wallet."""

from dataclasses import dataclass
from typing import Optional

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Conventional placeholder for "the chain's native asset" in token lists
NATIVE_ADDRESS = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"

# Failure codes
REVERTED = "REVERTED"
CONFIRMATION_TIMEOUT = "CONFIRMATION_TIMEOUT"
RPC_ERROR = "RPC_ERROR"


def is_native_token(token_address: Optional[str]) -> bool:
    """Check if a token address designates the native asset."""
    if not token_address or not token_address.strip():
        return True
    return token_address.strip().lower() in (ZERO_ADDRESS, NATIVE_ADDRESS)


@dataclass
class TransferResult:
    """Result of one on-chain transfer attempt.

    Once a transaction has been signed, tx_hash, nonce and raw_transaction
    identify it. A later attempt must resume that transaction rather than
    sign a new one.
    """

    success: bool
    tx_hash: Optional[str] = None
    error_code: Optional[str] = None
    error_reason: Optional[str] = None
    block_number: Optional[int] = None
    nonce: Optional[int] = None
    raw_transaction: Optional[str] = None

    @property
    def awaiting_receipt(self) -> bool:
        """Signed and possibly broadcast, but not known to be mined."""
        return (
            not self.success
            and self.tx_hash is not None
            and self.error_code in (CONFIRMATION_TIMEOUT, RPC_ERROR)
        )

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "txHash": self.tx_hash,
            "errorCode": self.error_code,
            "errorReason": self.error_reason,
            "blockNumber": self.block_number,
            "nonce": self.nonce,
        }
