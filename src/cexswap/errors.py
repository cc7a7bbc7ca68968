"""Error taxonomy shared by the exchange client, transfer agent and orchestrator."""

import re
from typing import Any, Optional

# Message patterns the exchange uses when a market order cannot be filled at size
LIQUIDITY_MESSAGE_PATTERN = re.compile(
    r"insufficient\s+(quantity|liquidity|depth)|not\s+enough\s+(quantity|liquidity|depth)"
    r"|quantity\s+(is\s+)?not\s+available",
    re.IGNORECASE,
)


class SwapError(Exception):
    """Base class for all swap pipeline errors."""


class ValidationError(SwapError):
    """Request or precondition is invalid. Never retried."""


class ConfigurationError(SwapError):
    """Process configuration is unusable (keys, addresses, RPC URLs). Never retried."""


class ExchangeError(SwapError):
    """Base class for exchange failures."""


class ExchangeRejected(ExchangeError):
    """Exchange answered with a non-zero status code."""

    def __init__(self, code: Any, message: str = "", payload: Optional[dict] = None):
        self.code = "" if code is None else str(code)
        self.message = message or ""
        self.payload = payload or {}
        super().__init__(f"Exchange rejected request (code={self.code}): {self.message}")

    def is_liquidity_shortage(self, codes: frozenset[str] = frozenset()) -> bool:
        """Check if the rejection means the order size could not be filled."""
        if self.code and self.code in codes:
            return True
        return bool(LIQUIDITY_MESSAGE_PATTERN.search(self.message))


class ExchangeUnavailable(ExchangeError):
    """Exchange could not be reached or answered with something unparseable."""


class WithdrawalTimeout(SwapError):
    """Withdrawal did not reach a terminal status within the wait budget."""

    def __init__(self, withdrawal_id: str, waited: float, last_status: Optional[str] = None):
        self.withdrawal_id = withdrawal_id
        self.waited = waited
        self.last_status = last_status
        super().__init__(
            f"Withdrawal {withdrawal_id} not terminal after {waited:.0f}s "
            f"(last status: {last_status or 'unknown'})"
        )


class TransferFailure(SwapError):
    """On-chain transfer attempt failed."""

    def __init__(self, code: Optional[str], reason: Optional[str], tx_hash: Optional[str] = None):
        self.code = code
        self.reason = reason
        self.tx_hash = tx_hash
        super().__init__(f"Transfer failed ({code}): {reason}")


class WithdrawalFailed(SwapError):
    """Withdrawal reached a terminal failure status (Rejected, PaymentFailed, Cancelled)."""

    def __init__(self, withdrawal_id: str, status: str):
        self.withdrawal_id = withdrawal_id
        self.status = status
        super().__init__(f"Withdrawal {withdrawal_id} ended with status {status}")
