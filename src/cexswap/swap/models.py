"""Swap request, per-stage outcomes and the aggregate swap result."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from cexswap.errors import (
    ConfigurationError,
    ExchangeRejected,
    ExchangeUnavailable,
    TransferFailure,
    ValidationError,
    WithdrawalFailed,
    WithdrawalTimeout,
)
from cexswap.exchange.base import Order, format_amount
from cexswap.transfer.base import TransferResult


@dataclass(frozen=True)
class SwapRequest:
    """Caller's swap instruction. Immutable once accepted."""

    source_symbol: str
    dest_symbol: str
    input_amount: Decimal
    dest_wallet_address: Optional[str]
    source_token_address: Optional[str] = None
    dest_token_address: Optional[str] = None
    output_amount_hint: Optional[Decimal] = None
    source_chain: Optional[str] = None
    dest_chain: str = "ethereum"
    dest_chain_id: Optional[int] = None
    dest_token_rpc_url: Optional[str] = None
    dest_token_decimals: int = 18
    fee_quote_amount: Optional[Decimal] = None
    fee_native_symbol: Optional[str] = None

    def validate(self) -> None:
        """Raise ValidationError if the request cannot be processed."""
        if not self.dest_wallet_address or not self.dest_wallet_address.strip():
            raise ValidationError("Wallet address is required")
        if not self.source_symbol or not self.source_symbol.strip():
            raise ValidationError("Source token symbol is required")
        if not self.dest_symbol or not self.dest_symbol.strip():
            raise ValidationError("Destination token symbol is required")
        if self.input_amount is None or self.input_amount <= 0:
            raise ValidationError(f"Input amount must be positive, got {self.input_amount}")
        if self.fee_quote_amount is not None and self.fee_quote_amount < 0:
            raise ValidationError("Fee amount cannot be negative")


class SwapStage(str, Enum):
    VALIDATION = "Validation"
    FEE_PREFUND = "FeePrefund"
    SELL_LEG = "SellLeg"
    BUY_LEG = "BuyLeg"
    WITHDRAW = "Withdraw"
    WITHDRAWAL_WAIT = "WithdrawalWait"
    ONCHAIN_TRANSFER = "OnChainTransfer"


class StageStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"
    WARNING = "warning"  # proceeded optimistically


@dataclass
class StageError:
    """Structured failure detail for one stage."""

    kind: str
    message: str
    code: Optional[str] = None
    retryable: bool = False

    @classmethod
    def from_exception(
        cls, error: BaseException, liquidity_codes: frozenset[str] = frozenset()
    ) -> "StageError":
        """Classify an exception raised inside a stage."""
        if isinstance(error, ValidationError):
            return cls(kind="validation", message=str(error))
        if isinstance(error, ConfigurationError):
            return cls(kind="configuration", message=str(error))
        if isinstance(error, ExchangeRejected):
            return cls(
                kind="exchange_rejected",
                code=error.code or None,
                message=error.message or str(error),
                retryable=error.is_liquidity_shortage(liquidity_codes),
            )
        if isinstance(error, ExchangeUnavailable):
            return cls(kind="exchange_unavailable", message=str(error), retryable=True)
        if isinstance(error, WithdrawalTimeout):
            return cls(
                kind="timeout", code="WithdrawalTimeout", message=str(error), retryable=True
            )
        if isinstance(error, WithdrawalFailed):
            return cls(kind="withdrawal_failed", code=error.status, message=str(error))
        if isinstance(error, TransferFailure):
            return cls(
                kind="transfer_failed",
                code=error.code,
                message=error.reason or str(error),
                retryable=True,
            )
        return cls(kind="internal", message=f"{type(error).__name__}: {error}")

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


@dataclass
class StageOutcome:
    """Result of one pipeline stage."""

    stage: SwapStage
    status: StageStatus
    error: Optional[StageError] = None
    detail: Optional[str] = None
    attempts: int = 0

    @property
    def failed(self) -> bool:
        return self.status == StageStatus.FAILED

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "status": self.status.value,
            "error": self.error.to_dict() if self.error else None,
            "detail": self.detail,
            "attempts": self.attempts,
        }


@dataclass
class WithdrawalInfo:
    """A withdrawal requested during the swap and its last known status."""

    withdrawal_id: Optional[str]
    currency_code: str
    amount: Decimal
    address: str
    chain_type: str
    status: str = "requested"
    onchain_tx_id: Optional[str] = None
    requested_at_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "id": self.withdrawal_id,
            "currencyCode": self.currency_code,
            "amount": format_amount(self.amount),
            "address": self.address,
            "chainType": self.chain_type,
            "status": self.status,
            "txId": self.onchain_tx_id,
            "requestedAt": self.requested_at_ms,
        }


# Result status values
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_TRANSFER_PENDING = "transfer_pending"


@dataclass
class SwapResult:
    """Everything that happened during one swap. The only entity returned to callers."""

    success: bool = False
    message: str = ""
    status: str = STATUS_FAILED
    stage: Optional[SwapStage] = None
    error: Optional[StageError] = None
    fee_order: Optional[Order] = None
    sell_order: Optional[Order] = None
    buy_order: Optional[Order] = None
    fee_withdrawal: Optional[WithdrawalInfo] = None
    withdrawal: Optional[WithdrawalInfo] = None
    transfer: Optional[TransferResult] = None
    stages: list[StageOutcome] = field(default_factory=list)
    partial_success: bool = False

    @property
    def http_status(self) -> int:
        return 200 if self.success else 400

    def to_dict(self) -> dict:
        """Convert to the camelCase response body."""
        return {
            "swapResult": self.success,
            "message": self.message,
            "status": self.status,
            "stage": self.stage.value if self.stage else None,
            "error": self.error.to_dict() if self.error else None,
            "orders": {
                "fee": self.fee_order.to_dict() if self.fee_order else None,
                "sell": self.sell_order.to_dict() if self.sell_order else None,
                "buy": self.buy_order.to_dict() if self.buy_order else None,
            },
            "feeWithdrawal": self.fee_withdrawal.to_dict() if self.fee_withdrawal else None,
            "withdrawal": self.withdrawal.to_dict() if self.withdrawal else None,
            "transfer": self.transfer.to_dict() if self.transfer else None,
            "stages": [outcome.to_dict() for outcome in self.stages],
            "partialSuccess": self.partial_success,
        }
