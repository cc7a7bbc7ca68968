"""Exchange domain models: orders, withdrawals and currency metadata."""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse an exchange numeric field (string, int or float) into a Decimal."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def format_amount(amount: Decimal) -> str:
    """Render a Decimal as a plain string without exponent or trailing zeros."""
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


@dataclass
class Order:
    """A spot order against the quote asset.

    quantity is denominated in the base asset (SELL legs), amount in the
    quote asset (BUY legs). Fill fields are only known after an order info
    lookup.
    """

    symbol: str
    side: OrderSide
    type: OrderType
    exchange_order_id: str
    quantity: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    client_order_id: Optional[str] = None
    status: Optional[str] = None
    filled_quantity: Optional[Decimal] = None
    filled_quote_amount: Optional[Decimal] = None
    average_price: Optional[Decimal] = None

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "ordType": self.type.value,
            "ordId": self.exchange_order_id,
            "clOrdId": self.client_order_id,
            "ordQty": _str_or_none(self.quantity),
            "ordAmt": _str_or_none(self.amount),
            "ordStatus": self.status,
            "cumQty": _str_or_none(self.filled_quantity),
            "cumAmt": _str_or_none(self.filled_quote_amount),
            "avgPrice": _str_or_none(self.average_price),
        }


class WithdrawalStatus(str, Enum):
    """Exchange-owned withdrawal lifecycle."""

    NOT_REVIEWED = "NotReviewed"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    PAYMENT_IN_PROGRESS = "PaymentInProgress"
    PAYMENT_FAILED = "PaymentFailed"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    UNKNOWN = "Unknown"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    @property
    def is_success(self) -> bool:
        return self == WithdrawalStatus.COMPLETED

    @classmethod
    def parse(cls, raw: Any) -> "WithdrawalStatus":
        """Parse a status name (any case/spacing) or numeric code 1..7."""
        if raw is None:
            return cls.UNKNOWN

        text = str(raw).strip()
        if text.isdigit():
            return _STATUS_CODES.get(int(text), cls.UNKNOWN)

        normalized = text.replace(" ", "").replace("_", "").replace("-", "").lower()
        for status in cls:
            if status.value.lower() == normalized:
                return status
        return cls.UNKNOWN


_TERMINAL_STATUSES = frozenset({
    WithdrawalStatus.COMPLETED,
    WithdrawalStatus.REJECTED,
    WithdrawalStatus.PAYMENT_FAILED,
    WithdrawalStatus.CANCELLED,
})

_STATUS_CODES = {
    1: WithdrawalStatus.NOT_REVIEWED,
    2: WithdrawalStatus.APPROVED,
    3: WithdrawalStatus.REJECTED,
    4: WithdrawalStatus.PAYMENT_IN_PROGRESS,
    5: WithdrawalStatus.PAYMENT_FAILED,
    6: WithdrawalStatus.COMPLETED,
    7: WithdrawalStatus.CANCELLED,
}


@dataclass
class WithdrawalRecord:
    """One entry of the exchange's withdrawal history."""

    withdrawal_id: str
    status: WithdrawalStatus
    currency_code: Optional[str] = None
    amount: Optional[Decimal] = None
    address: Optional[str] = None
    onchain_tx_id: Optional[str] = None
    raw_status: Any = None

    @classmethod
    def from_api(cls, data: dict) -> "WithdrawalRecord":
        raw_status = data.get("status")
        return cls(
            withdrawal_id=str(data.get("id", "")),
            status=WithdrawalStatus.parse(raw_status),
            currency_code=data.get("currencyCode"),
            amount=to_decimal(data.get("amount")),
            address=data.get("address"),
            onchain_tx_id=data.get("txId") or data.get("txid") or data.get("hash"),
            raw_status=raw_status,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.withdrawal_id,
            "status": self.status.value,
            "currencyCode": self.currency_code,
            "amount": _str_or_none(self.amount),
            "address": self.address,
            "txId": self.onchain_tx_id,
        }


@dataclass
class WithdrawalHistoryFilter:
    """Filter for the withdrawal history lookup."""

    currency_code: Optional[str] = None
    start_date: Optional[int] = None
    end_date: Optional[int] = None
    from_id: Optional[str] = None
    limit: int = 50
    external_id: Optional[str] = None
    label: Optional[str] = None

    def to_body(self) -> dict:
        """Build request body, dropping unset fields."""
        body = {
            "currencyCode": self.currency_code,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "fromId": self.from_id,
            "limit": self.limit,
            "externalId": self.external_id,
            "label": self.label,
        }
        return {key: value for key, value in body.items() if value is not None}


@dataclass
class ChainData:
    """Per-chain deployment of a currency on the exchange."""

    chain_name: str
    chain_type: Optional[str] = None
    contract_address: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "ChainData":
        return cls(
            chain_name=str(data.get("chainName") or data.get("chain") or data.get("network") or ""),
            chain_type=data.get("chainType"),
            contract_address=(data.get("contractAddress") or "").strip() or None,
        )


@dataclass
class CurrencyInfo:
    """Currency metadata with its chain deployments."""

    currency_code: str
    chains: list[ChainData] = field(default_factory=list)

    def find_chain(self, chain_name: str) -> Optional[ChainData]:
        """Find chain data by chain name (case-insensitive)."""
        wanted = chain_name.strip().upper()
        for chain in self.chains:
            if chain.chain_name.strip().upper() == wanted:
                return chain
        return None


def _str_or_none(value: Optional[Decimal]) -> Optional[str]:
    return format_amount(value) if value is not None else None
