"""Pytest configuration and fixtures."""

import os
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from web3 import Web3
from web3.exceptions import TransactionNotFound

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"
os.environ["EXCHANGE_API_KEY"] = "test-key"
os.environ["EXCHANGE_API_SECRET"] = "test-secret"

from cexswap.config import Settings
from cexswap.exchange.base import Order, OrderSide, OrderType, WithdrawalRecord, WithdrawalStatus
from cexswap.exchange.client import ExchangeClient
from cexswap.transfer.base import TransferResult
from cexswap.transfer.evm import OnChainTransferAgent

# Well-known development key (hardhat account #0) and its address
CUSTODY_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
CUSTODY_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
WALLET_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
WBTC_ADDRESS = "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599"
GWEI = 10**9


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeChain:
    """Web3 double backed by a tiny node.

    Accepted transactions raise the pending nonce. A transaction is mined
    `mine_after` seconds after the node first accepted it and has no
    receipt before then. Resending bytes the node already holds fails
    with "already known".
    """

    def __init__(self, clock: FakeClock, mine_after: float = 0, status: int = 1):
        self.clock = clock
        self.mine_after = mine_after
        self.status = status
        self.sent: list[bytes] = []
        self.accepted: dict[str, float] = {}
        self.w3 = MagicMock()
        eth = self.w3.eth
        eth.get_block.return_value = {"baseFeePerGas": 10 * GWEI}
        eth.max_priority_fee = 2 * GWEI
        eth.estimate_gas.return_value = 21000
        eth.get_transaction_count.side_effect = self._pending_nonce
        eth.send_raw_transaction.side_effect = self._send_raw
        eth.get_transaction_receipt.side_effect = self._receipt

    def _pending_nonce(self, address, block_identifier="latest") -> int:
        return 7 + len(self.accepted)

    def _send_raw(self, raw) -> bytes:
        raw = bytes(raw)
        self.sent.append(raw)
        tx_hash = Web3.keccak(raw)
        if Web3.to_hex(tx_hash) in self.accepted:
            raise ValueError("already known")
        self.accepted[Web3.to_hex(tx_hash)] = self.clock.now
        return tx_hash

    def _receipt(self, tx_hash):
        key = tx_hash if isinstance(tx_hash, str) else Web3.to_hex(tx_hash)
        accepted_at = self.accepted.get(key)
        if accepted_at is None or self.clock.now < accepted_at + self.mine_after:
            raise TransactionNotFound(f"Transaction {tx_hash} not found")
        return {"status": self.status, "blockNumber": 200}


def make_order(
    symbol: str,
    side: OrderSide,
    order_id: str,
    filled_quantity=None,
    filled_quote_amount=None,
) -> Order:
    return Order(
        symbol=symbol,
        side=side,
        type=OrderType.MARKET,
        exchange_order_id=order_id,
        status="FILLED",
        filled_quantity=Decimal(filled_quantity) if filled_quantity is not None else None,
        filled_quote_amount=(
            Decimal(filled_quote_amount) if filled_quote_amount is not None else None
        ),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Settings with a configured custody wallet and default pipeline timings."""
    return Settings(
        exchange_api_key="test-key",
        exchange_api_secret="test-secret",
        withdraw_address=CUSTODY_ADDRESS,
        withdraw_private_key=CUSTODY_KEY,
        liquidity_error_codes="",
    )


@pytest.fixture
def exchange() -> MagicMock:
    """Exchange client double; async methods are AsyncMocks."""
    mock = MagicMock(spec=ExchangeClient)
    mock.withdraw.return_value = "w-1"
    mock.poll_withdrawal_until_terminal.return_value = WithdrawalRecord(
        withdrawal_id="w-1", status=WithdrawalStatus.COMPLETED, onchain_tx_id="0xabc"
    )
    return mock


@pytest.fixture
def transfer_agent() -> MagicMock:
    """Transfer agent double that succeeds on the first attempt."""
    mock = MagicMock(spec=OnChainTransferAgent)
    mock.transfer.return_value = TransferResult(success=True, tx_hash="0xfeed", block_number=7)
    return mock
