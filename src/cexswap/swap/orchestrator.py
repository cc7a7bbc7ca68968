"""Swap orchestration pipeline.

Runs one swap through its stages strictly in order:

    FeePrefund -> SellLeg -> BuyLeg -> Withdraw -> WithdrawalWait -> OnChainTransfer

Each stage returns a StageOutcome instead of raising. The first failed
stage stops the pipeline. The SwapResult reports every order, withdrawal
and transfer that already happened.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from cexswap.config import Settings, get_settings
from cexswap.errors import (
    ConfigurationError,
    ExchangeError,
    ExchangeRejected,
    SwapError,
    TransferFailure,
    ValidationError,
    WithdrawalFailed,
    WithdrawalTimeout,
)
from cexswap.exchange.base import Order, OrderSide, OrderType
from cexswap.exchange.chains import chain_id_for, native_symbol_for, to_chain_type
from cexswap.exchange.client import ExchangeClient
from cexswap.exchange.signing import current_expires_ms
from cexswap.retry import RetryPolicy
from cexswap.swap.models import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_TRANSFER_PENDING,
    StageError,
    StageOutcome,
    StageStatus,
    SwapRequest,
    SwapResult,
    SwapStage,
    WithdrawalInfo,
)
from cexswap.transfer.base import TransferResult
from cexswap.transfer.evm import OnChainTransferAgent

logger = logging.getLogger(__name__)


@dataclass
class _SwapContext:
    """Private per-swap state. Never shared between swaps."""

    request: SwapRequest
    result: SwapResult
    custody_address: str
    deadline: Optional[float] = None
    quote_budget: Optional[Decimal] = None
    withdraw_amount: Optional[Decimal] = None
    last_transfer: Optional[TransferResult] = None
    transfer_pending: bool = False


def _same_asset(symbol: str, other: str) -> bool:
    return symbol.strip().upper() == other.strip().upper()


def _enrich(order: Order, info: Order) -> Order:
    """Copy fill details from an order info lookup onto the placed order."""
    order.status = info.status
    order.filled_quantity = info.filled_quantity
    order.filled_quote_amount = info.filled_quote_amount
    order.average_price = info.average_price
    return order


class SwapOrchestrator:
    """Executes swaps against the exchange and the custody wallet."""

    def __init__(
        self,
        exchange: ExchangeClient,
        transfer_agent: OnChainTransferAgent,
        settings: Optional[Settings] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        clock_ms: Callable[[], int] = current_expires_ms,
    ):
        self.exchange = exchange
        self.transfer_agent = transfer_agent
        self.settings = settings or get_settings()
        self.quote_asset = self.settings.quote_asset.upper()
        self.liquidity_codes = self.settings.liquidity_codes
        self._sleep = sleep
        self._clock = clock
        self._clock_ms = clock_ms

    async def execute(self, request: SwapRequest) -> SwapResult:
        """Run a swap to completion or to its first failed stage."""
        result = SwapResult()
        logger.info(
            f"Swap started: {request.input_amount} {request.source_symbol} -> "
            f"{request.dest_symbol} for {request.dest_wallet_address} on {request.dest_chain}"
        )

        try:
            request.validate()
            custody_address = self._custody_address()
        except SwapError as e:
            outcome = StageOutcome(
                stage=SwapStage.VALIDATION,
                status=StageStatus.FAILED,
                error=StageError.from_exception(e),
            )
            result.stages.append(outcome)
            return self._finish_failed(result, outcome)

        result.stages.append(StageOutcome(SwapStage.VALIDATION, StageStatus.SUCCEEDED))

        ctx = _SwapContext(request=request, result=result, custody_address=custody_address)
        if self.settings.swap_request_timeout:
            ctx.deadline = self._clock() + self.settings.swap_request_timeout

        stages = [
            (SwapStage.FEE_PREFUND, self._fee_prefund),
            (SwapStage.SELL_LEG, self._sell_leg),
            (SwapStage.BUY_LEG, self._buy_leg),
            (SwapStage.WITHDRAW, self._withdraw),
            (SwapStage.WITHDRAWAL_WAIT, self._withdrawal_wait),
            (SwapStage.ONCHAIN_TRANSFER, self._onchain_transfer),
        ]

        for stage, handler in stages:
            if ctx.deadline is not None and self._clock() >= ctx.deadline:
                outcome = StageOutcome(
                    stage=stage,
                    status=StageStatus.FAILED,
                    error=StageError(
                        kind="timeout",
                        code="SwapDeadlineExceeded",
                        message=f"Swap request deadline exceeded before {stage.value}",
                        retryable=True,
                    ),
                )
                ctx.transfer_pending = stage == SwapStage.ONCHAIN_TRANSFER
            else:
                outcome = await self._run_stage(stage, handler, ctx)

            result.stages.append(outcome)
            if outcome.failed:
                if ctx.transfer_pending:
                    return self._finish_transfer_pending(result, outcome)
                return self._finish_failed(result, outcome)

        result.success = True
        result.status = STATUS_COMPLETED
        result.message = "Swap completed"
        logger.info(
            f"Swap completed: {request.source_symbol} -> {request.dest_symbol}, "
            f"tx={result.transfer.tx_hash if result.transfer else None}"
        )
        return result

    # ------------------------------------------------------------------
    # Stage plumbing
    # ------------------------------------------------------------------

    async def _run_stage(
        self,
        stage: SwapStage,
        handler: Callable[[_SwapContext], Awaitable[StageOutcome]],
        ctx: _SwapContext,
    ) -> StageOutcome:
        logger.info(f"Stage {stage.value} started")
        try:
            outcome = await handler(ctx)
        except asyncio.CancelledError:
            raise
        except SwapError as e:
            outcome = StageOutcome(
                stage=stage,
                status=StageStatus.FAILED,
                error=StageError.from_exception(e, self.liquidity_codes),
            )
        except Exception as e:
            logger.exception(f"Stage {stage.value} crashed")
            outcome = StageOutcome(
                stage=stage,
                status=StageStatus.FAILED,
                error=StageError.from_exception(e),
            )

        if outcome.failed:
            logger.error(f"Stage {stage.value} failed: {outcome.error.message}")
        elif outcome.status == StageStatus.WARNING:
            logger.warning(f"Stage {stage.value} continued with warning: {outcome.detail}")
        else:
            logger.info(f"Stage {stage.value} {outcome.status.value}")
        return outcome

    def _custody_address(self) -> str:
        address = (self.settings.withdraw_address or "").strip()
        if not address:
            raise ConfigurationError("Custody withdrawal address is not configured")
        return address

    def _finish_failed(self, result: SwapResult, outcome: StageOutcome) -> SwapResult:
        result.success = False
        result.status = STATUS_FAILED
        result.stage = outcome.stage
        result.error = outcome.error
        result.message = f"{outcome.stage.value} failed: {outcome.error.message}"
        return result

    def _finish_transfer_pending(self, result: SwapResult, outcome: StageOutcome) -> SwapResult:
        result.success = False
        result.partial_success = True
        result.status = STATUS_TRANSFER_PENDING
        result.stage = outcome.stage
        result.error = outcome.error
        result.message = (
            "Trading and withdrawal completed but the on-chain transfer did not; "
            "funds remain at the custody address pending manual reconciliation"
        )
        logger.error(f"Swap partially completed, transfer pending: {outcome.error.message}")
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _fee_prefund(self, ctx: _SwapContext) -> StageOutcome:
        """Buy the chain's native asset for gas and withdraw it to custody."""
        request = ctx.request
        fee_amount = request.fee_quote_amount
        if not fee_amount or fee_amount <= 0:
            return StageOutcome(SwapStage.FEE_PREFUND, StageStatus.SKIPPED, detail="No fee amount")

        chain_id = request.dest_chain_id or chain_id_for(request.dest_chain)
        native_symbol = (request.fee_native_symbol or native_symbol_for(chain_id) or "").upper()
        if not native_symbol:
            raise ValidationError(f"Cannot determine native asset for chain {request.dest_chain}")

        symbol = f"{native_symbol}{self.quote_asset}"
        policy = RetryPolicy(
            interval=self.settings.fee_prefund_retry_interval,
            timeout=self.settings.fee_prefund_timeout,
            retry_on=self._is_liquidity_shortage,
            name=f"Fee BUY {symbol}",
        )
        outcome = await policy.run(
            lambda: self.exchange.create_order(
                symbol, OrderSide.BUY, OrderType.MARKET, amount=fee_amount
            ),
            deadline=ctx.deadline,
            sleep=self._sleep,
            clock=self._clock,
        )

        if outcome.timed_out:
            return StageOutcome(
                stage=SwapStage.FEE_PREFUND,
                status=StageStatus.FAILED,
                error=StageError(
                    kind="timeout",
                    code="FeePrefundTimeout",
                    message=(
                        f"Fee order {symbol} not filled after {outcome.attempts} attempts: "
                        f"{outcome.error}"
                    ),
                    retryable=True,
                ),
                attempts=outcome.attempts,
            )
        if not outcome.succeeded:
            raise outcome.error

        order = outcome.value
        ctx.result.fee_order = order
        info = await self.exchange.get_order_info(order.exchange_order_id)
        _enrich(order, info)

        filled = info.filled_quantity
        if not filled or filled <= 0:
            raise ValidationError(f"Fee order {order.exchange_order_id} reported no filled quantity")

        chain_type = to_chain_type(request.dest_chain)
        withdrawal_id = await self.exchange.withdraw(
            native_symbol, filled, ctx.custody_address, chain_type
        )
        # Fire and forget: gas may still be in flight when the transfer starts
        ctx.result.fee_withdrawal = WithdrawalInfo(
            withdrawal_id=withdrawal_id,
            currency_code=native_symbol,
            amount=filled,
            address=ctx.custody_address,
            chain_type=chain_type,
        )
        if withdrawal_id is None:
            logger.warning(f"Fee withdrawal of {filled} {native_symbol} returned no id")

        return StageOutcome(
            SwapStage.FEE_PREFUND,
            StageStatus.SUCCEEDED,
            detail=f"Bought {filled} {native_symbol}",
            attempts=outcome.attempts,
        )

    async def _sell_leg(self, ctx: _SwapContext) -> StageOutcome:
        """Sell the source asset for the quote asset."""
        request = ctx.request
        if _same_asset(request.source_symbol, self.quote_asset):
            ctx.quote_budget = request.input_amount
            return StageOutcome(
                SwapStage.SELL_LEG, StageStatus.SKIPPED, detail="Source is the quote asset"
            )

        symbol = f"{request.source_symbol.strip().upper()}{self.quote_asset}"
        order = await self.exchange.create_order(
            symbol, OrderSide.SELL, OrderType.MARKET, quantity=request.input_amount
        )
        ctx.result.sell_order = order
        info = await self.exchange.get_order_info(order.exchange_order_id)
        _enrich(order, info)

        ctx.quote_budget = info.filled_quote_amount
        return StageOutcome(
            SwapStage.SELL_LEG,
            StageStatus.SUCCEEDED,
            detail=f"Realized {ctx.quote_budget} {self.quote_asset}",
        )

    async def _buy_leg(self, ctx: _SwapContext) -> StageOutcome:
        """Spend the quote budget on the destination asset."""
        request = ctx.request
        if _same_asset(request.dest_symbol, self.quote_asset):
            ctx.withdraw_amount = ctx.quote_budget
            return StageOutcome(
                SwapStage.BUY_LEG, StageStatus.SKIPPED, detail="Destination is the quote asset"
            )

        budget = ctx.quote_budget
        if budget is None or budget <= 0:
            raise ValidationError(f"No {self.quote_asset} budget available for the buy leg")

        symbol = f"{request.dest_symbol.strip().upper()}{self.quote_asset}"
        order = await self.exchange.create_order(
            symbol, OrderSide.BUY, OrderType.MARKET, amount=budget
        )
        ctx.result.buy_order = order
        info = await self.exchange.get_order_info(order.exchange_order_id)
        _enrich(order, info)

        ctx.withdraw_amount = info.filled_quantity
        return StageOutcome(
            SwapStage.BUY_LEG,
            StageStatus.SUCCEEDED,
            detail=f"Bought {ctx.withdraw_amount} {request.dest_symbol.upper()}",
        )

    async def _withdraw(self, ctx: _SwapContext) -> StageOutcome:
        """Withdraw the destination asset to the custody address."""
        request = ctx.request
        amount = ctx.withdraw_amount
        if amount is None or amount <= 0:
            raise ValidationError("No filled amount available to withdraw")

        currency_code = request.dest_symbol.strip().upper()
        chain_type = to_chain_type(request.dest_chain)
        requested_at_ms = self._clock_ms()
        withdrawal_id = await self.exchange.withdraw(
            currency_code, amount, ctx.custody_address, chain_type
        )
        if withdrawal_id is None:
            raise ExchangeRejected("", "Withdrawal response did not include a withdrawal id")

        ctx.result.withdrawal = WithdrawalInfo(
            withdrawal_id=withdrawal_id,
            currency_code=currency_code,
            amount=amount,
            address=ctx.custody_address,
            chain_type=chain_type,
            requested_at_ms=requested_at_ms,
        )
        return StageOutcome(
            SwapStage.WITHDRAW, StageStatus.SUCCEEDED, detail=f"Withdrawal id {withdrawal_id}"
        )

    async def _withdrawal_wait(self, ctx: _SwapContext) -> StageOutcome:
        """Wait for the withdrawal to settle; only a terminal failure aborts."""
        withdrawal = ctx.result.withdrawal
        await self._sleep(self.settings.withdrawal_settle_delay)

        max_wait = self.settings.withdrawal_max_wait
        if ctx.deadline is not None:
            max_wait = max(0.0, min(max_wait, ctx.deadline - self._clock()))

        try:
            record = await self.exchange.poll_withdrawal_until_terminal(
                withdrawal.withdrawal_id,
                withdrawal.currency_code,
                max_wait=max_wait,
                poll_interval=self.settings.withdrawal_poll_interval,
                sleep=self._sleep,
                clock=self._clock,
                requested_at_ms=withdrawal.requested_at_ms,
            )
        except (WithdrawalTimeout, ExchangeError) as e:
            return StageOutcome(
                stage=SwapStage.WITHDRAWAL_WAIT,
                status=StageStatus.WARNING,
                error=StageError.from_exception(e, self.liquidity_codes),
                detail=f"Proceeding without confirmed withdrawal: {e}",
            )

        withdrawal.status = record.status.value
        withdrawal.onchain_tx_id = record.onchain_tx_id
        if not record.status.is_success:
            raise WithdrawalFailed(withdrawal.withdrawal_id, record.status.value)

        return StageOutcome(
            SwapStage.WITHDRAWAL_WAIT, StageStatus.SUCCEEDED, detail=record.status.value
        )

    async def _onchain_transfer(self, ctx: _SwapContext) -> StageOutcome:
        """Transfer the withdrawn amount from custody to the caller's wallet."""
        request = ctx.request
        withdrawal = ctx.result.withdrawal
        chain_id = request.dest_chain_id or chain_id_for(request.dest_chain)
        if chain_id is None:
            raise ConfigurationError(f"Unknown chain id for {request.dest_chain}")

        async def attempt() -> TransferResult:
            previous = ctx.last_transfer
            if previous is not None and previous.awaiting_receipt:
                # Already signed: wait on that transaction, never sign a second one
                transfer = await self.transfer_agent.resume(
                    previous, chain_id, rpc_url=request.dest_token_rpc_url
                )
            else:
                transfer = await self.transfer_agent.transfer(
                    request.dest_token_address,
                    ctx.custody_address,
                    request.dest_wallet_address,
                    withdrawal.amount,
                    chain_id,
                    decimals=request.dest_token_decimals,
                    rpc_url=request.dest_token_rpc_url,
                )
            ctx.last_transfer = transfer
            if not transfer.success:
                raise TransferFailure(transfer.error_code, transfer.error_reason, transfer.tx_hash)
            return transfer

        policy = RetryPolicy(
            interval=self.settings.transfer_retry_interval,
            timeout=self.settings.transfer_timeout,
            retry_on=lambda e: not isinstance(e, (ConfigurationError, ValidationError)),
            name=f"Transfer {withdrawal.amount} {withdrawal.currency_code}",
        )
        outcome = await policy.run(
            attempt, deadline=ctx.deadline, sleep=self._sleep, clock=self._clock
        )

        if outcome.succeeded:
            ctx.result.transfer = outcome.value
            return StageOutcome(
                SwapStage.ONCHAIN_TRANSFER,
                StageStatus.SUCCEEDED,
                detail=outcome.value.tx_hash,
                attempts=outcome.attempts,
            )

        ctx.result.transfer = ctx.last_transfer
        if not outcome.timed_out:
            raise outcome.error

        ctx.transfer_pending = True
        error = StageError.from_exception(outcome.error, self.liquidity_codes)
        error.message = f"Transfer not confirmed after {outcome.attempts} attempts: {error.message}"
        return StageOutcome(
            stage=SwapStage.ONCHAIN_TRANSFER,
            status=StageStatus.FAILED,
            error=error,
            attempts=outcome.attempts,
        )

    def _is_liquidity_shortage(self, error: Exception) -> bool:
        return isinstance(error, ExchangeRejected) and error.is_liquidity_shortage(
            self.liquidity_codes
        )
