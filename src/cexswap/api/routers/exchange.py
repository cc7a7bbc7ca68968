"""Swap, withdrawal and price endpoints."""

import logging
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from cexswap.api.dependencies import get_exchange_client, get_swap_orchestrator
from cexswap.errors import ExchangeError, ExchangeRejected
from cexswap.exchange.client import ExchangeClient
from cexswap.swap.models import SwapRequest
from cexswap.swap.orchestrator import SwapOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/exchange")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SwapRequestBody(CamelModel):
    """Swap request as sent by the frontend."""
    from_token_symbol: str
    to_token_symbol: str
    input_value: Decimal
    from_token_address: Optional[str] = None
    to_token_address: Optional[str] = None
    output_value: Optional[Decimal] = None
    wallet_address: Optional[str] = None
    chain_name: str = "ethereum"
    from_chain_name: Optional[str] = None
    chain_id: Optional[int] = None
    to_token_rpc_url: Optional[str] = None
    to_token_decimals: int = 18
    fee_amount: Optional[Decimal] = None
    fee_symbol: Optional[str] = None

    def to_swap_request(self) -> SwapRequest:
        return SwapRequest(
            source_symbol=self.from_token_symbol,
            dest_symbol=self.to_token_symbol,
            input_amount=self.input_value,
            dest_wallet_address=self.wallet_address,
            source_token_address=self.from_token_address,
            dest_token_address=self.to_token_address,
            output_amount_hint=self.output_value,
            source_chain=self.from_chain_name,
            dest_chain=self.chain_name,
            dest_chain_id=self.chain_id,
            dest_token_rpc_url=self.to_token_rpc_url,
            dest_token_decimals=self.to_token_decimals,
            fee_quote_amount=self.fee_amount,
            fee_native_symbol=self.fee_symbol,
        )


class WithdrawBody(CamelModel):
    """Direct withdrawal request."""
    currency_code: str
    amount: Decimal
    address: str
    chain_type: Literal["trc20", "bnbbsc", "bep20", "erc20", "sol"]
    tag: Optional[str] = None


class PriceBody(CamelModel):
    price_symbol: str


def _exchange_error_response(error: ExchangeError) -> JSONResponse:
    if isinstance(error, ExchangeRejected):
        detail = {"code": error.code, "message": error.message}
    else:
        detail = {"code": None, "message": str(error)}
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": detail["message"], "error": detail},
    )


@router.post("/swap")
async def execute_swap(
    body: SwapRequestBody,
    orchestrator: SwapOrchestrator = Depends(get_swap_orchestrator),
) -> JSONResponse:
    """Execute a swap through the exchange and deliver it on-chain."""
    logger.info(
        f"Swap request: {body.input_value} {body.from_token_symbol} -> "
        f"{body.to_token_symbol} on {body.chain_name} for {body.wallet_address}"
    )
    result = await orchestrator.execute(body.to_swap_request())
    return JSONResponse(status_code=result.http_status, content=result.to_dict())


@router.post("/withdraw")
async def withdraw(
    body: WithdrawBody,
    exchange: ExchangeClient = Depends(get_exchange_client),
):
    """Withdraw funds from the exchange account."""
    try:
        withdrawal_id = await exchange.withdraw(
            body.currency_code.upper(), body.amount, body.address, body.chain_type, body.tag
        )
    except ExchangeError as e:
        return _exchange_error_response(e)

    return {"success": True, "data": {"id": withdrawal_id}}


@router.post("/price")
async def get_token_price(
    body: PriceBody,
    exchange: ExchangeClient = Depends(get_exchange_client),
):
    """Get the top of the order book for a trading pair."""
    try:
        depth = await exchange.get_market_depth(body.price_symbol, 2)
    except ExchangeError as e:
        return _exchange_error_response(e)

    return {"success": True, "data": depth}
