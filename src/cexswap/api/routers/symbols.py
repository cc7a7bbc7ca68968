"""Symbol and market data endpoints."""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from cexswap.api.dependencies import get_exchange_client
from cexswap.errors import ExchangeError
from cexswap.exchange.client import ExchangeClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/symbols")


@router.get("")
async def get_symbols(
    symbols: Optional[str] = Query(None, description="Comma-separated symbols filter"),
    exchange: ExchangeClient = Depends(get_exchange_client),
):
    """Get latest prices for all symbols."""
    try:
        prices = await exchange.get_ticker_prices(symbols)
    except ExchangeError as e:
        logger.error(f"Failed to fetch symbols: {e}")
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})

    return {
        "success": True,
        "data": prices,
        "count": len(prices),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/{symbol}/depth")
async def get_depth(
    symbol: str,
    depth: int = Query(2, ge=1, le=100),
    exchange: ExchangeClient = Depends(get_exchange_client),
):
    """Get order book depth for a symbol."""
    try:
        book = await exchange.get_market_depth(symbol, depth)
    except ExchangeError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})

    return {"success": True, "data": book}
