"""Token list endpoint."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from cexswap.api.dependencies import get_token_service
from cexswap.tokens.service import TokenListService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tokens")


@router.get("")
async def get_tokens(
    chains: Optional[str] = Query(None, description="Comma-separated chain names"),
    refresh: bool = False,
    service: TokenListService = Depends(get_token_service),
):
    """Get the token list, optionally filtered by chain."""
    chain_list = [c.strip() for c in chains.split(",") if c.strip()] if chains else None
    try:
        tokens, cached = await service.get_tokens(chain_list, refresh=refresh)
    except (OSError, ValueError) as e:
        logger.error(f"Token list unavailable: {e}")
        raise HTTPException(status_code=500, detail="Token list unavailable")

    return {"success": True, "data": tokens, "cached": cached, "count": len(tokens)}
