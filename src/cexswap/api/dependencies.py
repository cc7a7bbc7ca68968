"""Process-wide service instances shared by the API routers.

The exchange connection pool is the only state shared between concurrent
swaps; everything a swap mutates lives inside SwapOrchestrator.execute.
"""

import logging
from typing import Optional

from cexswap.config import get_settings
from cexswap.exchange.client import ExchangeClient
from cexswap.swap.orchestrator import SwapOrchestrator
from cexswap.tokens.service import TokenListService
from cexswap.transfer.evm import OnChainTransferAgent

logger = logging.getLogger(__name__)

_exchange_client: Optional[ExchangeClient] = None
_transfer_agent: Optional[OnChainTransferAgent] = None
_swap_orchestrator: Optional[SwapOrchestrator] = None
_token_service: Optional[TokenListService] = None


def get_exchange_client() -> ExchangeClient:
    """Get or create the exchange client."""
    global _exchange_client
    if _exchange_client is None:
        _exchange_client = ExchangeClient.from_settings(get_settings())
    return _exchange_client


def get_transfer_agent() -> OnChainTransferAgent:
    """Get or create the custody transfer agent."""
    global _transfer_agent
    if _transfer_agent is None:
        settings = get_settings()
        _transfer_agent = OnChainTransferAgent(
            private_key=settings.withdraw_private_key,
            rpc_urls=settings.rpc_urls,
            confirmation_timeout=settings.transfer_confirmation_timeout,
        )
    return _transfer_agent


def get_swap_orchestrator() -> SwapOrchestrator:
    """Get or create the swap orchestrator."""
    global _swap_orchestrator
    if _swap_orchestrator is None:
        _swap_orchestrator = SwapOrchestrator(
            get_exchange_client(), get_transfer_agent(), get_settings()
        )
    return _swap_orchestrator


def get_token_service() -> TokenListService:
    """Get or create the token list service."""
    global _token_service
    if _token_service is None:
        _token_service = TokenListService.from_settings(get_exchange_client(), get_settings())
    return _token_service


async def close_dependencies() -> None:
    """Close the exchange connection pool and drop cached instances."""
    global _exchange_client, _transfer_agent, _swap_orchestrator, _token_service
    if _exchange_client is not None:
        await _exchange_client.aclose()
        logger.info("Exchange client closed")
    _exchange_client = None
    _transfer_agent = None
    _swap_orchestrator = None
    _token_service = None
