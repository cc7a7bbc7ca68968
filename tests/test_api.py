"""Tests for the HTTP API."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from cexswap.api.app import create_app
from cexswap.api import dependencies
from cexswap.api.dependencies import (
    get_exchange_client,
    get_swap_orchestrator,
    get_token_service,
)
from cexswap.errors import ExchangeRejected, ExchangeUnavailable
from cexswap.exchange.base import OrderSide
from cexswap.swap.orchestrator import SwapOrchestrator
from cexswap.tokens.service import TokenListService

from conftest import CUSTODY_ADDRESS, WALLET_ADDRESS, WBTC_ADDRESS, make_order

SWAP_BODY = {
    "fromTokenSymbol": "USDT",
    "toTokenSymbol": "BTC",
    "inputValue": "100",
    "toTokenAddress": WBTC_ADDRESS,
    "walletAddress": WALLET_ADDRESS,
    "chainName": "ethereum",
}


@pytest.fixture
def token_service():
    service = MagicMock(spec=TokenListService)
    service.get_tokens.return_value = (
        [{"tokenId": "1", "currencyCode": "ETH", "chainName": "ETHEREUM"}],
        True,
    )
    return service


@pytest.fixture
def app(exchange, transfer_agent, settings, clock, token_service):
    application = create_app()
    orchestrator = SwapOrchestrator(
        exchange, transfer_agent, settings, sleep=clock.sleep, clock=clock
    )
    application.dependency_overrides[get_exchange_client] = lambda: exchange
    application.dependency_overrides[get_swap_orchestrator] = lambda: orchestrator
    application.dependency_overrides[get_token_service] = lambda: token_service
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "cexswap"}

    @pytest.mark.asyncio
    async def test_detailed_health_hides_secrets(self, client):
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        body = response.text
        assert "test-secret" not in body
        assert response.json()["checks"]["exchange_credentials"] is True
        assert response.headers["x-request-id"]


class TestSwapEndpoint:
    """Tests for POST /api/exchange/swap."""

    @pytest.mark.asyncio
    async def test_successful_swap(self, client, exchange):
        exchange.create_order.return_value = make_order("BTCUSDT", OrderSide.BUY, "1001")
        exchange.get_order_info.return_value = make_order(
            "BTCUSDT", OrderSide.BUY, "1001", filled_quantity="0.0015", filled_quote_amount="100"
        )

        response = await client.post("/api/exchange/swap", json=SWAP_BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["swapResult"] is True
        assert data["status"] == "completed"
        assert data["orders"]["buy"]["cumQty"] == "0.0015"
        assert data["withdrawal"]["address"] == CUSTODY_ADDRESS
        assert data["transfer"]["txHash"] == "0xfeed"
        assert data["partialSuccess"] is False
        exchange.withdraw.assert_awaited_once_with("BTC", Decimal("0.0015"), CUSTODY_ADDRESS, "ERC20")

    @pytest.mark.asyncio
    async def test_missing_wallet_fails_validation(self, client, exchange):
        body = {k: v for k, v in SWAP_BODY.items() if k != "walletAddress"}

        response = await client.post("/api/exchange/swap", json=body)

        assert response.status_code == 400
        data = response.json()
        assert data["swapResult"] is False
        assert data["stage"] == "Validation"
        assert data["error"]["kind"] == "validation"
        exchange.create_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_stage_is_reported(self, client, exchange):
        exchange.create_order.side_effect = ExchangeRejected("3101", "Insufficient balance")

        response = await client.post("/api/exchange/swap", json=SWAP_BODY)

        assert response.status_code == 400
        data = response.json()
        assert data["stage"] == "BuyLeg"
        assert data["error"]["code"] == "3101"
        assert data["withdrawal"] is None

    @pytest.mark.asyncio
    async def test_malformed_body(self, client):
        response = await client.post("/api/exchange/swap", json={"fromTokenSymbol": "USDT"})

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["errors"]


class TestWithdrawEndpoint:
    """Tests for POST /api/exchange/withdraw."""

    @pytest.mark.asyncio
    async def test_withdraw(self, client, exchange):
        exchange.withdraw.return_value = "w-77"

        response = await client.post(
            "/api/exchange/withdraw",
            json={
                "currencyCode": "usdt",
                "amount": "25.5",
                "address": WALLET_ADDRESS,
                "chainType": "erc20",
            },
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"id": "w-77"}}
        exchange.withdraw.assert_awaited_once_with(
            "USDT", Decimal("25.5"), WALLET_ADDRESS, "erc20", None
        )

    @pytest.mark.asyncio
    async def test_unknown_chain_type(self, client, exchange):
        response = await client.post(
            "/api/exchange/withdraw",
            json={"currencyCode": "USDT", "amount": "1", "address": "x", "chainType": "btc"},
        )

        assert response.status_code == 400
        exchange.withdraw.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejected_withdrawal(self, client, exchange):
        exchange.withdraw.side_effect = ExchangeRejected("4001", "Address not whitelisted")

        response = await client.post(
            "/api/exchange/withdraw",
            json={"currencyCode": "USDT", "amount": "1", "address": "x", "chainType": "trc20"},
        )

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"] == {"code": "4001", "message": "Address not whitelisted"}


class TestPriceEndpoint:
    """Tests for POST /api/exchange/price."""

    @pytest.mark.asyncio
    async def test_price(self, client, exchange):
        exchange.get_market_depth.return_value = {"a": [["65000", "1"]], "b": [["64990", "2"]]}

        response = await client.post("/api/exchange/price", json={"priceSymbol": "btcusdt"})

        assert response.status_code == 200
        assert response.json()["data"]["a"] == [["65000", "1"]]
        exchange.get_market_depth.assert_awaited_once_with("btcusdt", 2)


class TestSymbolsEndpoint:
    """Tests for /api/symbols."""

    @pytest.mark.asyncio
    async def test_symbols(self, client, exchange):
        exchange.get_ticker_prices.return_value = [{"symbol": "BTCUSDT", "price": "65000"}]

        response = await client.get("/api/symbols", params={"symbols": "BTCUSDT"})

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["timestamp"]
        exchange.get_ticker_prices.assert_awaited_once_with("BTCUSDT")

    @pytest.mark.asyncio
    async def test_exchange_down(self, client, exchange):
        exchange.get_ticker_prices.side_effect = ExchangeUnavailable("connection refused")

        response = await client.get("/api/symbols")

        assert response.status_code == 400
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_depth(self, client, exchange):
        exchange.get_market_depth.return_value = {"a": [], "b": []}

        response = await client.get("/api/symbols/ETHUSDT/depth", params={"depth": 5})

        assert response.status_code == 200
        exchange.get_market_depth.assert_awaited_once_with("ETHUSDT", 5)


class TestTokensEndpoint:
    """Tests for /api/tokens."""

    @pytest.mark.asyncio
    async def test_tokens_with_chain_filter(self, client, token_service):
        response = await client.get("/api/tokens", params={"chains": "ethereum, bsc"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "data": [{"tokenId": "1", "currencyCode": "ETH", "chainName": "ETHEREUM"}],
            "cached": True,
            "count": 1,
        }
        token_service.get_tokens.assert_awaited_once_with(["ethereum", "bsc"], refresh=False)

    @pytest.mark.asyncio
    async def test_catalogue_unreadable(self, client, token_service):
        token_service.get_tokens.side_effect = OSError("missing")

        response = await client.get("/api/tokens")

        assert response.status_code == 500


class TestDependencies:
    """Tests for the shared service instances."""

    def test_transfer_agent_uses_configured_rpc_urls(self, monkeypatch, settings):
        settings.eth_rpc_url = "https://eth.example"
        settings.polygon_rpc_url = "https://polygon.example"
        monkeypatch.setattr(dependencies, "get_settings", lambda: settings)
        monkeypatch.setattr(dependencies, "_transfer_agent", None)

        agent = dependencies.get_transfer_agent()

        assert agent.rpc_urls[1] == "https://eth.example"
        assert agent.rpc_urls[137] == "https://polygon.example"
        assert agent.rpc_urls == settings.rpc_urls
        assert agent.confirmation_timeout == settings.transfer_confirmation_timeout
        assert dependencies.get_transfer_agent() is agent
