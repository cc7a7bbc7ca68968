"""Authenticated client for the exchange trading and asset APIs.

Uses httpx for all requests. Every authenticated call is signed with the
rotating HMAC scheme in cexswap.exchange.signing; POST bodies are serialized
once and the same bytes are signed and sent.
"""

import asyncio
import json
import logging
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlencode

import httpx

from cexswap.config import Settings, get_settings
from cexswap.errors import ExchangeRejected, ExchangeUnavailable, WithdrawalTimeout
from cexswap.exchange.base import (
    ChainData,
    CurrencyInfo,
    Order,
    OrderSide,
    OrderType,
    WithdrawalHistoryFilter,
    WithdrawalRecord,
    WithdrawalStatus,
    format_amount,
    to_decimal,
)
from cexswap.exchange.signing import build_auth_headers, current_expires_ms

logger = logging.getLogger(__name__)

# Endpoints
PLACE_ORDER_PATH = "/trade/order/place"
ORDER_INFO_PATH = "/trade/order/orderInfo"
WITHDRAW_PATH = "/fi/v3/asset/doWithdraw"
WITHDRAW_RECORDS_PATH = "/fi/v3/asset/withdraw/record/list"
CURRENCY_INFO_PATH = "/fi/v1/common/currency"
TICKER_PRICE_PATH = "/v1/ticker/price"
MARKET_DEPTH_PATH = "/v1/market/depth/{symbol}"

# Clock skew allowance when narrowing withdrawal history to the request time
WITHDRAWAL_LOOKBACK_MS = 60_000


def _is_success_code(code: Any) -> bool:
    return code is not None and str(code).strip() == "0"


def _serialize_body(body: dict) -> str:
    return json.dumps(body, separators=(",", ":"))


class ExchangeClient:
    """Exchange REST client.

    The underlying connection pool is stateless and safe to share between
    concurrent swaps.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock_ms: Callable[[], int] = current_expires_ms,
    ):
        """Initialize client.

        Args:
            base_url: Exchange REST base URL
            api_key: API key sent in X-CS-APIKEY
            api_secret: Secret used to derive request signatures
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
            clock_ms: Millisecond clock for expiry stamps
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._api_secret = api_secret
        self._clock_ms = clock_ms
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ExchangeClient":
        """Create a client from application settings."""
        settings = settings or get_settings()
        return cls(
            base_url=settings.exchange_api_url,
            api_key=settings.exchange_api_key,
            api_secret=settings.exchange_api_secret,
            timeout=settings.exchange_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ExchangeClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _signed_get(self, path: str, params: dict) -> Any:
        query = urlencode(params)
        headers = build_auth_headers(self.api_key, self._api_secret, query, self._clock_ms())
        url = f"{path}?{query}" if query else path
        return await self._send("GET", url, headers=headers)

    async def _signed_post(self, path: str, body: dict) -> Any:
        payload = _serialize_body(body)
        headers = build_auth_headers(self.api_key, self._api_secret, payload, self._clock_ms())
        return await self._send("POST", path, headers=headers, content=payload.encode())

    async def _public_get(self, path: str, params: Optional[dict] = None) -> Any:
        query = urlencode(params or {})
        url = f"{path}?{query}" if query else path
        return await self._send("GET", url, headers={"X-CS-APIKEY": self.api_key})

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict,
        content: Optional[bytes] = None,
    ) -> Any:
        """Send a request and unwrap the exchange envelope.

        Returns:
            The `data` field of a successful response

        Raises:
            ExchangeRejected: Response code is not 0
            ExchangeUnavailable: Transport failure or unparseable response
        """
        started = time.perf_counter()
        logger.info(f"Exchange request: {method} {url}")
        try:
            response = await self._client.request(method, url, headers=headers, content=content)
        except httpx.HTTPError as e:
            logger.error(f"Exchange request failed: {method} {url}: {e}")
            raise ExchangeUnavailable(f"{method} {url} failed: {e}") from e

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Exchange response: {response.status_code} {method} {url} ({duration_ms:.0f}ms)"
        )

        try:
            data = response.json()
        except ValueError:
            if 400 <= response.status_code < 500:
                raise ExchangeRejected(response.status_code, response.text[:200])
            raise ExchangeUnavailable(
                f"{method} {url} returned non-JSON body (HTTP {response.status_code})"
            )

        if not isinstance(data, dict):
            raise ExchangeUnavailable(f"{method} {url} returned unexpected payload")

        code = data.get("code")
        if not _is_success_code(code):
            message = data.get("message") or data.get("msg") or ""
            if code is None:
                code = response.status_code
            logger.warning(f"Exchange rejected {method} {url}: code={code} message={message}")
            raise ExchangeRejected(code, message, payload=data)

        return data.get("data")

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    async def create_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType = OrderType.MARKET,
        quantity: Optional[Decimal] = None,
        amount: Optional[Decimal] = None,
        price: Optional[Decimal] = None,
        client_order_id: Optional[str] = None,
    ) -> Order:
        """Place an order.

        Args:
            symbol: Trading pair, e.g. BTCUSDT
            side: BUY or SELL
            order_type: MARKET or LIMIT
            quantity: Base-asset quantity (ordQty)
            amount: Quote-asset amount (ordAmt)
            price: Limit price (ordPrice)
            client_order_id: Optional client order id (clOrdId)

        Returns:
            Placed order (fill fields unset until get_order_info)
        """
        if quantity is None and amount is None:
            raise ValueError("Either quantity or amount is required")

        body: dict[str, Any] = {
            "symbol": symbol,
            "side": side.value,
            "ordType": order_type.value,
        }
        if quantity is not None:
            body["ordQty"] = format_amount(quantity)
        if amount is not None:
            body["ordAmt"] = format_amount(amount)
        if price is not None:
            body["ordPrice"] = format_amount(price)
        if client_order_id:
            body["clOrdId"] = client_order_id

        data = await self._signed_post(PLACE_ORDER_PATH, body) or {}
        order_id = data.get("ordId")
        if order_id is None:
            raise ExchangeRejected("", "Order response did not include ordId", payload=data)

        order = Order(
            symbol=symbol,
            side=side,
            type=order_type,
            exchange_order_id=str(order_id),
            quantity=quantity,
            amount=amount,
            client_order_id=data.get("clOrdId") or client_order_id,
        )
        logger.info(f"Order placed: {side.value} {symbol} ordId={order.exchange_order_id}")
        return order

    async def get_order_info(self, order_id: str) -> Order:
        """Look up an order with its fill quantity and amount."""
        data = await self._signed_get(ORDER_INFO_PATH, {"ordId": order_id})
        if isinstance(data, list):
            data = data[0] if data else {}
        data = data or {}

        side = str(data.get("side", "")).upper()
        ord_type = str(data.get("ordType", "")).upper()
        return Order(
            symbol=data.get("symbol", ""),
            side=OrderSide(side) if side in OrderSide.__members__ else OrderSide.BUY,
            type=OrderType(ord_type) if ord_type in OrderType.__members__ else OrderType.MARKET,
            exchange_order_id=str(data.get("ordId", order_id)),
            quantity=to_decimal(data.get("ordQty")),
            amount=to_decimal(data.get("ordAmt")),
            client_order_id=data.get("clOrdId"),
            status=data.get("ordStatus") or data.get("ordState"),
            filled_quantity=to_decimal(data.get("cumQty")),
            filled_quote_amount=to_decimal(data.get("cumAmt")),
            average_price=to_decimal(data.get("avgPrice")),
        )

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    async def withdraw(
        self,
        currency_code: str,
        amount: Decimal,
        address: str,
        chain_type: str,
        tag: Optional[str] = None,
    ) -> Optional[str]:
        """Request a withdrawal. Never retried here.

        Returns:
            Withdrawal id, or None if the exchange accepted without one
        """
        body: dict[str, Any] = {
            "currencyCode": currency_code,
            "amount": format_amount(amount),
            "address": address,
            "chainType": chain_type,
        }
        if tag:
            body["tag"] = tag

        data = await self._signed_post(WITHDRAW_PATH, body) or {}
        withdrawal_id = data.get("id") if isinstance(data, dict) else None
        if withdrawal_id is None or str(withdrawal_id) == "":
            logger.warning(f"Withdrawal of {amount} {currency_code} returned no id: {data}")
            return None

        logger.info(
            f"Withdrawal requested: {amount} {currency_code} -> {address} "
            f"({chain_type}) id={withdrawal_id}"
        )
        return str(withdrawal_id)

    async def get_withdrawal_history(
        self, history_filter: WithdrawalHistoryFilter
    ) -> list[WithdrawalRecord]:
        """List withdrawal records matching a filter."""
        data = await self._signed_post(WITHDRAW_RECORDS_PATH, history_filter.to_body())
        if isinstance(data, dict):
            data = data.get("list") or data.get("records") or []
        return [WithdrawalRecord.from_api(item) for item in (data or []) if isinstance(item, dict)]

    async def get_withdrawal(
        self,
        withdrawal_id: str,
        currency_code: Optional[str] = None,
        requested_at_ms: Optional[int] = None,
    ) -> Optional[WithdrawalRecord]:
        """Find a single withdrawal record by id.

        With requested_at_ms the history query starts just before the request
        time, so older withdrawals do not push the record off the page.
        """
        start_date = None
        if requested_at_ms is not None:
            start_date = max(0, int(requested_at_ms) - WITHDRAWAL_LOOKBACK_MS)
        records = await self.get_withdrawal_history(
            WithdrawalHistoryFilter(currency_code=currency_code, start_date=start_date)
        )
        for record in records:
            if record.withdrawal_id == str(withdrawal_id):
                return record
        return None

    async def poll_withdrawal_until_terminal(
        self,
        withdrawal_id: str,
        currency_code: Optional[str],
        max_wait: float = 180,
        poll_interval: float = 10,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        requested_at_ms: Optional[int] = None,
    ) -> WithdrawalRecord:
        """Poll history until the withdrawal reaches a terminal status.

        Transport failures and a record that is not yet listed keep the
        poll going; an explicit exchange rejection propagates.

        Returns:
            Terminal record (Completed, Rejected, PaymentFailed or Cancelled)

        Raises:
            WithdrawalTimeout: No terminal status within max_wait
            ExchangeRejected: History lookup was rejected
        """
        started = clock()
        last_status: Optional[WithdrawalStatus] = None
        polls = 0

        while True:
            polls += 1
            try:
                record = await self.get_withdrawal(withdrawal_id, currency_code, requested_at_ms)
            except ExchangeUnavailable as e:
                logger.warning(f"Withdrawal {withdrawal_id} poll {polls} failed: {e}")
                record = None

            if record is not None:
                if record.status != last_status:
                    logger.info(f"Withdrawal {withdrawal_id} status: {record.status.value}")
                last_status = record.status
                if record.status.is_terminal:
                    return record

            waited = clock() - started
            if waited + poll_interval > max_wait:
                raise WithdrawalTimeout(
                    withdrawal_id,
                    waited=waited,
                    last_status=last_status.value if last_status else None,
                )
            await sleep(poll_interval)

    # ------------------------------------------------------------------
    # Metadata and market data
    # ------------------------------------------------------------------

    async def get_currency_info(self, currency_code: str) -> CurrencyInfo:
        """Get currency metadata with per-chain contract addresses."""
        data = await self._signed_get(CURRENCY_INFO_PATH, {"currencyCode": currency_code}) or {}
        if isinstance(data, list):
            data = data[0] if data else {}
        chains = [
            ChainData.from_api(item)
            for item in data.get("chainDataList") or []
            if isinstance(item, dict)
        ]
        return CurrencyInfo(currency_code=currency_code.upper(), chains=chains)

    async def get_ticker_prices(self, symbols: Optional[str] = None) -> list[dict]:
        """Get latest prices for all symbols, or a comma-separated subset."""
        params = {"symbol": symbols} if symbols else None
        data = await self._public_get(TICKER_PRICE_PATH, params)
        return data if isinstance(data, list) else []

    async def get_market_depth(self, symbol: str, depth: int = 2) -> dict:
        """Get order book depth for a symbol."""
        data = await self._public_get(
            MARKET_DEPTH_PATH.format(symbol=symbol.upper()), {"depth": depth}
        )
        return data if isinstance(data, dict) else {}
