"""Tests for the token catalogue service and its cache."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from cexswap.errors import ExchangeUnavailable
from cexswap.exchange.base import ChainData, CurrencyInfo
from cexswap.exchange.client import ExchangeClient
from cexswap.tokens.cache import TTLCache
from cexswap.tokens.service import (
    DEFAULT_LOGO_URI,
    LOGO_URIS,
    POLYGON_NATIVE_PROXY,
    TokenListService,
    cache_key_for,
    normalize_token,
)
from cexswap.transfer.base import NATIVE_ADDRESS

from conftest import FakeClock

USDT_ETH = "0xdAC17F958D2ee523a2206206994597C13D831ec7"

CATALOGUE = [
    {
        "id": 1,
        "chain": "BSC",
        "currency_name": "BNB (BSC)",
        "contract_address": NATIVE_ADDRESS,
        "contract_precision": 18,
        "logoURI": LOGO_URIS["BNB"],
    },
    {
        "id": 2,
        "chain": "ETHEREUM",
        "currency_name": "USDT (ETHEREUM)",
        "contract_address": USDT_ETH,
        "contract_precision": 6,
        "logoURI": LOGO_URIS["USDT"],
    },
    {
        "id": 3,
        "chain": "POLYGON",
        "currency_name": "POL (POLYGON)",
        "contract_address": "",
        "logoURI": LOGO_URIS["POL"],
    },
]


def write_catalogue(path, entries):
    path.write_text(json.dumps(entries), encoding="utf-8")
    return path


@pytest.fixture
def exchange():
    return MagicMock(spec=ExchangeClient)


@pytest.fixture
def tokens_file(tmp_path):
    return write_catalogue(tmp_path / "tokens.json", CATALOGUE)


@pytest.fixture
def service(exchange, tokens_file):
    return TokenListService(exchange, tokens_file, delay=0)


class TestTTLCache:
    """Tests for the single-flight TTL cache."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_load(self):
        cache = TTLCache()
        release = asyncio.Event()
        calls = []

        async def loader():
            calls.append(1)
            await release.wait()
            return ["tokens"]

        first = asyncio.ensure_future(cache.get_or_load("all", loader))
        second = asyncio.ensure_future(cache.get_or_load("all", loader))
        await asyncio.sleep(0)
        release.set()

        assert await first == (["tokens"], False)
        assert await second == (["tokens"], True)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_reloaded(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=60, clock=clock)
        values = iter(["v1", "v2"])

        async def loader():
            return next(values)

        assert await cache.get_or_load("k", loader) == ("v1", False)
        assert await cache.get_or_load("k", loader) == ("v1", True)

        clock.now += 61
        assert cache.get("k") is None
        assert await cache.get_or_load("k", loader) == ("v2", False)

    @pytest.mark.asyncio
    async def test_refresh_bypasses_fresh_value(self):
        cache = TTLCache()
        values = iter(["v1", "v2"])

        async def loader():
            return next(values)

        await cache.get_or_load("k", loader)
        assert await cache.get_or_load("k", loader, refresh=True) == ("v2", False)

    @pytest.mark.asyncio
    async def test_failed_reload_serves_last_good_value(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)

        async def good():
            return "good"

        async def broken():
            raise OSError("disk gone")

        await cache.get_or_load("k", good)
        clock.now += 11

        assert await cache.get_or_load("k", broken) == ("good", False)

    @pytest.mark.asyncio
    async def test_failed_first_load_raises(self):
        cache = TTLCache()

        async def broken():
            raise OSError("disk gone")

        with pytest.raises(OSError):
            await cache.get_or_load("k", broken)
        assert cache.size() == 0

    @pytest.mark.asyncio
    async def test_invalidate(self):
        cache = TTLCache()

        async def loader():
            return "v"

        await cache.get_or_load("a", loader)
        await cache.get_or_load("b", loader)
        cache.invalidate("a")
        assert cache.size() == 1
        cache.invalidate()
        assert cache.size() == 0


class TestNormalizeToken:
    """Tests for catalogue entry normalization."""

    def test_full_entry(self):
        token = normalize_token(CATALOGUE[1])

        assert token == {
            "tokenId": "2",
            "tokenName": "USDT",
            "currencyCode": "USDT",
            "chainName": "ETHEREUM",
            "contractAddress": USDT_ETH,
            "decimals": "6",
            "logoUri": LOGO_URIS["USDT"],
        }

    def test_pol_uses_native_proxy(self):
        token = normalize_token(CATALOGUE[2])

        assert token["contractAddress"] == POLYGON_NATIVE_PROXY
        assert token["decimals"] == "18"

    def test_missing_address_and_logo_defaults(self):
        token = normalize_token({"id": 9, "chain": "bsc", "currency_name": "doge"})

        assert token["chainName"] == "BSC"
        assert token["currencyCode"] == "DOGE"
        assert token["contractAddress"] == NATIVE_ADDRESS
        assert token["logoUri"] == DEFAULT_LOGO_URI

    def test_entry_without_chain_is_dropped(self):
        assert normalize_token({"id": 9, "currency_name": "ETH"}) is None

    def test_cache_key_ignores_order_and_case(self):
        assert cache_key_for(["Polygon", "bsc"]) == cache_key_for(["BSC", "polygon"])
        assert cache_key_for(None) == "all"


class TestTokenListService:
    """Tests for token listing."""

    @pytest.mark.asyncio
    async def test_lists_all_tokens(self, service):
        tokens, cached = await service.get_tokens()

        assert cached is False
        assert [t["currencyCode"] for t in tokens] == ["BNB", "USDT", "POL"]

    @pytest.mark.asyncio
    async def test_chain_filter(self, service):
        tokens, _ = await service.get_tokens(["ethereum", "Polygon"])

        assert [t["chainName"] for t in tokens] == ["ETHEREUM", "POLYGON"]

    @pytest.mark.asyncio
    async def test_second_call_is_cached(self, service, tokens_file):
        await service.get_tokens()
        tokens_file.write_text("[]", encoding="utf-8")

        tokens, cached = await service.get_tokens()

        assert cached is True
        assert len(tokens) == 3

    @pytest.mark.asyncio
    async def test_refresh_rereads_file(self, service, tokens_file):
        await service.get_tokens()
        tokens_file.write_text("[]", encoding="utf-8")

        tokens, cached = await service.get_tokens(refresh=True)

        assert cached is False
        assert tokens == []

    @pytest.mark.asyncio
    async def test_non_array_catalogue(self, exchange, tmp_path):
        path = tmp_path / "tokens.json"
        path.write_text("{}", encoding="utf-8")
        service = TokenListService(exchange, path, delay=0)

        with pytest.raises(ValueError):
            await service.get_tokens()


class TestUpdateContractAddresses:
    """Tests for refreshing the catalogue from exchange currency metadata."""

    @pytest.fixture
    def stale_file(self, tmp_path):
        return write_catalogue(
            tmp_path / "tokens.json",
            [
                {"id": 1, "chain": "ETHEREUM", "currency_name": "USDT", "contract_address": ""},
                {
                    "id": 2,
                    "chain": "BSC",
                    "currency_name": "BNB (BSC)",
                    "contract_address": "",
                    "logoURI": LOGO_URIS["BNB"],
                },
                {
                    "id": 3,
                    "chain": "TRON",
                    "currency_name": "USDT (TRON)",
                    "contract_address": "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t",
                    "logoURI": LOGO_URIS["USDT"],
                },
            ],
        )

    @pytest.fixture
    def currencies(self):
        return {
            "USDT": CurrencyInfo("USDT", [ChainData("ETHEREUM", "erc20", USDT_ETH)]),
            "BNB": CurrencyInfo("BNB", [ChainData("BSC", "bep20", None)]),
        }

    @pytest.mark.asyncio
    async def test_updates_addresses_names_and_logos(self, exchange, stale_file, currencies):
        exchange.get_currency_info.side_effect = lambda code: currencies[code]
        service = TokenListService(exchange, stale_file, delay=0)

        summary = await service.update_contract_addresses()

        assert summary == {
            "updatedCount": 3,
            "logoUpdatedCount": 1,
            "skippedCount": 1,
            "totalTokens": 3,
        }
        entries = json.loads(stale_file.read_text(encoding="utf-8"))
        assert [e["currency_name"] for e in entries] == [
            "BNB (BSC)",
            "USDT (ETHEREUM)",
            "USDT (TRON)",
        ]
        assert entries[0]["contract_address"] == NATIVE_ADDRESS
        assert entries[1]["contract_address"] == USDT_ETH
        assert entries[1]["logoURI"] == LOGO_URIS["USDT"]
        assert entries[2]["contract_address"] == "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"
        assert sorted(c.args[0] for c in exchange.get_currency_info.call_args_list) == [
            "BNB",
            "USDT",
        ]

    @pytest.mark.asyncio
    async def test_update_invalidates_cache(self, exchange, stale_file, currencies):
        exchange.get_currency_info.side_effect = lambda code: currencies[code]
        service = TokenListService(exchange, stale_file, delay=0)
        await service.get_tokens()

        await service.update_contract_addresses()

        assert service.cache.size() == 0

    @pytest.mark.asyncio
    async def test_unavailable_currency_is_skipped(self, exchange, stale_file, currencies):
        def lookup(code):
            if code == "BNB":
                raise ExchangeUnavailable("timeout")
            return currencies[code]

        exchange.get_currency_info.side_effect = lookup
        service = TokenListService(exchange, stale_file, delay=0)

        summary = await service.update_contract_addresses()

        assert summary["skippedCount"] == 2
        entries = json.loads(stale_file.read_text(encoding="utf-8"))
        assert entries[0]["contract_address"] == ""

    @pytest.mark.asyncio
    async def test_up_to_date_file_is_not_rewritten(self, exchange, tokens_file):
        exchange.get_currency_info.side_effect = lambda code: CurrencyInfo(code, [])
        service = TokenListService(exchange, tokens_file, delay=0)
        before = tokens_file.read_text(encoding="utf-8")

        summary = await service.update_contract_addresses()

        assert summary["updatedCount"] == 0
        assert summary["logoUpdatedCount"] == 0
        assert tokens_file.read_text(encoding="utf-8") == before


class TestShouldUpdate:
    """Tests for the catalogue completeness check."""

    def test_complete_catalogue(self, exchange, tmp_path):
        path = write_catalogue(tmp_path / "tokens.json", CATALOGUE[:2])

        assert TokenListService(exchange, path).should_update() is False

    def test_missing_address(self, service):
        assert service.should_update() is True

    def test_missing_file(self, exchange, tmp_path):
        assert TokenListService(exchange, tmp_path / "missing.json").should_update() is True
