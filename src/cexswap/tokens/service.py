"""Token list service backed by the static token catalogue.

The catalogue (public/tokens.json) is a list of entries such as:

    {"id": 1, "chain": "ETHEREUM", "currency_name": "USDT",
     "contract_address": "0xdAC1...", "contract_precision": 6, "logoURI": "..."}

Entries are normalized for the frontend and cached per chain filter.
Contract addresses can be refreshed from the exchange's currency metadata.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Optional

from cexswap.config import Settings, get_settings
from cexswap.errors import ExchangeError
from cexswap.exchange.base import CurrencyInfo
from cexswap.exchange.client import ExchangeClient
from cexswap.tokens.cache import TTLCache
from cexswap.transfer.base import NATIVE_ADDRESS

logger = logging.getLogger(__name__)

POLYGON_NATIVE_PROXY = "0x0000000000000000000000000000000000001010"

DEFAULT_LOGO_URI = "https://cryptologos.cc/logos/bitcoin-sv-bsv-logo.png?v=040"
LOGO_URIS = {
    "USDT": "https://cryptologos.cc/logos/tether-usdt-logo.png?v=040",
    "USDC": "https://cryptologos.cc/logos/usd-coin-usdc-logo.png?v=040",
    "BTC": "https://cryptologos.cc/logos/bitcoin-btc-logo.png?v=040",
    "BITCOIN": "https://cryptologos.cc/logos/bitcoin-btc-logo.png?v=040",
    "POLYGON": "https://cryptologos.cc/logos/polygon-matic-logo.png?v=040",
    "MATIC": "https://cryptologos.cc/logos/polygon-matic-logo.png?v=040",
    "POL": "https://cryptologos.cc/logos/polygon-matic-logo.png?v=040",
    "BNB": "https://cryptologos.cc/logos/bnb-bnb-logo.png?v=040",
    "ETH": "https://cryptologos.cc/logos/ethereum-eth-logo.png?v=040",
    "ETHEREUM": "https://cryptologos.cc/logos/ethereum-eth-logo.png?v=040",
}

_ADDRESS_KEYS = ("contract_address", "contact_address", "contractAddress", "address")
_LOGO_KEYS = ("logoURI", "logo_uri", "logo")
_DECIMALS_KEYS = ("contract_precision", "decimals", "decimal")


def get_logo_uri(currency_code: str) -> str:
    return LOGO_URIS.get(currency_code.upper(), DEFAULT_LOGO_URI)


def _first_str(entry: dict, keys: tuple[str, ...]) -> str:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def currency_code_of(entry: dict) -> str:
    """Currency code of a catalogue entry, ignoring a " (CHAIN)" display suffix."""
    name = str(entry.get("currency_name") or "").strip()
    return name.split(" (", 1)[0].strip().upper()


def cache_key_for(chains: Optional[list[str]]) -> str:
    if not chains:
        return "all"
    return ",".join(sorted(chain.strip().lower() for chain in chains))


def normalize_token(entry: dict) -> Optional[dict]:
    """Convert a catalogue entry into the public token shape."""
    chain_name = str(entry.get("chain") or "").strip().upper()
    currency_code = currency_code_of(entry)
    if not chain_name or not currency_code:
        return None

    contract_address = _first_str(entry, _ADDRESS_KEYS) or NATIVE_ADDRESS
    if currency_code == "POL":
        contract_address = POLYGON_NATIVE_PROXY

    decimals = None
    for key in _DECIMALS_KEYS:
        if entry.get(key) is not None and str(entry[key]).strip():
            decimals = str(entry[key]).strip()
            break

    return {
        "tokenId": str(entry.get("id")),
        "tokenName": currency_code,
        "currencyCode": currency_code,
        "chainName": chain_name,
        "contractAddress": contract_address,
        "decimals": decimals or "18",
        "logoUri": _first_str(entry, _LOGO_KEYS) or get_logo_uri(currency_code),
    }


class TokenListService:
    """Serves the token catalogue and keeps its contract addresses current."""

    def __init__(
        self,
        exchange: ExchangeClient,
        tokens_file: str | Path,
        cache: Optional[TTLCache] = None,
        concurrency: int = 5,
        delay: float = 0.2,
    ):
        self.exchange = exchange
        self.tokens_file = Path(tokens_file)
        self.cache = cache or TTLCache()
        self.concurrency = max(1, int(concurrency))
        self.delay = delay

    @classmethod
    def from_settings(
        cls, exchange: ExchangeClient, settings: Optional[Settings] = None
    ) -> "TokenListService":
        settings = settings or get_settings()
        return cls(
            exchange=exchange,
            tokens_file=settings.tokens_file,
            cache=TTLCache(default_ttl=settings.tokens_cache_ttl),
            concurrency=settings.tokens_update_concurrency,
            delay=settings.tokens_update_delay,
        )

    def _read_catalogue(self) -> list[dict]:
        with open(self.tokens_file, encoding="utf-8") as f:
            entries = json.load(f)
        if not isinstance(entries, list):
            raise ValueError(f"{self.tokens_file} is not a JSON array")
        return entries

    async def build_tokens(self, chains: Optional[list[str]] = None) -> list[dict]:
        """Build the normalized token list, optionally filtered by chain."""
        started = time.perf_counter()
        entries = self._read_catalogue()

        wanted = {chain.strip().lower() for chain in chains} if chains else None
        tokens = []
        for entry in entries:
            if wanted is not None and str(entry.get("chain") or "").strip().lower() not in wanted:
                continue
            token = normalize_token(entry)
            if token is not None:
                tokens.append(token)

        logger.info(
            f"Built token list: {len(tokens)} of {len(entries)} entries "
            f"(chains={sorted(wanted) if wanted else 'all'}) "
            f"in {(time.perf_counter() - started) * 1000:.0f}ms"
        )
        return tokens

    async def get_tokens(
        self, chains: Optional[list[str]] = None, refresh: bool = False
    ) -> tuple[list[dict], bool]:
        """Get the cached token list.

        Returns:
            Tuple of (tokens, served_from_cache)
        """
        return await self.cache.get_or_load(
            cache_key_for(chains), lambda: self.build_tokens(chains), refresh=refresh
        )

    async def _fetch_currency_info(self, currency_codes: list[str]) -> dict[str, CurrencyInfo]:
        semaphore = asyncio.Semaphore(self.concurrency)
        results: dict[str, CurrencyInfo] = {}

        async def fetch(code: str) -> None:
            async with semaphore:
                try:
                    results[code] = await self.exchange.get_currency_info(code)
                    logger.debug(f"Fetched currency info for {code}")
                except ExchangeError as e:
                    logger.warning(f"Currency info for {code} unavailable: {e}")
                await asyncio.sleep(self.delay)

        await asyncio.gather(*(fetch(code) for code in currency_codes))
        return results

    async def update_contract_addresses(self) -> dict[str, Any]:
        """Refresh contract addresses, display names and logos in the catalogue file."""
        entries = self._read_catalogue()
        currency_codes = sorted({code for code in map(currency_code_of, entries) if code})
        logger.info(
            f"Updating {len(entries)} catalogue entries from {len(currency_codes)} currencies"
        )
        infos = await self._fetch_currency_info(currency_codes)

        updated = logo_updated = skipped = 0
        for entry in entries:
            chain_name = str(entry.get("chain") or "").strip().upper()
            currency_code = currency_code_of(entry)

            if currency_code and chain_name:
                display_name = f"{currency_code} ({chain_name})"
                if entry.get("currency_name") != display_name:
                    entry["currency_name"] = display_name
                    updated += 1

            logo = get_logo_uri(currency_code)
            if entry.get("logoURI") != logo:
                entry["logoURI"] = logo
                logo_updated += 1

            info = infos.get(currency_code)
            chain = info.find_chain(chain_name) if info and chain_name else None
            if chain is None:
                skipped += 1
                continue

            address = chain.contract_address or NATIVE_ADDRESS
            if entry.get("contract_address") != address:
                entry["contract_address"] = address
                updated += 1

        entries.sort(key=lambda entry: str(entry.get("currency_name") or "").upper())

        if updated or logo_updated:
            with open(self.tokens_file, "w", encoding="utf-8") as f:
                json.dump(entries, f, indent=2)
            self.cache.invalidate()
            logger.info(f"Wrote {self.tokens_file}: {updated} updates, {logo_updated} logos")
        else:
            logger.info("Token catalogue already up to date")

        return {
            "updatedCount": updated,
            "logoUpdatedCount": logo_updated,
            "skippedCount": skipped,
            "totalTokens": len(entries),
        }

    def should_update(self) -> bool:
        """Check whether any catalogue entry lacks a contract address or logo."""
        try:
            entries = self._read_catalogue()
        except (OSError, ValueError) as e:
            logger.error(f"Cannot read {self.tokens_file}: {e}")
            return True
        return any(
            not _first_str(entry, _ADDRESS_KEYS) or not _first_str(entry, _LOGO_KEYS)
            for entry in entries
        )
