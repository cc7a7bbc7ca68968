"""On-chain transfer agent for EVM chains (ETH, BSC, Polygon).

Moves the withdrawn asset from the custody address to the caller's wallet.
Native-asset transfers are plain value transactions; token transfers call
the ERC-20 `transfer` function.
"""

import asyncio
import functools
import logging
import time
from dataclasses import replace
from decimal import ROUND_DOWN, Decimal
from typing import Any, Awaitable, Callable, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.middleware import ExtraDataToPOAMiddleware

from cexswap.errors import ConfigurationError, ValidationError
from cexswap.transfer.base import (
    CONFIRMATION_TIMEOUT,
    REVERTED,
    RPC_ERROR,
    TransferResult,
    is_native_token,
)
from cexswap.transfer.fees import derive_fee_params

logger = logging.getLogger(__name__)

NATIVE_TRANSFER_GAS = 21_000

ERC20_ABI = [
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def _default_web3_factory(rpc_url: str) -> Web3:
    w3 = Web3(Web3.HTTPProvider(rpc_url))
    # BSC and Polygon blocks carry oversized extraData
    w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return w3


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human amount to integer base units, rounding down."""
    scaled = Decimal(amount) * (Decimal(10) ** int(decimals))
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


class OnChainTransferAgent:
    """Signs and broadcasts transfers from the custody wallet."""

    def __init__(
        self,
        private_key: Optional[str],
        rpc_urls: Optional[dict[int, str]] = None,
        *,
        web3_factory: Optional[Callable[[str], Web3]] = None,
        confirmation_timeout: float = 300,
        poll_interval: float = 2,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize agent.

        Args:
            private_key: Custody signing key (hex)
            rpc_urls: Default RPC URL per chain id
            web3_factory: Builds a Web3 instance for an RPC URL
            confirmation_timeout: Seconds to wait for a receipt
            poll_interval: Seconds between receipt lookups
            sleep: Sleep coroutine (injected for tests)
            clock: Monotonic clock (injected for tests)
        """
        self._private_key = private_key
        self.rpc_urls = dict(rpc_urls or {})
        self._web3_factory = web3_factory or _default_web3_factory
        self._web3_cache: dict[str, Web3] = {}
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def get_web3(self, rpc_url: str) -> Web3:
        """Get (cached) Web3 instance for an RPC URL."""
        if rpc_url not in self._web3_cache:
            self._web3_cache[rpc_url] = self._web3_factory(rpc_url)
        return self._web3_cache[rpc_url]

    def _resolve_rpc_url(self, chain_id: int, rpc_url: Optional[str]) -> str:
        if rpc_url:
            return rpc_url
        url = self.rpc_urls.get(int(chain_id))
        if not url:
            raise ConfigurationError(f"No RPC URL configured for chain {chain_id}")
        return url

    def _get_account(self, from_address: str):
        if not self._private_key:
            raise ConfigurationError("Custody signing key is not configured")
        account = Account.from_key(self._private_key)
        if account.address.lower() != from_address.strip().lower():
            raise ConfigurationError(
                f"Signing key address {account.address} does not match "
                f"transfer source {from_address}"
            )
        return account

    async def _run_blocking(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking Web3 call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def transfer(
        self,
        token_address: Optional[str],
        from_address: str,
        to_address: str,
        amount: Decimal,
        chain_id: int,
        decimals: int = 18,
        rpc_url: Optional[str] = None,
    ) -> TransferResult:
        """Sign and broadcast a new transfer from the custody address, then wait for the receipt.

        Args:
            token_address: Token contract, or None/zero/native sentinel for the native asset
            from_address: Custody address (must match the signing key)
            to_address: Recipient wallet
            amount: Human-unit amount
            chain_id: EVM chain id
            decimals: Fallback token decimals if the contract does not report them
            rpc_url: Optional RPC URL overriding the chain default

        Returns:
            TransferResult (success only once the transaction is mined with status 1).
            A failure with awaiting_receipt set carries the signed transaction, which
            must be passed to resume() instead of calling transfer() again.

        Raises:
            ConfigurationError: Missing key or RPC URL, or key/from-address mismatch
            ValidationError: Recipient is not a valid address
        """
        account = self._get_account(from_address)
        w3 = self.get_web3(self._resolve_rpc_url(chain_id, rpc_url))
        try:
            recipient = Web3.to_checksum_address(to_address)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid recipient address {to_address!r}") from e
        native = is_native_token(token_address)

        logger.info(
            f"Transfer {amount} {'native' if native else token_address} "
            f"on chain {chain_id}: {account.address} -> {recipient}"
        )

        try:
            nonce, raw_tx, tx_hash = await self._run_blocking(
                self._build_and_sign,
                w3,
                account,
                chain_id,
                token_address if not native else None,
                recipient,
                amount,
                decimals,
            )
        except Exception as e:
            logger.error(f"Transfer on chain {chain_id} could not be prepared: {e}")
            return TransferResult(success=False, error_code=RPC_ERROR, error_reason=str(e))

        signed = TransferResult(
            success=False, tx_hash=tx_hash, nonce=nonce, raw_transaction=Web3.to_hex(raw_tx)
        )
        try:
            sent_hash = await self._run_blocking(w3.eth.send_raw_transaction, raw_tx)
        except Exception as e:
            # The node may still have accepted it; resume() rebroadcasts the same bytes
            logger.error(f"Broadcast of {tx_hash} (nonce {nonce}) failed: {e}")
            return replace(signed, error_code=RPC_ERROR, error_reason=str(e))

        signed.tx_hash = Web3.to_hex(sent_hash)
        logger.info(f"Transfer broadcast: {signed.tx_hash} (nonce {nonce})")
        return await self._confirm(w3, signed)

    async def resume(
        self, pending: TransferResult, chain_id: int, rpc_url: Optional[str] = None
    ) -> TransferResult:
        """Continue a transfer that was signed but not confirmed.

        Rebroadcasts the same signed transaction (a node that already has it
        rejects the duplicate) and waits for its receipt again. Never signs
        a new transaction, so the transfer can be mined at most once.
        """
        w3 = self.get_web3(self._resolve_rpc_url(chain_id, rpc_url))
        if pending.raw_transaction:
            raw_tx = Web3.to_bytes(hexstr=pending.raw_transaction)
            try:
                await self._run_blocking(w3.eth.send_raw_transaction, raw_tx)
                logger.info(f"Rebroadcast {pending.tx_hash} (nonce {pending.nonce})")
            except Exception as e:
                logger.info(f"Rebroadcast of {pending.tx_hash} not accepted: {e}")
        return await self._confirm(w3, pending)

    async def _confirm(self, w3: Web3, signed: TransferResult) -> TransferResult:
        result = await self.wait_for_confirmation(w3, signed.tx_hash)
        result.nonce = signed.nonce
        result.raw_transaction = signed.raw_transaction
        return result

    def _build_and_sign(
        self,
        w3: Web3,
        account,
        chain_id: int,
        token_address: Optional[str],
        recipient: str,
        amount: Decimal,
        decimals: int,
    ) -> tuple[int, bytes, str]:
        nonce = w3.eth.get_transaction_count(account.address, "pending")
        tx_params = {
            "from": account.address,
            "nonce": nonce,
            "chainId": int(chain_id),
            **derive_fee_params(w3, chain_id),
        }

        if token_address is None:
            tx = self._build_native_transfer(w3, tx_params, recipient, amount)
        else:
            tx = self._build_token_transfer(
                w3, tx_params, token_address, recipient, amount, decimals
            )

        signed = account.sign_transaction(tx)
        raw_tx = getattr(signed, "raw_transaction", None) or signed.rawTransaction
        return nonce, bytes(raw_tx), Web3.to_hex(signed.hash)

    def _build_native_transfer(
        self, w3: Web3, tx_params: dict, recipient: str, amount: Decimal
    ) -> dict:
        tx = {**tx_params, "to": recipient, "value": Web3.to_wei(Decimal(amount), "ether")}
        try:
            tx["gas"] = w3.eth.estimate_gas(tx)
        except Exception as e:
            logger.warning(f"Gas estimation failed, using {NATIVE_TRANSFER_GAS}: {e}")
            tx["gas"] = NATIVE_TRANSFER_GAS
        tx.pop("from", None)
        return tx

    def _build_token_transfer(
        self,
        w3: Web3,
        tx_params: dict,
        token_address: str,
        recipient: str,
        amount: Decimal,
        fallback_decimals: int,
    ) -> dict:
        contract = w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        try:
            decimals = int(contract.functions.decimals().call())
        except Exception as e:
            logger.warning(
                f"decimals() failed for {token_address}, using {fallback_decimals}: {e}"
            )
            decimals = int(fallback_decimals)

        raw_amount = to_base_units(amount, decimals)
        tx = contract.functions.transfer(recipient, raw_amount).build_transaction(tx_params)
        tx = dict(tx)
        tx.pop("from", None)
        return tx

    async def wait_for_confirmation(self, w3: Web3, tx_hash: str) -> TransferResult:
        """Poll for the receipt until mined, reverted or timed out."""
        started = self._clock()

        while True:
            try:
                receipt = await self._run_blocking(w3.eth.get_transaction_receipt, tx_hash)
            except TransactionNotFound:
                receipt = None
            except Exception as e:
                logger.error(f"Receipt lookup for {tx_hash} failed: {e}")
                return TransferResult(
                    success=False, tx_hash=tx_hash, error_code=RPC_ERROR, error_reason=str(e)
                )

            if receipt is not None:
                block_number = receipt.get("blockNumber")
                if receipt.get("status") == 1:
                    logger.info(f"Transfer {tx_hash} confirmed in block {block_number}")
                    return TransferResult(success=True, tx_hash=tx_hash, block_number=block_number)
                logger.error(f"Transfer {tx_hash} reverted in block {block_number}")
                return TransferResult(
                    success=False,
                    tx_hash=tx_hash,
                    error_code=REVERTED,
                    error_reason="Transaction reverted",
                    block_number=block_number,
                )

            if self._clock() - started >= self.confirmation_timeout:
                return TransferResult(
                    success=False,
                    tx_hash=tx_hash,
                    error_code=CONFIRMATION_TIMEOUT,
                    error_reason=f"Not mined after {self.confirmation_timeout:.0f}s",
                )
            await self._sleep(self.poll_interval)
