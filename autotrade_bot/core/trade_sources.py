"""
Trade Sources

Adapters the ExecutionRouter races against each other. Each adapter gets its
own cancel event and must stop before finalizing a transaction once the event
is set; it is never force-killed.

- JupiterSource: quote -> swap transaction -> sign -> send via RPC
- PaperSource: simulated fills for paper mode and tests
"""

import asyncio
import base64
import json
import logging
import random
import uuid
from typing import Optional, Dict, Any

import aiohttp
import base58
from solders.keypair import Keypair
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.models import TxOpts

from ..config import Settings
from ..config.strategy_config import Credential
from ..constants import WSOL_MINT, LAMPORTS_PER_SOL, PROBE_AMOUNT_RAW, CONFIRM_TIMEOUT_SEC
from ..exceptions import SwapException, SourceNotSupported, ConfigurationException
from ..utils.retry import CircuitBreaker
from .models import Side, TradeResult

logger = logging.getLogger(__name__)


class TradeSource:
    """Base adapter. Subclasses override the sides they support."""

    name = "source"

    async def buy(
        self,
        token_address: str,
        amount: float,
        credential: Optional[Credential],
        cancel_event: asyncio.Event,
    ) -> TradeResult:
        raise SourceNotSupported(f"buy not implemented in {self.name}")

    async def sell(
        self,
        token_address: str,
        amount: float,
        credential: Optional[Credential],
        cancel_event: asyncio.Event,
    ) -> TradeResult:
        raise SourceNotSupported(f"sell not implemented in {self.name}")

    async def close(self):
        pass

    @staticmethod
    def _check_cancel(cancel_event: Optional[asyncio.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise SwapException("Cancelled")


def keypair_from_secret(secret: str) -> Keypair:
    """Accepts a base58 string or a JSON byte array."""
    secret = (secret or "").strip()
    if not secret:
        raise ConfigurationException("Empty wallet secret")
    try:
        if secret.startswith("["):
            key_bytes = bytes(json.loads(secret))
        else:
            key_bytes = base58.b58decode(secret)
        return Keypair.from_bytes(key_bytes)
    except ValueError as e:
        raise ConfigurationException(f"Invalid wallet secret: {e}") from e


class JupiterSource(TradeSource):
    """
    Jupiter aggregator adapter.

    Buys take SOL and are sent as lamports. Sells take raw token units, sent
    unscaled since token decimals vary by mint. A zero amount only asks for a
    quote.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        session: aiohttp.ClientSession,
        rpc_client: AsyncClient,
        slippage_bps: int = 100,
        confirm_timeout: float = CONFIRM_TIMEOUT_SEC,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.rpc = rpc_client
        self.slippage_bps = slippage_bps
        self.confirm_timeout = confirm_timeout
        self.breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=30.0, name=name)

    async def buy(self, token_address, amount, credential, cancel_event):
        return await self._swap(Side.BUY, WSOL_MINT, token_address, amount, credential, cancel_event)

    async def sell(self, token_address, amount, credential, cancel_event):
        return await self._swap(Side.SELL, token_address, WSOL_MINT, amount, credential, cancel_event)

    async def _swap(
        self,
        side: Side,
        input_mint: str,
        output_mint: str,
        amount: float,
        credential: Optional[Credential],
        cancel_event: asyncio.Event,
    ) -> TradeResult:
        self._check_cancel(cancel_event)
        if not self.breaker.can_execute():
            raise SwapException(f"{self.name} circuit breaker open")

        probe = not amount or amount <= 0
        if probe:
            raw_amount = PROBE_AMOUNT_RAW
        elif side is Side.BUY:
            raw_amount = int(amount * LAMPORTS_PER_SOL)
        else:
            raw_amount = int(amount)
        if raw_amount <= 0:
            raise SwapException("Amount too small", amount=amount)

        quote = await self.get_quote(input_mint, output_mint, raw_amount)
        raw_out = int(quote.get("outAmount", 0))

        if probe:
            logger.debug(f"{self.name} route probe ok for {output_mint[:8]}...")
            return TradeResult(
                tx_id="", source=self.name, side=side, amount_in=0.0, amount_out=0.0, route_only=True
            )

        if credential is None:
            raise SwapException("No credential for live swap")
        payer = keypair_from_secret(credential.secret)

        self._check_cancel(cancel_event)
        swap_tx = await self._get_swap_transaction(quote, str(payer.pubkey()))

        tx = VersionedTransaction.from_bytes(base64.b64decode(swap_tx))
        signed_tx = VersionedTransaction.populate(tx.message, [payer.sign_message(bytes(tx.message))])

        # Last chance to back out; after this the transaction is on the wire
        self._check_cancel(cancel_event)
        try:
            result = await self.rpc.send_raw_transaction(
                bytes(signed_tx),
                opts=TxOpts(skip_preflight=True, preflight_commitment=Confirmed),
            )
        except Exception as e:
            self.breaker.record_failure()
            raise SwapException(f"Send failed: {e}") from e
        tx_signature = str(result.value)
        logger.info(f"{side.value.upper()} sent via {self.name}: {tx_signature}")

        if not await self._confirm_transaction(tx_signature):
            raise SwapException("Transaction not confirmed", tx=tx_signature[:16])

        return TradeResult(
            tx_id=tx_signature,
            source=self.name,
            side=side,
            amount_in=amount,
            amount_out=raw_out / LAMPORTS_PER_SOL if side is Side.SELL else 0.0,
            raw_out=raw_out,
        )

    async def get_quote(self, input_mint: str, output_mint: str, amount: int) -> Dict[str, Any]:
        url = f"{self.base_url}/quote"
        params = {
            "inputMint": str(input_mint),
            "outputMint": str(output_mint),
            "amount": str(amount),
            "slippageBps": self.slippage_bps,
        }
        try:
            async with self.session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=15)) as resp:
                if resp.status != 200:
                    error = await resp.text()
                    self.breaker.record_failure()
                    raise SwapException(f"Quote failed: {resp.status} - {error[:120]}")
                quote = await resp.json()
        except aiohttp.ClientError as e:
            self.breaker.record_failure()
            raise SwapException(f"Quote request error: {e}") from e

        if not quote or not quote.get("outAmount") or not quote.get("routePlan"):
            raise SwapException("No route found for this token")
        self.breaker.record_success()
        return quote

    async def _get_swap_transaction(self, quote: Dict[str, Any], user_public_key: str) -> str:
        payload = {
            "quoteResponse": quote,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }
        try:
            async with self.session.post(
                f"{self.base_url}/swap", json=payload, timeout=aiohttp.ClientTimeout(total=10)
            ) as resp:
                if resp.status != 200:
                    error = await resp.text()
                    self.breaker.record_failure()
                    raise SwapException(f"Swap transaction failed: {error[:120]}")
                data = await resp.json()
        except aiohttp.ClientError as e:
            self.breaker.record_failure()
            raise SwapException(f"Swap request error: {e}") from e

        swap_tx = data.get("swapTransaction")
        if not swap_tx:
            raise SwapException("Failed to get swap transaction")
        return swap_tx

    async def _confirm_transaction(self, signature: str, poll_interval: float = 1.0) -> bool:
        sig_obj = Signature.from_string(signature)
        max_attempts = max(1, int(self.confirm_timeout / poll_interval))

        for attempt in range(max_attempts):
            try:
                result = await self.rpc.get_signature_statuses([sig_obj])
                status = result.value[0] if result.value else None
                if status:
                    if status.err:
                        logger.error(f"Transaction failed: {status.err}")
                        return False
                    conf_status = str(status.confirmation_status or "").lower()
                    if "confirmed" in conf_status or "finalized" in conf_status:
                        return True
            except Exception as e:
                logger.debug(f"Confirmation check attempt {attempt + 1} error: {e}")
            await asyncio.sleep(poll_interval)

        logger.warning(f"Transaction confirmation timeout after {self.confirm_timeout}s: {signature[:16]}...")
        return False


class PaperSource(TradeSource):
    """Simulated fills with latency and a configurable failure rate."""

    def __init__(
        self,
        name: str = "paper",
        latency: float = 0.2,
        failure_rate: float = 0.0,
        seed: Optional[int] = None,
        supports_sell: bool = True,
    ):
        self.name = name
        self.latency = latency
        self.failure_rate = failure_rate
        self.supports_sell = supports_sell
        self._rng = random.Random(seed)
        self.fills = []

    @classmethod
    def from_settings(cls, settings: Settings, name: str = "paper") -> "PaperSource":
        return cls(name=name, latency=settings.SIM_LATENCY_SEC, failure_rate=settings.SIM_FAILURE_RATE)

    async def buy(self, token_address, amount, credential, cancel_event):
        return await self._fill(Side.BUY, token_address, amount, cancel_event)

    async def sell(self, token_address, amount, credential, cancel_event):
        if not self.supports_sell:
            raise SourceNotSupported(f"sell not implemented in {self.name}")
        return await self._fill(Side.SELL, token_address, amount, cancel_event)

    async def _fill(self, side: Side, token_address: str, amount: float, cancel_event) -> TradeResult:
        self._check_cancel(cancel_event)
        if self.latency > 0 and cancel_event is None:
            await asyncio.sleep(self.latency)
        elif self.latency > 0:
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=self.latency)
            except asyncio.TimeoutError:
                pass
        self._check_cancel(cancel_event)

        if self._rng.random() < self.failure_rate:
            raise SwapException(f"Simulated failure on {self.name}")

        if not amount or amount <= 0:
            return TradeResult(tx_id="", source=self.name, side=side, amount_in=0.0, route_only=True)

        tx_id = f"paper-{uuid.uuid4().hex[:16]}"
        self.fills.append((side, token_address, amount))
        logger.info(f"PAPER {side.value.upper()} {token_address[:8]}... amount={amount:g} via {self.name}")
        return TradeResult(tx_id=tx_id, source=self.name, side=side, amount_in=amount, amount_out=amount)
