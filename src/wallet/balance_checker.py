"""
Balance Checker

Queries one upstream per currency, each behind its own RateLimiter:
- ETH: Etherscan (balance + nonce)
- BTC: blockchain.info rawaddr
- SOL: Solana JSON-RPC getBalance

Transport failures are retried MAX_RETRIES times with exponential backoff
(1s, 2s, ...). When retries are exhausted the result is a zero balance:
a failed check never aborts a batch.

USD values come from CoinGecko, cached for PRICE_CACHE_TTL seconds, with a
hardcoded fallback price per currency.

Simulation mode (USE_REAL_API off) swaps every upstream for
SimulatedBalanceSource.

Usage:
    checker = BalanceChecker(use_real_api=True, api_key="...")
    result = await checker.check_balance("0xabc...", "ETH")
    if result.has_balance:
        ...
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from config import (
    ETHERSCAN_API_KEY,
    ETHERSCAN_URL,
    BLOCKCHAIN_INFO_URL,
    SOLANA_RPC_URL,
    COINGECKO_PRICE_URL,
    USE_REAL_API,
    REQUESTS_PER_SECOND,
    SIMULATED_REQUESTS_PER_SECOND,
    MAX_RETRIES,
    BACKOFF_BASE_SECONDS,
    FALLBACK_PRICES_USD,
    SIMULATED_HIT_PROBABILITY,
    SIMULATED_DELAY_SECONDS,
)
from src.errors import TransportError, ValidationError
from src.wallet.rate_limiter import RateLimiter
from utils.api_guard import safe_get, safe_post
from utils.cache import prices_cache
from utils.logger import get_logger

logger = get_logger("BALANCE_CHECKER")

# Minor units per whole coin
UNIT_SCALE = {
    "ETH": 10 ** 18,   # wei
    "BTC": 10 ** 8,    # satoshi
    "SOL": 10 ** 9,    # lamports
}

COINGECKO_IDS = {
    "ETH": "ethereum",
    "BTC": "bitcoin",
    "SOL": "solana",
}


# ============================
# Data Classes
# ============================

@dataclass
class BalanceResult:
    """Outcome of one balance check"""
    address: str
    currency: str
    balance: float = 0.0        # whole coins
    balance_usd: float = 0.0
    tx_count: int = 0
    has_balance: bool = False

    @classmethod
    def zero(cls, address: str, currency: str) -> "BalanceResult":
        return cls(address=address, currency=currency)

    def to_dict(self) -> Dict:
        return {
            "address": self.address,
            "currency": self.currency,
            "balance": f"{self.balance:.8f}",
            "balance_usd": f"{self.balance_usd:.2f}",
            "tx_count": self.tx_count,
            "has_balance": self.has_balance,
        }


# ============================
# Balance Sources
# ============================

class BalanceSource:
    """query(address, api_key) -> (final_balance_minor_units, tx_count)"""

    name = "base"

    async def query(self, address: str, api_key: Optional[str] = None) -> Tuple[int, int]:
        raise NotImplementedError


class EtherscanSource(BalanceSource):
    name = "etherscan"

    def __init__(self, url: str = ETHERSCAN_URL):
        self.url = url

    async def query(self, address, api_key=None):
        key = api_key or ETHERSCAN_API_KEY
        data = await asyncio.to_thread(safe_get, self.url, params={
            "module": "account",
            "action": "balance",
            "address": address,
            "tag": "latest",
            "apikey": key,
        })
        if not isinstance(data, dict):
            raise TransportError(f"Etherscan malformed reply: {type(data).__name__}", source=self.name)
        if str(data.get("status")) != "1":
            raise TransportError(f"Etherscan error: {data.get('message')} {data.get('result')}", source=self.name)

        try:
            balance_wei = int(data["result"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Etherscan malformed balance: {e}", source=self.name)

        nonce = await asyncio.to_thread(safe_get, self.url, params={
            "module": "proxy",
            "action": "eth_getTransactionCount",
            "address": address,
            "tag": "latest",
            "apikey": key,
        })
        raw = nonce.get("result") if isinstance(nonce, dict) else None
        try:
            tx_count = int(raw, 16) if isinstance(raw, str) and raw.startswith("0x") else 0
        except ValueError:
            tx_count = 0

        return balance_wei, tx_count


class BlockchainInfoSource(BalanceSource):
    name = "blockchain.info"

    def __init__(self, url: str = BLOCKCHAIN_INFO_URL):
        self.url = url.rstrip("/")

    async def query(self, address, api_key=None):
        data = await asyncio.to_thread(safe_get, f"{self.url}/{address}", params={"limit": 0})
        try:
            return int(data["final_balance"]), int(data.get("n_tx", 0))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise TransportError(f"blockchain.info malformed reply: {e}", source=self.name)


class SolanaRPCSource(BalanceSource):
    name = "solana-rpc"

    def __init__(self, url: str = SOLANA_RPC_URL):
        self.url = url

    async def query(self, address, api_key=None):
        data = await asyncio.to_thread(safe_post, self.url, json={
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getBalance",
            "params": [address],
        })
        if not isinstance(data, dict):
            raise TransportError(f"Solana RPC malformed reply: {type(data).__name__}", source=self.name)
        if "error" in data:
            raise TransportError(f"Solana RPC error: {data['error']}", source=self.name)
        try:
            lamports = int(data["result"]["value"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Solana RPC malformed reply: {e}", source=self.name)
        # getBalance carries no activity count
        return lamports, 0


class SimulatedBalanceSource(BalanceSource):
    """
    Offline stand-in. A hit happens with probability `hit_probability`;
    hits carry a small random balance and tx count.
    """

    name = "simulated"

    # Upper bound of a simulated hit, in whole coins
    MAX_HIT = {"ETH": 0.1, "BTC": 0.01, "SOL": 5.0}

    def __init__(
        self,
        currency: str,
        hit_probability: float = SIMULATED_HIT_PROBABILITY,
        delay_seconds: float = SIMULATED_DELAY_SECONDS,
        rng: Optional[random.Random] = None
    ):
        self.currency = currency
        self.hit_probability = hit_probability
        self.delay_seconds = delay_seconds
        self._rng = rng or random.Random()

    async def query(self, address, api_key=None):
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        if self._rng.random() >= self.hit_probability:
            return 0, 0

        coins = self._rng.random() * self.MAX_HIT.get(self.currency, 0.01)
        minor = max(int(coins * UNIT_SCALE[self.currency]), 1)
        return minor, self._rng.randint(1, 10)


def default_sources(use_real_api: bool) -> Dict[str, BalanceSource]:
    if use_real_api:
        return {
            "ETH": EtherscanSource(),
            "BTC": BlockchainInfoSource(),
            "SOL": SolanaRPCSource(),
        }
    return {c: SimulatedBalanceSource(c) for c in UNIT_SCALE}


# ============================
# Price Source
# ============================

class PriceSource:
    """current_price(currency) -> USD per whole coin"""

    def __init__(self, url: str = COINGECKO_PRICE_URL, fallback: Optional[Dict[str, float]] = None):
        self.url = url
        self.fallback = dict(fallback or FALLBACK_PRICES_USD)

    def fetch_prices(self) -> Dict[str, float]:
        """All supported prices in one call. Raises TransportError."""
        data = safe_get(self.url, params={
            "ids": ",".join(COINGECKO_IDS.values()),
            "vs_currencies": "usd",
        })
        prices = {}
        try:
            for currency, coin_id in COINGECKO_IDS.items():
                usd = (data.get(coin_id) or {}).get("usd")
                if usd:
                    prices[currency] = float(usd)
        except (AttributeError, TypeError, ValueError) as e:
            raise TransportError(f"Price service malformed reply: {e}", source="coingecko")
        return prices

    async def current_price(self, currency: str) -> float:
        cached = prices_cache.get(currency)
        if cached is not None:
            return cached

        try:
            prices = await asyncio.to_thread(self.fetch_prices)
        except TransportError as e:
            logger.warning(f"Price lookup failed, using fallback for {currency}: {e}")
            prices = {}

        for c, usd in prices.items():
            prices_cache.set(c, usd)

        return prices.get(currency, self.fallback.get(currency, 0.0))


class StaticPriceSource(PriceSource):
    """Fixed prices, no network (simulation mode and tests)."""

    def __init__(self, prices: Optional[Dict[str, float]] = None):
        super().__init__(fallback=prices)

    def fetch_prices(self) -> Dict[str, float]:
        return dict(self.fallback)

    async def current_price(self, currency: str) -> float:
        return self.fallback.get(currency, 0.0)


# ============================
# Balance Checker
# ============================

class BalanceChecker:

    def __init__(
        self,
        use_real_api: bool = USE_REAL_API,
        api_key: Optional[str] = None,
        sources: Optional[Dict[str, BalanceSource]] = None,
        price_source: Optional[PriceSource] = None,
        requests_per_second: Optional[Dict[str, float]] = None,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = BACKOFF_BASE_SECONDS
    ):
        self.use_real_api = use_real_api
        self.api_key = api_key
        self.sources = sources or default_sources(use_real_api)
        if price_source is None:
            price_source = PriceSource() if use_real_api else StaticPriceSource()
        self.price_source = price_source
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base

        rps = requests_per_second or (REQUESTS_PER_SECOND if use_real_api else {})
        self.limiters: Dict[str, RateLimiter] = {
            currency: RateLimiter(rps.get(currency, SIMULATED_REQUESTS_PER_SECOND), name=currency)
            for currency in self.sources
        }

        self.stats = {"checks": 0, "retries": 0, "failures": 0, "hits": 0}

        mode = "REAL" if use_real_api else "SIMULATED"
        logger.info(f"BalanceChecker ready ({mode}): {', '.join(self.sources)}")

    @property
    def currencies(self):
        return tuple(self.sources)

    async def check_balance(self, address: str, currency: str, api_key: Optional[str] = None) -> BalanceResult:
        """Never raises for transport problems; unknown currency is a ValidationError."""
        currency = currency.upper()
        source = self.sources.get(currency)
        if source is None:
            raise ValidationError(f"No balance source for {currency}")

        limiter = self.limiters[currency]
        key = api_key or self.api_key
        self.stats["checks"] += 1

        last_error = None
        for attempt in range(self.max_retries):
            try:
                minor, tx_count = await limiter.submit(lambda: source.query(address, key))
                return await self._build_result(address, currency, minor, tx_count)
            except TransportError as e:
                last_error = e
                logger.warning(
                    f"[Retry {attempt + 1}/{self.max_retries}] {currency} balance check failed for {address}: {e}"
                )
                if attempt < self.max_retries - 1:
                    self.stats["retries"] += 1
                    await asyncio.sleep(self.backoff_base * (2 ** attempt))

        self.stats["failures"] += 1
        logger.error(f"[{currency}] All retries failed for {address}: {last_error}")
        return BalanceResult.zero(address, currency)

    async def _build_result(self, address, currency, minor, tx_count) -> BalanceResult:
        balance = minor / UNIT_SCALE[currency]
        if balance <= 0:
            return BalanceResult(address=address, currency=currency, tx_count=tx_count)

        self.stats["hits"] += 1
        price = await self.price_source.current_price(currency)
        return BalanceResult(
            address=address,
            currency=currency,
            balance=balance,
            balance_usd=balance * price,
            tx_count=tx_count,
            has_balance=True,
        )

    async def health_check(self) -> Dict[str, bool]:
        """One raw query per upstream plus the price service, no retries"""
        probes = {
            "ETH": "0x0000000000000000000000000000000000000000",
            "BTC": "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa",
            "SOL": "11111111111111111111111111111111",
        }
        results = {}
        for currency, source in self.sources.items():
            try:
                await self.limiters[currency].submit(
                    lambda s=source, c=currency: s.query(probes.get(c, ""), self.api_key)
                )
                results[source.name] = True
            except TransportError as e:
                logger.warning(f"Health check failed for {source.name}: {e}")
                results[source.name] = False

        try:
            await asyncio.to_thread(self.price_source.fetch_prices)
            results["prices"] = True
        except TransportError as e:
            logger.warning(f"Health check failed for prices: {e}")
            results["prices"] = False

        return results
