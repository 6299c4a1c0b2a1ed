"""
TESTS - Balance Checker
=======================

Retry / backoff / zero-result downgrade, USD conversion, upstream parsing.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
import random
from unittest.mock import AsyncMock, patch

import pytest

from src.errors import TransportError, ValidationError
from src.wallet.balance_checker import (
    BalanceResult,
    BlockchainInfoSource,
    EtherscanSource,
    PriceSource,
    SimulatedBalanceSource,
    SolanaRPCSource,
)
from utils.cache import prices_cache
from tests.mock_data import ExplodingSource, FailingSource, FixedSource, make_checker

ADDRESS = "0x" + "ab" * 20


# ============================
# Retry / downgrade
# ============================

def test_unreachable_endpoint_returns_zero_result():
    source = FailingSource()
    checker = make_checker({"ETH": source})

    result = asyncio.run(checker.check_balance(ADDRESS, "ETH"))

    assert isinstance(result, BalanceResult)
    assert result.has_balance is False
    assert result.balance == 0.0
    assert source.calls == 3
    assert checker.stats["retries"] == 2
    assert checker.stats["failures"] == 1


def test_backoff_doubles_between_attempts():
    checker = make_checker({"ETH": FailingSource()}, backoff_base=1.0)

    with patch("src.wallet.balance_checker.asyncio.sleep", new=AsyncMock()) as sleep:
        asyncio.run(checker.check_balance(ADDRESS, "ETH"))

    # Ignore the limiter's own sub-millisecond pacing sleeps
    backoffs = [c.args[0] for c in sleep.await_args_list if c.args and c.args[0] >= 0.5]
    assert backoffs == [1.0, 2.0]


def test_recovers_after_transient_failure():
    source = FailingSource(failures=1)
    checker = make_checker({"ETH": source})

    result = asyncio.run(checker.check_balance(ADDRESS, "ETH"))

    assert result.has_balance is False
    assert source.calls == 2
    assert checker.stats["failures"] == 0


def test_source_bug_is_not_retried():
    # A source raising outside TransportError is a bug, not an upstream fault;
    # ScanOrchestrator._check_one downgrades it per currency.
    source = ExplodingSource()
    checker = make_checker({"ETH": source})
    with pytest.raises(RuntimeError):
        asyncio.run(checker.check_balance(ADDRESS, "ETH"))
    assert checker.stats["retries"] == 0


@pytest.mark.parametrize("reply", [
    [],
    "rate limited",
    {"ethereum": {"usd": "n/a"}},
    {"ethereum": ["2000"]},
])
def test_malformed_price_reply_keeps_hit_at_fallback_price(reply):
    prices_cache.clear()
    checker = make_checker({"ETH": FixedSource(minor=10 ** 18)})
    checker.price_source = PriceSource(url="http://prices.invalid", fallback={"ETH": 2000.0})

    with patch("src.wallet.balance_checker.safe_get", return_value=reply):
        result = asyncio.run(checker.check_balance(ADDRESS, "ETH"))

    assert result.has_balance is True
    assert result.balance_usd == pytest.approx(2000.0)
    assert checker.stats["failures"] == 0
    prices_cache.clear()


def test_malformed_price_reply_is_transport_error():
    source = PriceSource(url="http://prices.invalid")
    with patch("src.wallet.balance_checker.safe_get", return_value={"bitcoin": {"usd": "n/a"}}):
        with pytest.raises(TransportError):
            source.fetch_prices()


def test_unknown_currency_is_validation_error():
    checker = make_checker({"ETH": FixedSource()})
    with pytest.raises(ValidationError):
        asyncio.run(checker.check_balance(ADDRESS, "DOGE"))


# ============================
# Conversion
# ============================

def test_positive_balance_converted_to_usd():
    checker = make_checker({"BTC": FixedSource(minor=50_000_000, tx_count=4)})

    result = asyncio.run(checker.check_balance("1abc", "btc"))

    assert result.currency == "BTC"
    assert result.has_balance is True
    assert result.balance == pytest.approx(0.5)
    assert result.balance_usd == pytest.approx(22500.0)
    assert result.tx_count == 4
    assert result.to_dict()["balance_usd"] == "22500.00"
    assert checker.stats["hits"] == 1


def test_zero_balance_keeps_tx_count():
    checker = make_checker({"ETH": FixedSource(minor=0, tx_count=7)})
    result = asyncio.run(checker.check_balance(ADDRESS, "ETH"))
    assert result.has_balance is False
    assert result.tx_count == 7


def test_price_falls_back_when_service_down():
    prices_cache.clear()
    source = PriceSource(url="http://prices.invalid", fallback={"ETH": 1234.0})

    with patch("src.wallet.balance_checker.safe_get", side_effect=TransportError("down")):
        assert asyncio.run(source.current_price("ETH")) == 1234.0


def test_price_is_cached():
    prices_cache.clear()
    source = PriceSource(url="http://prices.invalid")
    reply = {"ethereum": {"usd": 3100.0}, "bitcoin": {"usd": 60000.0}, "solana": {"usd": 150.0}}

    with patch("src.wallet.balance_checker.safe_get", return_value=reply) as fetch:
        assert asyncio.run(source.current_price("ETH")) == 3100.0
        assert asyncio.run(source.current_price("BTC")) == 60000.0

    assert fetch.call_count == 1
    prices_cache.clear()


# ============================
# Upstream parsing
# ============================

def test_etherscan_balance_and_nonce():
    replies = [
        {"status": "1", "message": "OK", "result": "2000000000000000000"},
        {"jsonrpc": "2.0", "id": 1, "result": "0x1a"},
    ]
    with patch("src.wallet.balance_checker.safe_get", side_effect=replies):
        minor, tx_count = asyncio.run(EtherscanSource("http://eth.invalid").query(ADDRESS, "key"))

    assert minor == 2 * 10 ** 18
    assert tx_count == 26


def test_etherscan_api_error_is_transport_error():
    reply = {"status": "0", "message": "NOTOK", "result": "Invalid API Key"}
    with patch("src.wallet.balance_checker.safe_get", return_value=reply):
        with pytest.raises(TransportError):
            asyncio.run(EtherscanSource("http://eth.invalid").query(ADDRESS, "bad"))


@pytest.mark.parametrize("reply", [[], "Invalid API Key", None])
def test_etherscan_non_object_reply_is_transport_error(reply):
    with patch("src.wallet.balance_checker.safe_get", return_value=reply):
        with pytest.raises(TransportError):
            asyncio.run(EtherscanSource("http://eth.invalid").query(ADDRESS, "key"))


def test_etherscan_odd_nonce_reply_counts_zero_txs():
    replies = [{"status": "1", "message": "OK", "result": "5"}, ["0x1"]]
    with patch("src.wallet.balance_checker.safe_get", side_effect=replies):
        assert asyncio.run(EtherscanSource("http://eth.invalid").query(ADDRESS, "key")) == (5, 0)


def test_blockchain_info_non_object_reply_is_transport_error():
    with patch("src.wallet.balance_checker.safe_get", return_value=[]):
        with pytest.raises(TransportError):
            asyncio.run(BlockchainInfoSource("http://btc.invalid").query("1abc"))


def test_blockchain_info_parsing():
    reply = {"final_balance": 1234, "n_tx": 3}
    with patch("src.wallet.balance_checker.safe_get", return_value=reply) as fetch:
        assert asyncio.run(BlockchainInfoSource("http://btc.invalid/").query("1abc")) == (1234, 3)

    assert fetch.call_args.args[0] == "http://btc.invalid/1abc"


def test_solana_rpc_error_is_transport_error():
    with patch("src.wallet.balance_checker.safe_post", return_value={"error": {"code": -32602}}):
        with pytest.raises(TransportError):
            asyncio.run(SolanaRPCSource("http://sol.invalid").query("abc"))

    with patch("src.wallet.balance_checker.safe_post", return_value={"result": {"value": 5}}):
        assert asyncio.run(SolanaRPCSource("http://sol.invalid").query("abc")) == (5, 0)


# ============================
# Simulation / health
# ============================

def test_simulated_source_hit_and_miss():
    always = SimulatedBalanceSource("ETH", hit_probability=1.0, rng=random.Random(1))
    never = SimulatedBalanceSource("ETH", hit_probability=0.0, rng=random.Random(1))

    minor, tx_count = asyncio.run(always.query(ADDRESS))
    assert minor > 0 and tx_count >= 1
    assert asyncio.run(never.query(ADDRESS)) == (0, 0)


def test_health_check_reports_each_upstream():
    checker = make_checker({"ETH": FixedSource(), "BTC": FailingSource()})
    report = asyncio.run(checker.health_check())
    assert report == {"fixed": True, "failing": False, "prices": True}
