"""
Scan Orchestrator

Pipeline per candidate:
    generate phrase -> derive address per currency -> check balances (concurrently
    per currency, each through its limiter) -> collect hits

batch_scan() runs that loop `count` times. Generation source, in order:
1. advanced N-gram model, if enabled and it has learned bigrams
2. basic model with the resolved strategy
3. uniform random

Per-iteration faults are logged and counted; they never end the batch.

run_batch() is the full cycle: load states -> decay -> batch_scan ->
learn from hits -> record attempts -> track performance -> persist.
Hits are learned before the attempt counters move.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from config import DEFAULT_CURRENCIES, DEFAULT_WORD_COUNT, MAX_BATCH_COUNT, PROGRESS_LOG_EVERY
from src.errors import ValidationError
from src.learning import advanced_model, basic_model
from src.learning.advanced_model import AdvancedLearningModel, AdvancedLearningState, NGramStrategy
from src.learning.basic_model import BasicLearningModel, BasicLearningState, validate_word_count
from src.learning.sampling import make_rng
from src.learning.strategy_config import Strategy
from src.learning.strategy_controller import StrategyController, get_strategy_controller
from src.wallet.address_deriver import AddressDeriver
from src.wallet.balance_checker import BalanceChecker, BalanceResult
from utils.logger import get_logger

logger = get_logger("SCANNER")

NGRAM_LABEL = "ngram"

ProgressFn = Callable[[int, int, int], None]
AttemptFn = Callable[[str, bool, float], None]
StopFn = Callable[[], bool]


# ============================
# Data Classes
# ============================

@dataclass
class ScanOutcome:
    phrase: str
    results: List[BalanceResult] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return any(r.has_balance for r in self.results)

    @property
    def total_usd(self) -> float:
        return sum(r.balance_usd for r in self.results if r.has_balance)

    @property
    def hit_currencies(self) -> List[str]:
        return [r.currency for r in self.results if r.has_balance]

    def to_dict(self) -> Dict:
        return {
            "phrase": self.phrase,
            "found": self.found,
            "total_usd": round(self.total_usd, 2),
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class GenerationSource:
    """What batch_scan draws candidates from"""
    basic_state: Optional[BasicLearningState] = None
    strategy: Strategy = Strategy.ADAPTIVE
    advanced_state: Optional[AdvancedLearningState] = None
    use_advanced: bool = False
    ngram_strategy: NGramStrategy = NGramStrategy.ADAPTIVE


@dataclass
class BatchResult:
    scanned: int = 0
    found: int = 0
    found_list: List[ScanOutcome] = field(default_factory=list)
    strategy_used: str = Strategy.RANDOM.value
    elapsed_seconds: float = 0.0
    errors: int = 0
    stopped: bool = False

    @property
    def scanned_per_second(self) -> float:
        return self.scanned / self.elapsed_seconds if self.elapsed_seconds > 0 else 0.0

    def to_dict(self) -> Dict:
        return {
            "scanned": self.scanned,
            "found": self.found,
            "found_list": [o.to_dict() for o in self.found_list],
            "strategy_used": self.strategy_used,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "scanned_per_second": round(self.scanned_per_second, 2),
            "errors": self.errors,
            "stopped": self.stopped,
        }


# ============================
# Orchestrator
# ============================

class ScanOrchestrator:
    """
    Usage:
        orchestrator = ScanOrchestrator(BalanceChecker())
        result = await orchestrator.batch_scan(1000, 12, ["ETH", "BTC"], GenerationSource(state))
    """

    def __init__(
        self,
        checker: Optional[BalanceChecker] = None,
        deriver: Optional[AddressDeriver] = None,
        basic: Optional[BasicLearningModel] = None,
        advanced: Optional[AdvancedLearningModel] = None,
        seed: Optional[int] = None
    ):
        rng = make_rng(seed)
        self.checker = checker or BalanceChecker()
        self.deriver = deriver or AddressDeriver()
        self.basic = basic or BasicLearningModel(rng=rng)
        self.advanced = advanced or AdvancedLearningModel(rng=rng)

    async def _check_one(self, phrase: str, currency: str, checker: BalanceChecker) -> BalanceResult:
        address = ""
        try:
            address = self.deriver.derive(phrase, currency)
            return await checker.check_balance(address, currency)
        except Exception as e:
            logger.error(f"[{currency}] check failed for {address or 'underivable address'}: {e}")
            return BalanceResult.zero(address, currency.upper())

    async def scan_one(
        self,
        phrase: str,
        currencies: Sequence[str],
        checker: Optional[BalanceChecker] = None
    ) -> ScanOutcome:
        """Check every currency for one phrase. A failing currency becomes a zero entry."""
        checker = checker or self.checker
        results = await asyncio.gather(*(self._check_one(phrase, c, checker) for c in currencies))
        return ScanOutcome(phrase=phrase, results=list(results))

    def _generator(self, source: GenerationSource, word_count: int):
        """(generate_fn, strategy label) for the whole batch"""
        advanced = source.advanced_state
        if source.use_advanced and advanced is not None and advanced.is_populated:
            return (
                lambda: self.advanced.generate_with_ngrams(advanced, word_count, source.ngram_strategy),
                NGRAM_LABEL,
            )

        if source.basic_state is not None:
            state = source.basic_state
            concrete = self.basic.resolve(state, source.strategy)
            return lambda: self.basic.generate(state, concrete, word_count), concrete.value

        empty = BasicLearningState()
        return lambda: self.basic.generate(empty, Strategy.RANDOM, word_count), Strategy.RANDOM.value

    async def batch_scan(
        self,
        count: int,
        word_count: int = DEFAULT_WORD_COUNT,
        currencies: Sequence[str] = DEFAULT_CURRENCIES,
        source: Optional[GenerationSource] = None,
        on_progress: Optional[ProgressFn] = None,
        should_stop: Optional[StopFn] = None,
        on_attempt: Optional[AttemptFn] = None
    ) -> BatchResult:
        if not isinstance(count, int) or count < 0 or count > MAX_BATCH_COUNT:
            raise ValidationError(f"Count must be between 0 and {MAX_BATCH_COUNT} (got {count})")
        validate_word_count(word_count)

        currencies = [c.upper() for c in currencies]
        unsupported = [c for c in currencies if c not in self.checker.currencies]
        if not currencies or unsupported:
            raise ValidationError(f"Unsupported or missing currencies: {unsupported or currencies}")

        generate, label = self._generator(source or GenerationSource(), word_count)
        result = BatchResult(strategy_used=label)
        started = time.perf_counter()

        logger.info(f"Batch started: {count} x {word_count} words, {','.join(currencies)}, strategy={label}")

        for i in range(count):
            if should_stop is not None and should_stop():
                result.stopped = True
                logger.info(f"Batch stopped at {i}/{count}")
                break

            try:
                t0 = time.perf_counter()
                phrase = generate()
                outcome = await self.scan_one(phrase, currencies)
                latency_ms = (time.perf_counter() - t0) * 1000

                result.scanned += 1
                if outcome.found:
                    result.found += 1
                    result.found_list.append(outcome)
                    logger.info(f"Found balance: {', '.join(outcome.hit_currencies)} ${outcome.total_usd:.2f}")

                if on_attempt is not None:
                    on_attempt(label, outcome.found, latency_ms)
                if on_progress is not None:
                    on_progress(i + 1, count, result.found)
            except Exception as e:
                result.errors += 1
                logger.error(f"Iteration {i + 1}/{count} failed: {e}")

            if PROGRESS_LOG_EVERY and (i + 1) % PROGRESS_LOG_EVERY == 0:
                logger.info(f"Progress {i + 1}/{count} ({result.found} found)")

        result.elapsed_seconds = time.perf_counter() - started
        logger.info(
            f"Batch done: {result.scanned} scanned, {result.found} found, "
            f"{result.errors} errors, {result.scanned_per_second:.1f}/s"
        )
        return result


# ============================
# Full cycle
# ============================

def _learn_hits(state, advanced, found_list: List[ScanOutcome], model: BasicLearningModel) -> int:
    """Learn once per distinct phrase, USD summed across its hits"""
    hits: Dict[str, ScanOutcome] = {}
    usd: Dict[str, float] = {}
    for outcome in found_list:
        hits.setdefault(outcome.phrase, outcome)
        usd[outcome.phrase] = usd.get(outcome.phrase, 0.0) + outcome.total_usd

    for phrase, outcome in hits.items():
        currency = ",".join(outcome.hit_currencies)
        model.learn(state, phrase, currency, usd[phrase])
        advanced_model.learn_advanced(advanced, phrase, currency, usd[phrase])

    return len(hits)


async def run_batch(
    count: int,
    word_count: int = DEFAULT_WORD_COUNT,
    currencies: Sequence[str] = DEFAULT_CURRENCIES,
    strategy=Strategy.ADAPTIVE,
    use_advanced: bool = False,
    ngram_strategy=NGramStrategy.ADAPTIVE,
    controller: Optional[StrategyController] = None,
    checker: Optional[BalanceChecker] = None,
    on_progress: Optional[ProgressFn] = None,
    should_stop: Optional[StopFn] = None,
    seed: Optional[int] = None
) -> BatchResult:
    controller = controller or get_strategy_controller()
    config = controller.config

    state = controller.load_basic_state()
    advanced = controller.load_advanced_state()
    controller.apply_pattern_decay(state)
    advanced_model.apply_decay(advanced)

    rng = make_rng(seed)
    model = BasicLearningModel(config, rng=rng)
    orchestrator = ScanOrchestrator(checker, basic=model, advanced=AdvancedLearningModel(rng=rng))

    source = GenerationSource(
        basic_state=state,
        strategy=Strategy.parse(strategy),
        advanced_state=advanced,
        use_advanced=use_advanced,
        ngram_strategy=NGramStrategy.parse(ngram_strategy),
    )

    def _track(label, success, latency_ms):
        controller.track_attempt(label, success, latency_ms, persist=False)

    result = await orchestrator.batch_scan(
        count, word_count, currencies, source,
        on_progress=on_progress, should_stop=should_stop, on_attempt=_track,
    )

    learned = _learn_hits(state, advanced, result.found_list, model)
    basic_model.record_attempts(state, result.scanned)
    advanced_model.record_attempts(advanced, result.scanned)

    controller.save_basic_state(state)
    controller.save_advanced_state(advanced)
    controller.save_metrics()

    if learned:
        logger.info(f"Learned from {learned} new successful phrase(s)")
    return result
