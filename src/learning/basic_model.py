"""
Basic Learning Model

Accumulates three statistics from successful phrases:
- word_frequency:        token -> count
- position_preferences:  position -> token -> count
- word_pairs:            token -> next token -> count

and uses them to bias phrase generation (see Strategy).

The state is an explicit object: callers load it once per batch, pass it
into learn()/generate(), and persist it at batch end.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
import json

import numpy as np

from src.errors import StateCorruptionError, ValidationError
from src.learning.sampling import make_rng, uniform_word, weighted_choice
from src.learning.strategy_config import Strategy, StrategyConfig
from src.wallet.wordlist import WORDLIST, VALID_WORD_COUNTS, tokenize
from utils.logger import get_logger

logger = get_logger("BASIC_LEARNING")

CountMap = Dict[str, int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BasicLearningState:
    word_frequency: CountMap = field(default_factory=dict)
    position_preferences: Dict[int, CountMap] = field(default_factory=dict)
    word_pairs: Dict[str, CountMap] = field(default_factory=dict)
    total_successes: int = 0
    total_attempts: int = 0
    last_updated: datetime = field(default_factory=_utcnow)

    @property
    def is_empty(self) -> bool:
        return not (self.word_frequency or self.position_preferences or self.word_pairs)


def _increment(counts: CountMap, token: str, by: int = 1):
    if token in counts:
        counts[token] += by
    else:
        counts[token] = by


def validate_word_count(word_count: int) -> int:
    if word_count not in VALID_WORD_COUNTS:
        raise ValidationError(f"Word count must be 12 or 24 (got {word_count})")
    return word_count


# ============================
# Learning
# ============================

def learn(
    state: BasicLearningState,
    phrase: str,
    currency: str = "",
    usd_value: float = 0.0,
    config: Optional[StrategyConfig] = None
) -> BasicLearningState:
    """Record one successful phrase. Disabled learning types are skipped."""
    words = tokenize(phrase)
    if not words:
        raise ValidationError("Cannot learn from an empty phrase")

    learn_frequency = config.enable_frequency_learning if config else True
    learn_positional = config.enable_positional_learning if config else True
    learn_correlation = config.enable_correlation_learning if config else True

    if learn_frequency:
        for word in words:
            _increment(state.word_frequency, word)

    if learn_positional:
        for index, word in enumerate(words):
            if index not in state.position_preferences:
                state.position_preferences[index] = {}
            _increment(state.position_preferences[index], word)

    if learn_correlation:
        for first, second in zip(words, words[1:]):
            if first not in state.word_pairs:
                state.word_pairs[first] = {}
            _increment(state.word_pairs[first], second)

    state.total_successes += 1
    state.last_updated = _utcnow()

    logger.info(f"Learned from successful recovery: {len(words)} words, {currency} ${usd_value:.2f}")
    return state


def record_attempts(state: BasicLearningState, attempts: int) -> BasicLearningState:
    if attempts < 0:
        raise ValidationError("Attempt count cannot be negative")
    state.total_attempts += attempts
    state.last_updated = _utcnow()
    return state


def decay_counts(state: BasicLearningState, multiplier: float) -> int:
    """
    Scale every count by `multiplier`, truncating to int.
    Entries reaching 0 are pruned. Returns the number of pruned entries.
    """
    pruned = 0

    def _scale(counts: CountMap) -> int:
        removed = 0
        for token in list(counts):
            scaled = int(counts[token] * multiplier)
            if scaled <= 0:
                del counts[token]
                removed += 1
            else:
                counts[token] = scaled
        return removed

    pruned += _scale(state.word_frequency)
    for table in (state.position_preferences, state.word_pairs):
        for key in list(table):
            pruned += _scale(table[key])
            if not table[key]:
                del table[key]

    return pruned


# ============================
# Generation
# ============================

def resolve_strategy(
    state: BasicLearningState,
    strategy=Strategy.ADAPTIVE,
    config: Optional[StrategyConfig] = None
) -> Strategy:
    """Map ADAPTIVE to a concrete strategy from the success count; others pass through."""
    strategy = Strategy.parse(strategy)
    if strategy is not Strategy.ADAPTIVE:
        return strategy

    thresholds = (config or StrategyConfig()).auto_switch_thresholds
    if state.total_successes < thresholds.min_successes_for_frequency:
        return Strategy.RANDOM
    if state.total_successes < thresholds.min_successes_for_positional:
        return Strategy.FREQUENCY
    if state.total_successes < thresholds.min_successes_for_hybrid:
        return Strategy.POSITIONAL
    return Strategy.HYBRID


class BasicLearningModel:
    """
    Phrase generator over a BasicLearningState.

    Usage:
        model = BasicLearningModel()
        phrase = model.generate(state, "adaptive", 12)
    """

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        rng: Optional[np.random.Generator] = None,
        wordlist: Sequence[str] = WORDLIST
    ):
        self.config = config or StrategyConfig()
        self.rng = rng or make_rng()
        self.wordlist = wordlist

    def learn(self, state, phrase, currency="", usd_value=0.0):
        return learn(state, phrase, currency, usd_value, self.config)

    def resolve(self, state, strategy) -> Strategy:
        return resolve_strategy(state, strategy, self.config)

    def generate(self, state: BasicLearningState, strategy=Strategy.ADAPTIVE, word_count: int = 12) -> str:
        validate_word_count(word_count)
        concrete = self.resolve(state, strategy)

        if concrete is Strategy.FREQUENCY:
            words = self._frequency(state, word_count)
        elif concrete is Strategy.POSITIONAL:
            words = self._positional(state, word_count)
        elif concrete is Strategy.CORRELATED:
            words = self._correlated(state, word_count)
        elif concrete is Strategy.HYBRID:
            words = self._hybrid(state, word_count)
        else:
            words = self._random(word_count)

        return " ".join(words)

    def _uniform(self) -> str:
        return uniform_word(self.rng, self.wordlist)

    def _random(self, word_count: int) -> List[str]:
        return [self._uniform() for _ in range(word_count)]

    def _frequency_pool(self, state: BasicLearningState, word_count: int) -> CountMap:
        pool = dict(state.word_frequency)
        # Thin data: pad with every unlearned word at weight 1
        if sum(pool.values()) < word_count:
            for word in self.wordlist:
                if word not in pool:
                    pool[word] = 1
        return pool

    def _frequency(self, state, word_count):
        if not state.word_frequency:
            return self._random(word_count)
        pool = self._frequency_pool(state, word_count)
        return [weighted_choice(self.rng, pool) or self._uniform() for _ in range(word_count)]

    def _positional(self, state, word_count):
        return [
            weighted_choice(self.rng, state.position_preferences.get(position, {})) or self._uniform()
            for position in range(word_count)
        ]

    def _correlated(self, state, word_count):
        if not state.word_pairs:
            return self._random(word_count)

        starts = list(state.word_pairs)
        current = starts[int(self.rng.integers(len(starts)))]
        words = [current]
        while len(words) < word_count:
            current = weighted_choice(self.rng, state.word_pairs.get(current, {})) or self._uniform()
            words.append(current)
        return words

    def _hybrid(self, state, word_count):
        weights = self.config.hybrid_weights
        words: List[str] = []
        pool = self._frequency_pool(state, word_count) if state.word_frequency else {}

        for position in range(word_count):
            roll = self.rng.random()
            if roll < weights.positional:
                word = weighted_choice(self.rng, state.position_preferences.get(position, {}))
            elif roll < weights.positional + weights.correlation:
                previous = words[-1] if words else None
                word = weighted_choice(self.rng, state.word_pairs.get(previous, {})) if previous else None
            else:
                word = weighted_choice(self.rng, pool)
            words.append(word or self._uniform())

        return words


# ============================
# Stats
# ============================

def stats(state: BasicLearningState, config: Optional[StrategyConfig] = None) -> Dict:
    success_rate = (state.total_successes / state.total_attempts) * 100 if state.total_attempts > 0 else 0.0
    efficiency = state.total_successes / max(state.total_attempts, 1) if state.total_successes > 0 else 0.0
    return {
        "total_successes": state.total_successes,
        "total_attempts": state.total_attempts,
        "success_rate": success_rate,
        "learned_words": len(state.word_frequency),
        "learned_positions": len(state.position_preferences),
        "learned_pairs": sum(len(nexts) for nexts in state.word_pairs.values()),
        "recommended_strategy": resolve_strategy(state, Strategy.ADAPTIVE, config).value,
        "efficiency": efficiency,
        "last_updated": state.last_updated.isoformat(),
    }


# ============================
# Serialization
# ============================

def serialize_state(state: BasicLearningState) -> Dict:
    return {
        "word_frequency": dict(state.word_frequency),
        "position_preferences": {
            str(position): dict(counts) for position, counts in state.position_preferences.items()
        },
        "word_pairs": {word: dict(nexts) for word, nexts in state.word_pairs.items()},
        "total_successes": state.total_successes,
        "total_attempts": state.total_attempts,
        "last_updated": state.last_updated.isoformat(),
    }


def decode_counts(raw, label) -> CountMap:
    if not isinstance(raw, dict):
        raise StateCorruptionError(f"{label}: expected mapping, got {type(raw).__name__}")
    counts = {}
    for token, value in raw.items():
        count = int(value)
        if count < 0:
            raise StateCorruptionError(f"{label}[{token}]: negative count {count}")
        counts[str(token)] = count
    return counts


def parse_datetime(raw) -> datetime:
    value = datetime.fromisoformat(str(raw))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def deserialize_state(blob) -> BasicLearningState:
    """
    Inverse of serialize_state. Accepts the dict or its JSON text.
    Raises StateCorruptionError on anything it cannot decode.
    """
    try:
        data = json.loads(blob) if isinstance(blob, (str, bytes)) else blob
        if not isinstance(data, dict):
            raise StateCorruptionError(f"Basic state: expected object, got {type(data).__name__}")

        return BasicLearningState(
            word_frequency=decode_counts(data.get("word_frequency", {}), "word_frequency"),
            position_preferences={
                int(position): decode_counts(counts, f"position_preferences[{position}]")
                for position, counts in (data.get("position_preferences") or {}).items()
            },
            word_pairs={
                str(word): decode_counts(nexts, f"word_pairs[{word}]")
                for word, nexts in (data.get("word_pairs") or {}).items()
            },
            total_successes=int(data.get("total_successes", 0)),
            total_attempts=int(data.get("total_attempts", 0)),
            last_updated=parse_datetime(data["last_updated"]) if data.get("last_updated") else _utcnow(),
        )
    except StateCorruptionError:
        raise
    except (TypeError, ValueError, AttributeError) as e:
        raise StateCorruptionError(f"Basic state could not be decoded: {e}")
