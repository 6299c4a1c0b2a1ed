"""
Advanced Learning Model - N-gram phrase statistics

Learns from successful phrases:
- bigrams / trigrams / quadgrams: preceding 1/2/3-word window -> next word counts
- first / last word distributions
- checksum patterns: 11-word prefix -> 12th word counts (12-word phrases only)
- word length distribution and rolling average word length
- 3-word prefix patterns with age + decayed score, and their Shannon entropy
- bounded history of recent successes

Generation walks the N-gram tables from a weighted first word, backing off
quadgram -> trigram -> bigram -> uniform random, and draws the final word
from the checksum pattern (when the prefix matches) or the last-word
distribution.

Pattern decay:
    score *= decay_rate ** (days_old - min_pattern_age)

applied incrementally: each pattern remembers how many days of decay it has
already absorbed, so re-running apply_decay() without elapsed time or new
learning leaves the state unchanged.
"""

from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence
import json

import numpy as np

from src.errors import StateCorruptionError, ValidationError
from src.learning.basic_model import decode_counts, parse_datetime, validate_word_count
from src.learning.sampling import make_rng, shannon_entropy, uniform_word, weighted_choice
from src.wallet.wordlist import WORDLIST, tokenize
from utils.logger import get_logger

logger = get_logger("ADVANCED_LEARNING")

SECONDS_PER_DAY = 86400.0
CHECKSUM_PREFIX_LEN = 11
PATTERN_PREFIX_LEN = 3

Transitions = Dict[str, Dict[str, int]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NGramStrategy(Enum):
    """Highest N-gram order consulted during generation."""
    BIGRAM = "bigram"
    TRIGRAM = "trigram"
    QUADGRAM = "quadgram"
    ADAPTIVE = "adaptive"

    @property
    def max_order(self) -> int:
        return {"bigram": 2, "trigram": 3}.get(self.value, 4)

    @classmethod
    def parse(cls, value) -> "NGramStrategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown N-gram strategy '{value}'")


@dataclass
class AdvancedConfig:
    decay_rate: float = 0.95           # per-day multiplier once a pattern is old enough
    min_pattern_age: float = 7         # days before decay starts
    max_history_size: int = 100        # recent successes kept
    decay_floor: float = 0.5           # patterns decayed below this are dropped
    ngram_weight: float = 0.5
    checksum_weight: float = 0.3       # chance of using a matching checksum pattern for the last word

    def validate(self) -> "AdvancedConfig":
        """Persisted block only; a bad value means the blob is corrupt."""
        if not 0.0 < self.decay_rate <= 1.0:
            raise StateCorruptionError(f"Advanced config: decay_rate must be in (0, 1] (got {self.decay_rate})")
        if self.min_pattern_age < 0:
            raise StateCorruptionError(f"Advanced config: min_pattern_age must be >= 0 (got {self.min_pattern_age})")
        if self.max_history_size < 0:
            raise StateCorruptionError(f"Advanced config: max_history_size must be >= 0 (got {self.max_history_size})")
        if self.decay_floor < 0:
            raise StateCorruptionError(f"Advanced config: decay_floor must be >= 0 (got {self.decay_floor})")
        for name in ("ngram_weight", "checksum_weight"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise StateCorruptionError(f"Advanced config: {name} must be in [0, 1] (got {value})")
        return self

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "AdvancedConfig":
        known = {k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
        config = cls(**known)
        config.decay_rate = float(config.decay_rate)
        config.min_pattern_age = float(config.min_pattern_age)
        config.max_history_size = int(config.max_history_size)
        config.decay_floor = float(config.decay_floor)
        config.ngram_weight = float(config.ngram_weight)
        config.checksum_weight = float(config.checksum_weight)
        return config.validate()


@dataclass
class RecentSuccess:
    timestamp: datetime
    word_count: int
    words: List[str]
    currency: str = ""
    usd_value: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "word_count": self.word_count,
            "words": list(self.words),
            "currency": self.currency,
            "usd_value": self.usd_value,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RecentSuccess":
        return cls(
            timestamp=parse_datetime(data["timestamp"]),
            word_count=int(data["word_count"]),
            words=[str(w) for w in data["words"]],
            currency=str(data.get("currency", "")),
            usd_value=float(data.get("usd_value", 0.0)),
        )


@dataclass
class AdvancedLearningState:
    bigrams: Transitions = field(default_factory=dict)
    trigrams: Transitions = field(default_factory=dict)
    quadgrams: Transitions = field(default_factory=dict)

    first_word_frequency: Dict[str, int] = field(default_factory=dict)
    last_word_frequency: Dict[str, int] = field(default_factory=dict)
    checksum_patterns: Transitions = field(default_factory=dict)

    pattern_ages: Dict[str, datetime] = field(default_factory=dict)
    pattern_scores: Dict[str, float] = field(default_factory=dict)
    pattern_decay_applied: Dict[str, float] = field(default_factory=dict)

    word_length_distribution: Dict[int, int] = field(default_factory=dict)
    average_word_length: float = 0.0
    phrase_entropy: float = 0.0

    success_by_word_count: Dict[int, int] = field(default_factory=dict)
    recent_successes: Deque[RecentSuccess] = field(default_factory=lambda: deque(maxlen=100))

    total_successes: int = 0
    total_attempts: int = 0
    last_updated: datetime = field(default_factory=_utcnow)

    config: AdvancedConfig = field(default_factory=AdvancedConfig)

    def __post_init__(self):
        if self.recent_successes.maxlen != self.config.max_history_size:
            self.recent_successes = deque(self.recent_successes, maxlen=self.config.max_history_size)

    @property
    def is_populated(self) -> bool:
        return bool(self.bigrams)


def _bump(table: Transitions, key: str, word: str):
    if key not in table:
        table[key] = {}
    nexts = table[key]
    nexts[word] = nexts.get(word, 0) + 1


def update_entropy(state: AdvancedLearningState) -> float:
    state.phrase_entropy = shannon_entropy(state.pattern_scores.values())
    return state.phrase_entropy


# ============================
# Learning
# ============================

def learn_ngrams(state: AdvancedLearningState, words: Sequence[str]):
    for i in range(len(words) - 1):
        _bump(state.bigrams, words[i], words[i + 1])
    for i in range(len(words) - 2):
        _bump(state.trigrams, " ".join(words[i:i + 2]), words[i + 2])
    for i in range(len(words) - 3):
        _bump(state.quadgrams, " ".join(words[i:i + 3]), words[i + 3])


def _update_word_lengths(state: AdvancedLearningState, words: Sequence[str]):
    for word in words:
        state.word_length_distribution[len(word)] = state.word_length_distribution.get(len(word), 0) + 1

    phrase_mean = sum(len(w) for w in words) / len(words)
    # total_successes already counts this phrase
    n = max(state.total_successes, 1)
    state.average_word_length += (phrase_mean - state.average_word_length) / n


def learn_advanced(
    state: AdvancedLearningState,
    phrase: str,
    currency: str = "",
    usd_value: float = 0.0
) -> AdvancedLearningState:
    words = tokenize(phrase)
    if not words:
        raise ValidationError("Cannot learn from an empty phrase")

    now = _utcnow()
    word_count = len(words)

    state.total_successes += 1
    state.success_by_word_count[word_count] = state.success_by_word_count.get(word_count, 0) + 1

    learn_ngrams(state, words)

    state.first_word_frequency[words[0]] = state.first_word_frequency.get(words[0], 0) + 1
    state.last_word_frequency[words[-1]] = state.last_word_frequency.get(words[-1], 0) + 1

    if word_count == 12:
        _bump(state.checksum_patterns, " ".join(words[:CHECKSUM_PREFIX_LEN]), words[CHECKSUM_PREFIX_LEN])

    _update_word_lengths(state, words)

    pattern = " ".join(words[:PATTERN_PREFIX_LEN])
    state.pattern_ages[pattern] = now
    state.pattern_scores[pattern] = state.pattern_scores.get(pattern, 0.0) + 1.0
    state.pattern_decay_applied[pattern] = 0.0

    state.recent_successes.appendleft(RecentSuccess(
        timestamp=now,
        word_count=word_count,
        words=list(words),
        currency=currency,
        usd_value=float(usd_value),
    ))

    update_entropy(state)
    state.last_updated = now

    logger.info(f"N-grams updated from {word_count}-word phrase ({currency} ${usd_value:.2f})")
    return state


def record_attempts(state: AdvancedLearningState, attempts: int) -> AdvancedLearningState:
    if attempts < 0:
        raise ValidationError("Attempt count cannot be negative")
    state.total_attempts += attempts
    state.last_updated = _utcnow()
    return state


# ============================
# Decay
# ============================

def apply_decay(state: AdvancedLearningState, now: Optional[datetime] = None) -> Dict[str, int]:
    """Decay patterns older than min_pattern_age days; drop those under decay_floor."""
    now = now or _utcnow()
    cfg = state.config
    decayed = 0
    dropped = 0

    for pattern, seen_at in list(state.pattern_ages.items()):
        days_old = (now - seen_at).total_seconds() / SECONDS_PER_DAY
        if days_old <= cfg.min_pattern_age:
            continue

        target = days_old - cfg.min_pattern_age
        delta = target - state.pattern_decay_applied.get(pattern, 0.0)
        if delta <= 0:
            continue

        score = state.pattern_scores.get(pattern, 0.0) * (cfg.decay_rate ** delta)
        if score < cfg.decay_floor:
            state.pattern_scores.pop(pattern, None)
            state.pattern_ages.pop(pattern, None)
            state.pattern_decay_applied.pop(pattern, None)
            dropped += 1
        else:
            state.pattern_scores[pattern] = score
            state.pattern_decay_applied[pattern] = target
            decayed += 1

    if decayed or dropped:
        update_entropy(state)
        logger.info(f"Pattern decay: {decayed} decayed, {dropped} dropped")

    return {"decayed": decayed, "dropped": dropped}


# ============================
# Generation
# ============================

class AdvancedLearningModel:
    """
    Usage:
        model = AdvancedLearningModel()
        phrase = model.generate_with_ngrams(state, 12, "adaptive")
    """

    def __init__(self, rng: Optional[np.random.Generator] = None, wordlist: Sequence[str] = WORDLIST):
        self.rng = rng or make_rng()
        self.wordlist = wordlist

    def learn(self, state, phrase, currency="", usd_value=0.0):
        return learn_advanced(state, phrase, currency, usd_value)

    def _uniform(self) -> str:
        return uniform_word(self.rng, self.wordlist)

    def _next_word(self, state: AdvancedLearningState, words: List[str], max_order: int) -> Optional[str]:
        if max_order >= 4 and len(words) >= 3:
            word = weighted_choice(self.rng, state.quadgrams.get(" ".join(words[-3:]), {}))
            if word:
                return word
        if max_order >= 3 and len(words) >= 2:
            word = weighted_choice(self.rng, state.trigrams.get(" ".join(words[-2:]), {}))
            if word:
                return word
        return weighted_choice(self.rng, state.bigrams.get(words[-1], {}))

    def _final_word(self, state: AdvancedLearningState, words: List[str], word_count: int) -> str:
        if word_count == 12 and len(words) == CHECKSUM_PREFIX_LEN:
            successors = state.checksum_patterns.get(" ".join(words))
            if successors and self.rng.random() < state.config.checksum_weight:
                word = weighted_choice(self.rng, successors)
                if word:
                    return word
        return weighted_choice(self.rng, state.last_word_frequency) or self._uniform()

    def generate_with_ngrams(
        self,
        state: AdvancedLearningState,
        word_count: int = 12,
        strategy=NGramStrategy.ADAPTIVE
    ) -> str:
        validate_word_count(word_count)
        max_order = NGramStrategy.parse(strategy).max_order

        words = [weighted_choice(self.rng, state.first_word_frequency) or self._uniform()]
        while len(words) < word_count - 1:
            words.append(self._next_word(state, words, max_order) or self._uniform())
        words.append(self._final_word(state, words, word_count))

        return " ".join(words)


# ============================
# Stats
# ============================

def stats(state: AdvancedLearningState) -> Dict:
    attempts = state.total_attempts or 1
    scores = state.pattern_scores
    return {
        "total_successes": state.total_successes,
        "total_attempts": state.total_attempts,
        "success_rate": (state.total_successes / attempts) * 100,
        "learned_bigrams": len(state.bigrams),
        "learned_trigrams": len(state.trigrams),
        "learned_quadgrams": len(state.quadgrams),
        "first_word_variety": len(state.first_word_frequency),
        "last_word_variety": len(state.last_word_frequency),
        "active_patterns": len(scores),
        "average_pattern_score": (sum(scores.values()) / len(scores)) if scores else 0.0,
        "learned_checksums": len(state.checksum_patterns),
        "average_word_length": round(state.average_word_length, 2),
        "phrase_entropy": round(state.phrase_entropy, 2),
        "success_12_words": state.success_by_word_count.get(12, 0),
        "success_24_words": state.success_by_word_count.get(24, 0),
        "recent_success_count": len(state.recent_successes),
        "ngram_weight": state.config.ngram_weight,
        "checksum_weight": state.config.checksum_weight,
        "last_updated": state.last_updated.isoformat(),
    }


# ============================
# Serialization
# ============================

def _copy_transitions(table: Transitions) -> Dict:
    return {key: dict(nexts) for key, nexts in table.items()}


def serialize_state(state: AdvancedLearningState) -> Dict:
    return {
        "bigrams": _copy_transitions(state.bigrams),
        "trigrams": _copy_transitions(state.trigrams),
        "quadgrams": _copy_transitions(state.quadgrams),
        "first_word_frequency": dict(state.first_word_frequency),
        "last_word_frequency": dict(state.last_word_frequency),
        "checksum_patterns": _copy_transitions(state.checksum_patterns),
        "pattern_ages": {p: ts.isoformat() for p, ts in state.pattern_ages.items()},
        "pattern_scores": dict(state.pattern_scores),
        "pattern_decay_applied": dict(state.pattern_decay_applied),
        "word_length_distribution": {str(k): v for k, v in state.word_length_distribution.items()},
        "average_word_length": state.average_word_length,
        "success_by_word_count": {str(k): v for k, v in state.success_by_word_count.items()},
        "recent_successes": [s.to_dict() for s in state.recent_successes],
        "total_successes": state.total_successes,
        "total_attempts": state.total_attempts,
        "last_updated": state.last_updated.isoformat(),
        "config": asdict(state.config),
    }


def _decode_transitions(raw, label) -> Transitions:
    if not isinstance(raw, dict):
        raise StateCorruptionError(f"{label}: expected mapping")
    return {str(key): decode_counts(nexts, f"{label}[{key}]") for key, nexts in raw.items()}


def deserialize_state(blob) -> AdvancedLearningState:
    """Inverse of serialize_state; entropy is recomputed from pattern scores."""
    try:
        data = json.loads(blob) if isinstance(blob, (str, bytes)) else blob
        if not isinstance(data, dict):
            raise StateCorruptionError("Advanced state: expected object")

        config = AdvancedConfig.from_dict(data.get("config"))
        state = AdvancedLearningState(
            bigrams=_decode_transitions(data.get("bigrams", {}), "bigrams"),
            trigrams=_decode_transitions(data.get("trigrams", {}), "trigrams"),
            quadgrams=_decode_transitions(data.get("quadgrams", {}), "quadgrams"),
            first_word_frequency=decode_counts(data.get("first_word_frequency") or {}, "first_word_frequency"),
            last_word_frequency=decode_counts(data.get("last_word_frequency") or {}, "last_word_frequency"),
            checksum_patterns=_decode_transitions(data.get("checksum_patterns", {}), "checksum_patterns"),
            pattern_ages={str(p): parse_datetime(ts) for p, ts in (data.get("pattern_ages") or {}).items()},
            pattern_scores={str(p): float(s) for p, s in (data.get("pattern_scores") or {}).items()},
            pattern_decay_applied={
                str(p): float(d) for p, d in (data.get("pattern_decay_applied") or {}).items()
            },
            word_length_distribution={
                int(k): int(v) for k, v in (data.get("word_length_distribution") or {}).items()
            },
            average_word_length=float(data.get("average_word_length", 0.0)),
            success_by_word_count={int(k): int(v) for k, v in (data.get("success_by_word_count") or {}).items()},
            recent_successes=deque(
                (RecentSuccess.from_dict(s) for s in (data.get("recent_successes") or [])),
                maxlen=config.max_history_size,
            ),
            total_successes=int(data.get("total_successes", 0)),
            total_attempts=int(data.get("total_attempts", 0)),
            last_updated=parse_datetime(data["last_updated"]) if data.get("last_updated") else _utcnow(),
            config=config,
        )
    except StateCorruptionError:
        raise
    except (TypeError, ValueError, KeyError, AttributeError) as e:
        raise StateCorruptionError(f"Advanced state could not be decoded: {e}")

    if any(score < 0 for score in state.pattern_scores.values()):
        raise StateCorruptionError("Advanced state: negative pattern score")

    update_entropy(state)
    return state
