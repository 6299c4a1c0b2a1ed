"""
Strategy Controller - Central control for learning behavior

Owns StrategyConfig and PerformanceMetrics. Every read/write of the
persisted config, metrics and learning states goes through here:

- config:   load (lazy, cached), save, learning rate, learning flags, hybrid weights
- metrics:  per-strategy attempts / success rate / latency, recent attempts log,
            best / worst strategy, improvement over random, confidence
- states:   basic / advanced load + save, corrupt blobs quarantined
- lifecycle: export / import snapshot, resets
"""

from copy import deepcopy
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from src.errors import StateCorruptionError, ValidationError
from src.learning import advanced_model, basic_model
from src.learning.advanced_model import AdvancedLearningState
from src.learning.basic_model import BasicLearningState, parse_datetime
from src.learning.memory_store import MemoryStore, get_memory_store
from src.learning.strategy_config import Strategy, StrategyConfig
from utils.logger import get_logger

logger = get_logger("STRATEGY_CONTROLLER")

RANDOM_BASELINE = Strategy.RANDOM.value
MIN_ATTEMPTS_FOR_RANKING = 10
CONFIDENCE_SAMPLE_SIZE = 1000

# Health thresholds
MIN_SUCCESSES = 10
MIN_LEARNED_WORDS = 50
STAGNANT_IMPROVEMENT = 0.1
STAGNANT_AFTER_ATTEMPTS = 1000
FULL_DATA_QUALITY_WORDS = 200
FULL_PERFORMANCE_IMPROVEMENT = 0.5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================
# Performance metrics
# ============================

@dataclass
class StrategyPerformance:
    attempts: int = 0
    successes: int = 0
    success_rate: float = 0.0
    avg_time_ms: float = 0.0


@dataclass
class AttemptRecord:
    timestamp: datetime
    strategy: str
    success: bool
    time_ms: float

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "strategy": self.strategy,
            "success": self.success,
            "time_ms": self.time_ms,
        }


@dataclass
class PerformanceMetrics:
    strategy_performance: Dict[str, StrategyPerformance] = field(default_factory=dict)
    recent_attempts: List[AttemptRecord] = field(default_factory=list)
    best_strategy: str = RANDOM_BASELINE
    worst_strategy: str = RANDOM_BASELINE
    improvement_rate: float = 0.0   # relative gain of the best strategy over random
    confidence: float = 0.0         # grows with total sample size, capped at 1.0

    @property
    def total_attempts(self) -> int:
        return sum(p.attempts for p in self.strategy_performance.values())

    def to_dict(self) -> Dict:
        return {
            "strategy_performance": {s: asdict(p) for s, p in self.strategy_performance.items()},
            "recent_attempts": [a.to_dict() for a in self.recent_attempts],
            "best_strategy": self.best_strategy,
            "worst_strategy": self.worst_strategy,
            "improvement_rate": self.improvement_rate,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PerformanceMetrics":
        try:
            return cls(
                strategy_performance={
                    str(s): StrategyPerformance(
                        attempts=int(p.get("attempts", 0)),
                        successes=int(p.get("successes", 0)),
                        success_rate=float(p.get("success_rate", 0.0)),
                        avg_time_ms=float(p.get("avg_time_ms", 0.0)),
                    )
                    for s, p in (data.get("strategy_performance") or {}).items()
                },
                recent_attempts=[
                    AttemptRecord(
                        timestamp=parse_datetime(a["timestamp"]),
                        strategy=str(a["strategy"]),
                        success=bool(a["success"]),
                        time_ms=float(a.get("time_ms", 0.0)),
                    )
                    for a in (data.get("recent_attempts") or [])
                ],
                best_strategy=str(data.get("best_strategy") or RANDOM_BASELINE),
                worst_strategy=str(data.get("worst_strategy") or RANDOM_BASELINE),
                improvement_rate=float(data.get("improvement_rate", 0.0)),
                confidence=float(data.get("confidence", 0.0)),
            )
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise StateCorruptionError(f"Metrics could not be decoded: {e}", key=MemoryStore.METRICS)


def improvement_rate(metrics: PerformanceMetrics) -> float:
    """(best non-random rate - random rate) / random rate; 0 without a positive random baseline."""
    baseline = metrics.strategy_performance.get(RANDOM_BASELINE)
    if baseline is None or baseline.attempts == 0 or baseline.success_rate <= 0:
        return 0.0

    best_rate = baseline.success_rate
    for strategy, perf in metrics.strategy_performance.items():
        if strategy != RANDOM_BASELINE and perf.success_rate > best_rate:
            best_rate = perf.success_rate

    return (best_rate - baseline.success_rate) / baseline.success_rate


def _update_rankings(metrics: PerformanceMetrics):
    best, worst = RANDOM_BASELINE, RANDOM_BASELINE
    best_rate, worst_rate = -1.0, float("inf")

    for strategy, perf in metrics.strategy_performance.items():
        if perf.attempts < MIN_ATTEMPTS_FOR_RANKING:
            continue
        if perf.success_rate > best_rate:
            best_rate, best = perf.success_rate, strategy
        if perf.success_rate < worst_rate:
            worst_rate, worst = perf.success_rate, strategy

    metrics.best_strategy = best
    metrics.worst_strategy = worst
    metrics.improvement_rate = improvement_rate(metrics)
    metrics.confidence = min(metrics.total_attempts / CONFIDENCE_SAMPLE_SIZE, 1.0)


# ============================
# Controller
# ============================

class StrategyController:
    """
    Usage:
        controller = StrategyController()

        controller.set_learning_rate(0.2)
        controller.set_hybrid_weights(positional=0.5, correlation=0.2)

        state = controller.load_basic_state()
        controller.apply_pattern_decay(state)
        ...
        controller.save_basic_state(state)
    """

    def __init__(self, store: Optional[MemoryStore] = None, config: Optional[StrategyConfig] = None):
        self.store = store or get_memory_store()
        self._config: Optional[StrategyConfig] = config.validate() if config else None
        self._metrics: Optional[PerformanceMetrics] = None

    # ----------------------------
    # Config
    # ----------------------------

    @property
    def config(self) -> StrategyConfig:
        if self._config is None:
            self.load_config()
        return self._config

    def load_config(self) -> StrategyConfig:
        """Read the persisted config; defaults when absent or unusable."""
        config = StrategyConfig()
        blob = self._load_blob(MemoryStore.CONFIG)
        if blob is not None:
            try:
                config = StrategyConfig.from_dict(blob)
            except ValidationError as e:
                logger.error(f"Stored config rejected ({e}), using defaults")
                self.store.quarantine(MemoryStore.CONFIG, blob)
        else:
            logger.debug("No stored config, using defaults")

        self._config = config
        return config

    def save_config(self, updates: Optional[Dict] = None) -> StrategyConfig:
        """Merge `updates` into the current config, validate, persist. Raises ValidationError."""
        merged = self.config.to_dict()
        merged.update(updates or {})
        config = StrategyConfig.from_dict(merged)

        self._config = config
        self.store.save_json(MemoryStore.CONFIG, config.to_dict())
        logger.info("Configuration saved")
        return config

    def get_config(self) -> StrategyConfig:
        return deepcopy(self.config)

    def set_learning_rate(self, rate: float) -> StrategyConfig:
        if isinstance(rate, bool) or not isinstance(rate, (int, float)) or not 0.0 <= rate <= 1.0:
            raise ValidationError(f"Learning rate must be between 0 and 1 (got {rate})")
        return self.save_config({"learning_rate": float(rate)})

    def configure_learning(
        self,
        frequency: Optional[bool] = None,
        positional: Optional[bool] = None,
        correlation: Optional[bool] = None
    ) -> StrategyConfig:
        current = self.config
        return self.save_config({
            "enable_frequency_learning":
                current.enable_frequency_learning if frequency is None else bool(frequency),
            "enable_positional_learning":
                current.enable_positional_learning if positional is None else bool(positional),
            "enable_correlation_learning":
                current.enable_correlation_learning if correlation is None else bool(correlation),
        })

    def set_hybrid_weights(
        self,
        frequency: Optional[float] = None,
        positional: Optional[float] = None,
        correlation: Optional[float] = None
    ) -> StrategyConfig:
        weights = asdict(self.config.hybrid_weights)
        for name, value in (("frequency", frequency), ("positional", positional), ("correlation", correlation)):
            if value is not None:
                weights[name] = value
        return self.save_config({"hybrid_weights": weights})

    # ----------------------------
    # Decay
    # ----------------------------

    def apply_pattern_decay(self, state: BasicLearningState, now: Optional[datetime] = None) -> BasicLearningState:
        """
        Scale basic counts by decay_factor ** (days_since_update - max_pattern_age)
        once the state has gone max_pattern_age days without an update.
        """
        config = self.config
        if config.decay_factor >= 1.0:
            return state

        now = now or _utcnow()
        days = (now - state.last_updated).total_seconds() / 86400.0
        if days < config.max_pattern_age:
            return state

        multiplier = config.decay_factor ** (days - config.max_pattern_age)
        pruned = basic_model.decay_counts(state, multiplier)
        # Restart the clock so the next call does not decay the same period again
        state.last_updated = now

        logger.info(f"Applied decay ({multiplier:.3f}x) for {days:.1f} days, pruned {pruned} entries")
        return state

    # ----------------------------
    # Metrics
    # ----------------------------

    def _load_metrics(self) -> PerformanceMetrics:
        blob = self._load_blob(MemoryStore.METRICS)
        if blob is None:
            return PerformanceMetrics()
        try:
            if not isinstance(blob, dict):
                raise StateCorruptionError("Metrics: expected object", key=MemoryStore.METRICS)
            return PerformanceMetrics.from_dict(blob)
        except StateCorruptionError as e:
            logger.error(f"{e}, starting new metrics")
            self.store.quarantine(MemoryStore.METRICS, blob)
            return PerformanceMetrics()

    def get_metrics(self) -> PerformanceMetrics:
        if self._metrics is None:
            self._metrics = self._load_metrics()
        return self._metrics

    def save_metrics(self) -> bool:
        if self._metrics is None:
            return True
        return self.store.save_json(MemoryStore.METRICS, self._metrics.to_dict())

    def track_attempt(
        self,
        strategy: Union[Strategy, str],
        success: bool,
        latency_ms: float,
        persist: bool = True
    ):
        if not self.config.track_performance:
            return

        name = strategy.value if isinstance(strategy, Strategy) else str(strategy)
        metrics = self.get_metrics()

        perf = metrics.strategy_performance.get(name)
        if perf is None:
            perf = metrics.strategy_performance[name] = StrategyPerformance()

        perf.attempts += 1
        if success:
            perf.successes += 1
        perf.success_rate = perf.successes / perf.attempts
        perf.avg_time_ms += (latency_ms - perf.avg_time_ms) / perf.attempts

        metrics.recent_attempts.append(AttemptRecord(_utcnow(), name, bool(success), float(latency_ms)))
        overflow = len(metrics.recent_attempts) - self.config.performance_window
        if overflow > 0:
            del metrics.recent_attempts[:overflow]

        _update_rankings(metrics)

        if persist:
            self.save_metrics()

    def calculate_improvement_rate(self) -> float:
        return improvement_rate(self.get_metrics())

    def recommend_strategy(self) -> str:
        """Best-measured strategy, or 'adaptive' until metrics reach min_confidence."""
        metrics = self.get_metrics()
        if metrics.confidence < self.config.min_confidence:
            return Strategy.ADAPTIVE.value
        return metrics.best_strategy or Strategy.ADAPTIVE.value

    # ----------------------------
    # Learning states
    # ----------------------------

    def _load_blob(self, key: str):
        try:
            return self.store.load_json(key)
        except StateCorruptionError as e:
            logger.error(f"Stored {key} unreadable: {e}")
            if e.raw is not None:
                self.store.quarantine(key, e.raw)
            return None

    def _load_state(self, key, decode, fresh):
        blob = self._load_blob(key)
        if blob is None:
            return fresh()
        try:
            return decode(blob)
        except StateCorruptionError as e:
            logger.error(f"{e}; starting fresh, original kept under {key}.corrupt")
            self.store.quarantine(key, blob)
            return fresh()

    def load_basic_state(self) -> BasicLearningState:
        return self._load_state(MemoryStore.BASIC_STATE, basic_model.deserialize_state, BasicLearningState)

    def save_basic_state(self, state: BasicLearningState) -> bool:
        return self.store.save_json(MemoryStore.BASIC_STATE, basic_model.serialize_state(state))

    def load_advanced_state(self) -> AdvancedLearningState:
        return self._load_state(
            MemoryStore.ADVANCED_STATE, advanced_model.deserialize_state, AdvancedLearningState
        )

    def save_advanced_state(self, state: AdvancedLearningState) -> bool:
        return self.store.save_json(MemoryStore.ADVANCED_STATE, advanced_model.serialize_state(state))

    # ----------------------------
    # Health
    # ----------------------------

    def get_health_status(self, state: Optional[BasicLearningState] = None) -> Dict:
        state = state if state is not None else self.load_basic_state()
        stats = basic_model.stats(state, self.config)
        improvement = self.calculate_improvement_rate()

        issues = []
        recommendations = []

        if stats["total_successes"] < MIN_SUCCESSES:
            issues.append(f"Insufficient learning data (< {MIN_SUCCESSES} successes)")
            recommendations.append("Run more scans to gather learning data")

        if stats["learned_words"] < MIN_LEARNED_WORDS:
            recommendations.append("More data needed to learn word patterns")

        if improvement < STAGNANT_IMPROVEMENT and stats["total_attempts"] > STAGNANT_AFTER_ATTEMPTS:
            issues.append("Learning not showing significant improvement over random")
            recommendations.append("Consider adjusting learning rate or strategy weights")

        data_quality = min(stats["learned_words"] / FULL_DATA_QUALITY_WORDS, 1.0)
        performance_score = max(0.0, min(improvement / FULL_PERFORMANCE_IMPROVEMENT, 1.0))

        return {
            "healthy": not issues,
            "issues": issues,
            "recommendations": recommendations,
            "stats": {
                "total_learned": stats["learned_words"] + stats["learned_pairs"],
                "data_quality": data_quality,
                "performance_score": performance_score,
            },
        }

    # ----------------------------
    # Export / import / reset
    # ----------------------------

    def export_state(self) -> Dict:
        return {
            "state": basic_model.serialize_state(self.load_basic_state()),
            "advanced_state": advanced_model.serialize_state(self.load_advanced_state()),
            "config": self.config.to_dict(),
            "metrics": self.get_metrics().to_dict(),
            "exported_at": _utcnow().isoformat(),
        }

    def import_state(self, data: Dict):
        """
        Replace basic state, config and metrics with the snapshot.
        Everything is decoded first; a bad snapshot raises ValidationError
        and leaves the stored data untouched.
        """
        if not isinstance(data, dict) or "state" not in data or "config" not in data:
            raise ValidationError("Snapshot must contain 'state' and 'config'")

        try:
            state = basic_model.deserialize_state(data["state"])
            advanced = (
                advanced_model.deserialize_state(data["advanced_state"])
                if data.get("advanced_state") is not None else None
            )
            metrics = (
                PerformanceMetrics.from_dict(data["metrics"])
                if data.get("metrics") is not None else PerformanceMetrics()
            )
        except StateCorruptionError as e:
            raise ValidationError(f"Snapshot rejected: {e}")

        config = StrategyConfig.from_dict(data["config"])

        self.save_basic_state(state)
        if advanced is not None:
            self.save_advanced_state(advanced)

        self._config = config
        self.store.save_json(MemoryStore.CONFIG, config.to_dict())

        self._metrics = metrics
        self.save_metrics()

        logger.info("State imported successfully")

    def reset_state(self):
        self.store.delete(MemoryStore.BASIC_STATE)
        self.store.delete(MemoryStore.ADVANCED_STATE)
        logger.info("Learning state reset")

    def reset_config(self):
        self.store.delete(MemoryStore.CONFIG)
        self._config = StrategyConfig()
        logger.info("Configuration reset to defaults")

    def reset_metrics(self):
        self.store.delete(MemoryStore.METRICS)
        self._metrics = None
        logger.info("Performance metrics reset")

    def reset_all(self):
        self.reset_state()
        self.reset_config()
        self.reset_metrics()
        logger.info("All learning data reset")


# Singleton instance
_controller: Optional[StrategyController] = None


def get_strategy_controller(store: Optional[MemoryStore] = None) -> StrategyController:
    """Get singleton StrategyController instance."""
    global _controller
    if _controller is None:
        _controller = StrategyController(store)
    return _controller
