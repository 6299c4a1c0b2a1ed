"""
Strategy configuration and generation strategies.

StrategyConfig is owned by StrategyController; the learning models only
read it (hybrid weights, auto-switch thresholds, learning-type flags).
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Optional

from src.errors import ValidationError

WEIGHT_TOLERANCE = 0.01


class Strategy(Enum):
    """How the next candidate phrase is generated."""
    RANDOM = "random"           # uniform baseline
    FREQUENCY = "frequency"     # learned word frequencies
    POSITIONAL = "positional"   # per-position word frequencies
    CORRELATED = "correlated"   # order-1 Markov chain over word pairs
    HYBRID = "hybrid"           # per-position mix of the three above
    ADAPTIVE = "adaptive"       # resolves to one of the above from data volume

    @classmethod
    def parse(cls, value) -> "Strategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            names = ", ".join(s.value for s in cls)
            raise ValidationError(f"Unknown strategy '{value}' (expected one of: {names})")


@dataclass
class HybridWeights:
    frequency: float = 0.3
    positional: float = 0.4
    correlation: float = 0.3

    def total(self) -> float:
        return self.frequency + self.positional + self.correlation

    def validate(self):
        for name, value in asdict(self).items():
            if value < 0:
                raise ValidationError(f"Hybrid weight '{name}' must be >= 0 (got {value})")
        if abs(self.total() - 1.0) > WEIGHT_TOLERANCE:
            raise ValidationError(f"Hybrid weights must sum to 1.0 (got {self.total():.4f})")


@dataclass
class AutoSwitchThresholds:
    """Total successes at which adaptive escalates to the next strategy"""
    min_successes_for_frequency: int = 10
    min_successes_for_positional: int = 50
    min_successes_for_hybrid: int = 100

    def validate(self):
        if not (0 <= self.min_successes_for_frequency
                <= self.min_successes_for_positional
                <= self.min_successes_for_hybrid):
            raise ValidationError("Auto-switch thresholds must be non-negative and non-decreasing")


@dataclass
class StrategyConfig:
    learning_rate: float = 0.1
    decay_factor: float = 0.95
    min_confidence: float = 0.1
    max_pattern_age: float = 30             # days before counts start decaying

    enable_frequency_learning: bool = True
    enable_positional_learning: bool = True
    enable_correlation_learning: bool = True

    hybrid_weights: HybridWeights = field(default_factory=HybridWeights)
    auto_switch_thresholds: AutoSwitchThresholds = field(default_factory=AutoSwitchThresholds)

    track_performance: bool = True
    performance_window: int = 100

    def validate(self) -> "StrategyConfig":
        if not 0.0 <= self.learning_rate <= 1.0:
            raise ValidationError(f"Learning rate must be between 0 and 1 (got {self.learning_rate})")
        if not 0.0 <= self.decay_factor <= 1.0:
            raise ValidationError(f"Decay factor must be between 0 and 1 (got {self.decay_factor})")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValidationError(f"Min confidence must be between 0 and 1 (got {self.min_confidence})")
        if self.max_pattern_age < 0:
            raise ValidationError("Max pattern age must be >= 0")
        if self.performance_window < 1:
            raise ValidationError("Performance window must be >= 1")
        self.hybrid_weights.validate()
        self.auto_switch_thresholds.validate()
        return self

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "StrategyConfig":
        """Missing keys take defaults. Raises ValidationError on bad values."""
        data = dict(data or {})
        try:
            weights = HybridWeights(**{
                k: float(v) for k, v in (data.pop("hybrid_weights", None) or {}).items()
                if k in HybridWeights.__dataclass_fields__
            })
            thresholds = AutoSwitchThresholds(**{
                k: int(v) for k, v in (data.pop("auto_switch_thresholds", None) or {}).items()
                if k in AutoSwitchThresholds.__dataclass_fields__
            })
            known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
            config = cls(hybrid_weights=weights, auto_switch_thresholds=thresholds, **known)
            config.learning_rate = float(config.learning_rate)
            config.decay_factor = float(config.decay_factor)
            config.min_confidence = float(config.min_confidence)
            config.max_pattern_age = float(config.max_pattern_age)
            config.performance_window = int(config.performance_window)
        except (TypeError, ValueError) as e:
            if isinstance(e, ValidationError):
                raise
            raise ValidationError(f"Invalid strategy config: {e}")
        return config.validate()
