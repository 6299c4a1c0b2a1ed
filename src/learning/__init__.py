"""
Learning - adaptive phrase generation for the seed scanner

Components:
- BasicLearningModel: word frequency / position / pair statistics
- AdvancedLearningModel: N-gram walk, checksum patterns, pattern decay, entropy
- StrategyController: config, performance metrics, state persistence
- TrainingFeed: manually submitted training examples
- MemoryStore: persistence layer (JSON / SQLite / in-memory)

Usage:
    from src.learning import (
        get_strategy_controller,
        BasicLearningModel,
        Strategy,
    )

    controller = get_strategy_controller()
    state = controller.load_basic_state()

    model = BasicLearningModel(controller.config)
    phrase = model.generate(state, Strategy.ADAPTIVE, 12)

    model.learn(state, phrase, "ETH", 120.0)
    controller.save_basic_state(state)
"""

# Config
from .strategy_config import (
    Strategy,
    StrategyConfig,
    HybridWeights,
    AutoSwitchThresholds,
)

# Basic model
from .basic_model import (
    BasicLearningModel,
    BasicLearningState,
)

# Advanced model
from .advanced_model import (
    AdvancedLearningModel,
    AdvancedLearningState,
    AdvancedConfig,
    NGramStrategy,
)

# Memory Store
from .memory_store import (
    MemoryStore,
    StoreConfig,
    StorageBackend,
    get_memory_store,
)

# Controller
from .strategy_controller import (
    StrategyController,
    PerformanceMetrics,
    get_strategy_controller,
)

# Training
from .training_feed import (
    TrainingFeed,
    phrase_fingerprint,
)

__all__ = [
    # Config
    "Strategy",
    "StrategyConfig",
    "HybridWeights",
    "AutoSwitchThresholds",
    # Basic model
    "BasicLearningModel",
    "BasicLearningState",
    # Advanced model
    "AdvancedLearningModel",
    "AdvancedLearningState",
    "AdvancedConfig",
    "NGramStrategy",
    # Memory Store
    "MemoryStore",
    "StoreConfig",
    "StorageBackend",
    "get_memory_store",
    # Controller
    "StrategyController",
    "PerformanceMetrics",
    "get_strategy_controller",
    # Training
    "TrainingFeed",
    "phrase_fingerprint",
]
