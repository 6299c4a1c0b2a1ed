"""
TESTS - Strategy Controller
===========================

Config validation, pattern decay, performance metrics, health,
export / import / reset, corrupt-state recovery.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta

import pytest

from src.errors import StateCorruptionError, ValidationError
from src.learning import advanced_model, basic_model
from src.learning.basic_model import BasicLearningState
from src.learning.memory_store import MemoryStore
from src.learning.strategy_config import StrategyConfig
from src.learning.strategy_controller import PerformanceMetrics, StrategyController
from tests.mock_data import PHRASE_12, PHRASE_12_B, make_controller, make_store


# ============================
# Config
# ============================

@pytest.mark.parametrize("rate", [0.0, 0.25, 0.5, 1.0, 1])
def test_valid_learning_rates(rate):
    controller = make_controller()
    controller.set_learning_rate(rate)
    assert controller.get_config().learning_rate == rate
    assert controller.store.load_json(MemoryStore.CONFIG)["learning_rate"] == rate


@pytest.mark.parametrize("rate", [-0.01, 1.01, 5, float("nan"), "0.5", True])
def test_invalid_learning_rates_leave_config_unchanged(rate):
    controller = make_controller()
    controller.set_learning_rate(0.3)

    with pytest.raises(ValidationError):
        controller.set_learning_rate(rate)

    assert controller.get_config().learning_rate == 0.3
    assert controller.store.load_json(MemoryStore.CONFIG)["learning_rate"] == 0.3


@pytest.mark.parametrize("update,expected", [
    ({"positional": 0.5, "correlation": 0.2}, (0.3, 0.5, 0.2)),
    ({"frequency": 0.2, "positional": 0.5}, (0.2, 0.5, 0.3)),
    ({"frequency": 0.305}, (0.305, 0.4, 0.3)),
    ({"frequency": 1.0, "positional": 0.0, "correlation": 0.0}, (1.0, 0.0, 0.0)),
])
def test_hybrid_weights_merge(update, expected):
    controller = make_controller()
    controller.set_hybrid_weights(**update)

    weights = controller.get_config().hybrid_weights
    assert (weights.frequency, weights.positional, weights.correlation) == expected


@pytest.mark.parametrize("update", [
    {"frequency": 0.5},
    {"positional": 0.1, "correlation": 0.1},
    {"frequency": 1.2, "positional": -0.2, "correlation": 0.0},
])
def test_bad_hybrid_weights_leave_prior_weights(update):
    controller = make_controller()
    before = controller.get_config().hybrid_weights

    with pytest.raises(ValidationError):
        controller.set_hybrid_weights(**update)

    assert controller.get_config().hybrid_weights == before


def test_configure_learning_keeps_unspecified_flags():
    controller = make_controller()
    controller.configure_learning(positional=False)
    controller.configure_learning(correlation=False)

    config = controller.get_config()
    assert config.enable_frequency_learning is True
    assert config.enable_positional_learning is False
    assert config.enable_correlation_learning is False


def test_config_loaded_lazily_and_cached():
    store = make_store()
    store.save_json(MemoryStore.CONFIG, {"learning_rate": 0.7})

    controller = StrategyController(store)
    assert controller.config.learning_rate == 0.7

    store.save_json(MemoryStore.CONFIG, {"learning_rate": 0.2})
    assert controller.config.learning_rate == 0.7
    assert controller.load_config().learning_rate == 0.2


def test_invalid_stored_config_falls_back_to_defaults():
    store = make_store()
    store.save_json(MemoryStore.CONFIG, {"learning_rate": 9})

    controller = StrategyController(store)
    assert controller.config == StrategyConfig()
    assert store.load_json(f"{MemoryStore.CONFIG}.corrupt")["blob"] == {"learning_rate": 9}


def test_get_config_returns_copy():
    controller = make_controller()
    controller.get_config().hybrid_weights.frequency = 0.9
    assert controller.config.hybrid_weights.frequency == 0.3


# ============================
# Basic pattern decay
# ============================

def _state_with_counts():
    state = BasicLearningState()
    for _ in range(10):
        basic_model.learn(state, PHRASE_12)
    return state


def test_no_decay_before_max_age():
    controller = make_controller()
    state = _state_with_counts()
    controller.apply_pattern_decay(state, now=state.last_updated + timedelta(days=29))
    assert state.word_frequency["abandon"] == 10


def test_decay_after_max_age():
    controller = make_controller()
    state = _state_with_counts()
    now = state.last_updated + timedelta(days=40)

    controller.apply_pattern_decay(state, now=now)

    # 10 * 0.95 ** 10 = 5.98 -> 5
    assert state.word_frequency["abandon"] == 5
    assert state.position_preferences[0]["abandon"] == 5
    assert state.word_pairs["abandon"]["ability"] == 5
    assert state.last_updated == now

    controller.apply_pattern_decay(state, now=now)
    assert state.word_frequency["abandon"] == 5


def test_decay_factor_one_disables_decay():
    controller = StrategyController(make_store(), StrategyConfig(decay_factor=1.0))
    state = _state_with_counts()
    controller.apply_pattern_decay(state, now=state.last_updated + timedelta(days=400))
    assert state.word_frequency["abandon"] == 10


# ============================
# Performance metrics
# ============================

def _track(controller, strategy, attempts, successes):
    for i in range(attempts):
        controller.track_attempt(strategy, i < successes, 10.0, persist=False)


def test_track_attempt_updates_strategy_metrics():
    controller = make_controller()
    controller.track_attempt("frequency", True, 10.0)
    controller.track_attempt("frequency", False, 30.0)

    perf = controller.get_metrics().strategy_performance["frequency"]
    assert perf.attempts == 2
    assert perf.successes == 1
    assert perf.success_rate == 0.5
    assert perf.avg_time_ms == pytest.approx(20.0)
    assert controller.store.load_json(MemoryStore.METRICS) is not None


def test_recent_attempts_bounded_by_window():
    controller = StrategyController(make_store(), StrategyConfig(performance_window=5))
    _track(controller, "random", 12, 0)

    metrics = controller.get_metrics()
    assert len(metrics.recent_attempts) == 5
    assert metrics.strategy_performance["random"].attempts == 12


def test_best_worst_need_ten_attempts():
    controller = make_controller()
    _track(controller, "random", 20, 1)
    _track(controller, "hybrid", 9, 9)
    _track(controller, "positional", 20, 4)

    metrics = controller.get_metrics()
    assert metrics.best_strategy == "positional"
    assert metrics.worst_strategy == "random"


def test_improvement_rate_against_random_baseline():
    controller = make_controller()
    _track(controller, "random", 100, 1)
    _track(controller, "positional", 100, 3)

    assert controller.calculate_improvement_rate() == pytest.approx(2.0)
    assert controller.get_metrics().confidence == pytest.approx(0.2)


def test_improvement_rate_zero_without_baseline():
    controller = make_controller()
    _track(controller, "positional", 50, 5)
    assert controller.calculate_improvement_rate() == 0.0


def test_recommend_strategy_waits_for_confidence():
    controller = make_controller()
    _track(controller, "random", 40, 0)
    _track(controller, "frequency", 40, 4)
    assert controller.recommend_strategy() == "adaptive"

    _track(controller, "frequency", 40, 4)
    assert controller.get_metrics().confidence >= 0.1
    assert controller.recommend_strategy() == "frequency"


def test_tracking_disabled():
    controller = StrategyController(make_store(), StrategyConfig(track_performance=False))
    controller.track_attempt("random", True, 1.0)
    assert controller.get_metrics().strategy_performance == {}


def test_metrics_round_trip():
    controller = make_controller()
    _track(controller, "random", 15, 2)
    controller.save_metrics()

    reloaded = StrategyController(controller.store).get_metrics()
    assert reloaded.to_dict() == controller.get_metrics().to_dict()


# ============================
# Health
# ============================

def test_health_flags_low_data():
    controller = make_controller()
    health = controller.get_health_status(BasicLearningState())

    assert health["healthy"] is False
    assert any("Insufficient" in issue for issue in health["issues"])
    assert len(health["recommendations"]) == 2
    assert health["stats"]["data_quality"] == 0.0
    assert 0.0 <= health["stats"]["performance_score"] <= 1.0


def test_health_flags_stagnation():
    controller = make_controller()
    state = BasicLearningState(total_successes=20, total_attempts=5000)
    health = controller.get_health_status(state)
    assert any("improvement" in issue for issue in health["issues"])


def test_health_ok_with_data():
    controller = make_controller()
    state = BasicLearningState(
        word_frequency={f"w{i}": 1 for i in range(300)},
        total_successes=20,
        total_attempts=500,
    )
    health = controller.get_health_status(state)
    assert health["healthy"] is True
    assert health["stats"]["data_quality"] == 1.0


# ============================
# States: load / save / corruption
# ============================

def test_missing_states_start_fresh():
    controller = make_controller()
    assert controller.load_basic_state().is_empty
    assert not controller.load_advanced_state().is_populated


def test_states_round_trip_through_store():
    controller = make_controller()
    state = basic_model.learn(BasicLearningState(), PHRASE_12)
    advanced = controller.load_advanced_state()
    advanced_model.learn_advanced(advanced, PHRASE_12)

    controller.save_basic_state(state)
    controller.save_advanced_state(advanced)

    assert controller.load_basic_state().word_frequency == state.word_frequency
    assert controller.load_advanced_state().bigrams == advanced.bigrams


def test_corrupt_state_quarantined_not_deleted():
    store = make_store()
    bad = {"word_frequency": {"abandon": "lots"}}
    store.save_json(MemoryStore.BASIC_STATE, bad)

    state = StrategyController(store).load_basic_state()

    assert state.is_empty
    assert store.load_json(MemoryStore.BASIC_STATE) == bad
    assert store.load_json(f"{MemoryStore.BASIC_STATE}.corrupt")["blob"] == bad


def test_corrupt_metrics_start_new():
    store = make_store()
    store.save_json(MemoryStore.METRICS, {"recent_attempts": [{"strategy": "random"}]})

    metrics = StrategyController(store).get_metrics()
    assert metrics.strategy_performance == {}
    assert store.load_json(f"{MemoryStore.METRICS}.corrupt") is not None


# ============================
# Export / import / reset
# ============================

def test_export_import_replaces_not_merges():
    source = make_controller()
    source.save_basic_state(basic_model.learn(BasicLearningState(), PHRASE_12))
    source.set_learning_rate(0.42)
    _track(source, "random", 3, 1)
    snapshot = source.export_state()

    target = make_controller()
    target.save_basic_state(basic_model.learn(BasicLearningState(), PHRASE_12_B))
    target.set_hybrid_weights(frequency=0.5, positional=0.3, correlation=0.2)
    _track(target, "hybrid", 5, 0)
    target.save_metrics()

    target.import_state(snapshot)

    state = target.load_basic_state()
    assert "zoo" not in state.word_frequency
    assert state.word_frequency["abandon"] == 1
    assert target.get_config().learning_rate == 0.42
    assert target.get_config().hybrid_weights.frequency == 0.3
    assert set(target.get_metrics().strategy_performance) == {"random"}
    assert set(StrategyController(target.store).get_metrics().strategy_performance) == {"random"}


def test_import_without_metrics_resets_them():
    controller = make_controller()
    _track(controller, "random", 3, 0)
    controller.save_metrics()

    snapshot = make_controller().export_state()
    del snapshot["metrics"]
    controller.import_state(snapshot)

    assert controller.get_metrics().strategy_performance == {}


@pytest.mark.parametrize("snapshot", [
    None,
    {"config": {}},
    {"state": {"word_frequency": {"abandon": -1}}, "config": {}},
    {"state": {}, "config": {"learning_rate": 3}},
    {"state": {}, "config": {}, "metrics": {"recent_attempts": [{}]}},
])
def test_bad_snapshot_changes_nothing(snapshot):
    controller = make_controller()
    controller.save_basic_state(basic_model.learn(BasicLearningState(), PHRASE_12))
    controller.set_learning_rate(0.3)

    with pytest.raises(ValidationError):
        controller.import_state(snapshot)

    assert controller.load_basic_state().word_frequency["abandon"] == 1
    assert controller.get_config().learning_rate == 0.3


def test_reset_all():
    controller = make_controller()
    controller.save_basic_state(basic_model.learn(BasicLearningState(), PHRASE_12))
    controller.set_learning_rate(0.9)
    _track(controller, "random", 5, 1)
    controller.save_metrics()

    controller.reset_all()

    assert controller.load_basic_state().is_empty
    assert controller.get_config() == StrategyConfig()
    assert controller.get_metrics().strategy_performance == {}
    for key in (MemoryStore.BASIC_STATE, MemoryStore.CONFIG, MemoryStore.METRICS):
        assert controller.store.load_json(key) is None


def test_resets_are_independent():
    controller = make_controller()
    controller.save_basic_state(basic_model.learn(BasicLearningState(), PHRASE_12))
    controller.set_learning_rate(0.9)

    controller.reset_config()

    assert controller.get_config().learning_rate == 0.1
    assert not controller.load_basic_state().is_empty


def test_metrics_from_dict_rejects_garbage():
    with pytest.raises(StateCorruptionError):
        PerformanceMetrics.from_dict({"strategy_performance": {"random": {"attempts": "many"}}})
