"""
TESTS - Basic Learning Model
============================
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
from datetime import datetime, timezone

import pytest

from src.errors import StateCorruptionError, ValidationError
from src.learning import basic_model
from src.learning.basic_model import BasicLearningModel, BasicLearningState
from src.learning.sampling import make_rng
from src.learning.strategy_config import HybridWeights, Strategy, StrategyConfig
from src.wallet.wordlist import WORDLIST
from tests.mock_data import PHRASE_12, PHRASE_12_B, PHRASE_24

WORDS = set(WORDLIST)


def _trained(*phrases):
    state = BasicLearningState()
    for phrase in phrases:
        basic_model.learn(state, phrase, "ETH", 100)
    return state


# ============================
# Learning
# ============================

def test_learn_scenario_counts():
    state = basic_model.learn(BasicLearningState(), PHRASE_12, "ETH", 100)

    assert state.word_frequency["abandon"] == 1
    assert state.position_preferences[0]["abandon"] == 1
    assert state.word_pairs["abandon"]["ability"] == 1
    assert state.total_successes == 1
    assert len(state.word_frequency) == 12
    assert len(state.position_preferences) == 12
    assert len(state.word_pairs) == 11


def test_learn_empty_phrase_rejected():
    state = BasicLearningState()
    with pytest.raises(ValidationError):
        basic_model.learn(state, "   ")
    assert state.total_successes == 0


def test_disabled_learning_types_are_skipped():
    config = StrategyConfig(enable_positional_learning=False, enable_correlation_learning=False)
    state = basic_model.learn(BasicLearningState(), PHRASE_12, config=config)

    assert state.word_frequency
    assert state.position_preferences == {}
    assert state.word_pairs == {}
    assert state.total_successes == 1


def test_record_attempts():
    state = basic_model.record_attempts(BasicLearningState(), 250)
    assert state.total_attempts == 250
    with pytest.raises(ValidationError):
        basic_model.record_attempts(state, -1)


def test_decay_counts_truncates_and_prunes():
    state = _trained(PHRASE_12, PHRASE_12, PHRASE_12)
    basic_model.learn(state, PHRASE_12_B)

    pruned = basic_model.decay_counts(state, 0.5)

    assert state.word_frequency["abandon"] == 1
    assert "zoo" not in state.word_frequency
    assert "zoo" not in state.word_pairs
    assert pruned > 0


# ============================
# Strategy resolution
# ============================

@pytest.mark.parametrize("successes,expected", [
    (0, Strategy.RANDOM),
    (9, Strategy.RANDOM),
    (10, Strategy.FREQUENCY),
    (49, Strategy.FREQUENCY),
    (50, Strategy.POSITIONAL),
    (100, Strategy.HYBRID),
])
def test_adaptive_thresholds(successes, expected):
    state = BasicLearningState(total_successes=successes)
    assert basic_model.resolve_strategy(state, "adaptive") is expected


def test_concrete_strategy_passes_through():
    assert basic_model.resolve_strategy(BasicLearningState(), "correlated") is Strategy.CORRELATED
    with pytest.raises(ValidationError):
        basic_model.resolve_strategy(BasicLearningState(), "genetic")


# ============================
# Generation
# ============================

@pytest.mark.parametrize("strategy", [s.value for s in Strategy])
@pytest.mark.parametrize("word_count", [12, 24])
def test_every_strategy_yields_valid_phrase(strategy, word_count):
    model = BasicLearningModel(rng=make_rng(7))
    for state in (BasicLearningState(), _trained(PHRASE_12, PHRASE_24)):
        tokens = model.generate(state, strategy, word_count).split()
        assert len(tokens) == word_count
        assert all(t in WORDS for t in tokens)


def test_random_generation_always_valid():
    model = BasicLearningModel(rng=make_rng(1))
    for _ in range(200):
        tokens = model.generate(BasicLearningState(), Strategy.RANDOM, 12).split()
        assert len(tokens) == 12
        assert WORDS.issuperset(tokens)


def test_wrong_word_count_rejected():
    with pytest.raises(ValidationError):
        BasicLearningModel().generate(BasicLearningState(), "random", 15)


def test_positional_follows_learned_positions():
    state = _trained(PHRASE_12)
    phrase = BasicLearningModel(rng=make_rng(3)).generate(state, Strategy.POSITIONAL, 12)
    assert phrase == PHRASE_12


def test_correlated_raises_successor_probability():
    state = _trained(PHRASE_12)
    model = BasicLearningModel(rng=make_rng(11))
    trials = 300

    hits = 0
    for _ in range(trials):
        tokens = model.generate(state, Strategy.CORRELATED, 12).split()
        if tokens[:2] == ["abandon", "ability"]:
            hits += 1

    # Uniform baseline for a fixed 2-word prefix is 1 / 2048**2
    assert hits / trials > 1 / len(WORDLIST)


def test_hybrid_all_positional_weight():
    config = StrategyConfig(hybrid_weights=HybridWeights(frequency=0.0, positional=1.0, correlation=0.0))
    state = _trained(PHRASE_12)
    model = BasicLearningModel(config, rng=make_rng(5))
    assert model.generate(state, Strategy.HYBRID, 12) == PHRASE_12


def test_frequency_pool_pads_thin_data():
    state = BasicLearningState(word_frequency={"abandon": 1})
    pool = BasicLearningModel()._frequency_pool(state, 12)
    assert len(pool) == len(WORDLIST)
    assert pool["abandon"] == 1


# ============================
# Stats
# ============================

def test_stats():
    state = _trained(PHRASE_12)
    basic_model.record_attempts(state, 4)
    stats = basic_model.stats(state)

    assert stats["total_successes"] == 1
    assert stats["success_rate"] == pytest.approx(25.0)
    assert stats["learned_words"] == 12
    assert stats["learned_positions"] == 12
    assert stats["learned_pairs"] == 11
    assert stats["recommended_strategy"] == "random"
    assert stats["efficiency"] == pytest.approx(0.25)


# ============================
# Serialization
# ============================

def test_round_trip_preserves_everything():
    state = _trained(PHRASE_12, PHRASE_24, PHRASE_12_B, PHRASE_12)
    basic_model.record_attempts(state, 1000)

    blob = json.dumps(basic_model.serialize_state(state))
    restored = basic_model.deserialize_state(blob)

    assert restored.word_frequency == state.word_frequency
    assert restored.position_preferences == state.position_preferences
    assert restored.word_pairs == state.word_pairs
    assert restored.total_successes == state.total_successes
    assert restored.total_attempts == state.total_attempts
    assert restored.last_updated == state.last_updated
    assert all(isinstance(k, int) for k in restored.position_preferences)


def test_naive_timestamp_read_as_utc():
    restored = basic_model.deserialize_state({"last_updated": "2024-01-01T00:00:00"})
    assert restored.last_updated == datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("blob", [
    "{not json",
    "[1, 2, 3]",
    {"word_frequency": {"abandon": -3}},
    {"word_frequency": ["abandon"]},
    {"position_preferences": {"zero": {"abandon": 1}}},
    {"last_updated": "yesterday"},
])
def test_corrupt_blobs_raise(blob):
    with pytest.raises(StateCorruptionError):
        basic_model.deserialize_state(blob)
