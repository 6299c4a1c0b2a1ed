"""
Weighted sampling and entropy helpers shared by the learning models.
"""

from typing import Mapping, Optional, Sequence

import numpy as np

from src.wallet.wordlist import WORDLIST


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    return np.random.default_rng(seed)


def uniform_word(rng: np.random.Generator, wordlist: Sequence[str] = WORDLIST) -> str:
    return wordlist[int(rng.integers(len(wordlist)))]


def weighted_choice(rng: np.random.Generator, distribution: Mapping[str, float]) -> Optional[str]:
    """
    Draw a key with probability proportional to its weight.
    None when the distribution is empty or carries no positive weight.
    """
    if not distribution:
        return None

    keys = list(distribution)
    weights = np.fromiter(distribution.values(), dtype=float, count=len(keys))
    np.clip(weights, 0.0, None, out=weights)
    cumulative = np.cumsum(weights)
    total = cumulative[-1]
    if total <= 0:
        return None

    idx = int(np.searchsorted(cumulative, rng.random() * total, side="right"))
    return keys[min(idx, len(keys) - 1)]


def shannon_entropy(values) -> float:
    """Entropy (bits) of the normalized distribution of `values`"""
    weights = np.fromiter(values, dtype=float)
    weights = weights[weights > 0]
    if weights.size == 0:
        return 0.0
    p = weights / weights.sum()
    return max(0.0, float(-(p * np.log2(p)).sum()))
