"""
BIP39 Wordlist

Fixed, ordered English vocabulary (2048 words) loaded once from the
`mnemonic` reference package. Read-only for the lifetime of the process.

Also provides phrase helpers used by the training feed and the CLI:
- validate_phrase(): 12/24 words, every word in the list
- get_suggestions(): prefix autocomplete
- analyze_phrase(): typo hints for partially remembered phrases
"""

from dataclasses import dataclass, field
from typing import List, Tuple

from mnemonic import Mnemonic

VALID_WORD_COUNTS = (12, 24)

WORDLIST: Tuple[str, ...] = tuple(Mnemonic("english").wordlist)
_WORD_SET = frozenset(WORDLIST)


def tokenize(phrase: str) -> List[str]:
    """Lower-case, whitespace split"""
    return phrase.strip().lower().split()


def is_valid_word(word: str) -> bool:
    return word.lower() in _WORD_SET


def get_suggestions(partial: str, limit: int = 10) -> List[str]:
    """Wordlist entries starting with `partial`"""
    prefix = partial.strip().lower()
    return [w for w in WORDLIST if w.startswith(prefix)][:limit]


@dataclass
class PhraseValidation:
    valid: bool
    word_count: int
    invalid_words: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "valid": self.valid,
            "word_count": self.word_count,
            "invalid_words": self.invalid_words,
        }


def validate_phrase(phrase: str) -> PhraseValidation:
    words = tokenize(phrase)
    invalid = [w for w in words if not is_valid_word(w)]
    return PhraseValidation(
        valid=len(words) in VALID_WORD_COUNTS and not invalid,
        word_count=len(words),
        invalid_words=invalid,
    )


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insert / delete / substitute, cost 1 each)"""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def find_similar_words(word: str, max_distance: int = 2, limit: int = 3) -> List[str]:
    word = word.lower()
    return [w for w in WORDLIST if levenshtein(word, w) <= max_distance][:limit]


def analyze_phrase(phrase: str) -> dict:
    """
    Inspect a partial phrase for typos.

    Returns valid/invalid words, how many words are still missing to reach
    12 (or 24 when more than 12 were given), and human-readable hints.
    """
    words = tokenize(phrase)
    valid_words = [w for w in words if is_valid_word(w)]
    invalid_words = [w for w in words if not is_valid_word(w)]

    mistakes = []
    for word in invalid_words:
        similar = find_similar_words(word)
        if similar:
            mistakes.append(f'"{word}" might be "{similar[0]}" (typo detected)')
        if "0" in word:
            mistakes.append(f'"{word}" contains "0" - did you mean "o"?')
        if "1" in word:
            mistakes.append(f'"{word}" contains "1" - did you mean "l" or "i"?')

    target = 12 if len(words) <= 12 else 24
    return {
        "words": words,
        "valid_words": valid_words,
        "invalid_words": invalid_words,
        "missing_words": max(target - len(valid_words), 0),
        "common_mistakes": mistakes,
    }
