"""
Training Feed - manual training submissions

A submitted (phrase, currency, has_balance, usd_value) tuple is treated
exactly like a success found by a scan: both models learn from it when it
carried a balance, attempts are counted either way, and the submission is
logged (phrase fingerprint only, never the phrase itself).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional
import hashlib
import uuid

from config import SUPPORTED_CURRENCIES
from src.errors import ValidationError
from src.learning import advanced_model, basic_model
from src.learning.basic_model import BasicLearningModel
from src.learning.strategy_controller import StrategyController, get_strategy_controller
from src.wallet.wordlist import validate_phrase
from utils.logger import get_logger

logger = get_logger("TRAINING_FEED")


def phrase_fingerprint(phrase: str) -> str:
    normalized = " ".join(phrase.strip().lower().split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


@dataclass
class TrainingSubmission:
    id: str
    fingerprint: str
    word_count: int
    currency: str
    has_balance: bool
    usd_value: float
    notes: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "fingerprint": self.fingerprint,
            "word_count": self.word_count,
            "currency": self.currency,
            "has_balance": self.has_balance,
            "usd_value": self.usd_value,
            "notes": self.notes,
            "created_at": self.created_at,
        }


class TrainingFeed:

    def __init__(self, controller: Optional[StrategyController] = None):
        self.controller = controller or get_strategy_controller()

    def submit(
        self,
        phrase: str,
        currency: str,
        has_balance: bool,
        usd_value: float = 0.0,
        notes: Optional[str] = None
    ) -> Dict:
        """
        Validate, learn, persist.

        Raises ValidationError for a malformed phrase, an unsupported
        currency or a negative USD value; nothing is written in that case.
        """
        if not isinstance(phrase, str) or not phrase.strip():
            raise ValidationError("Seed phrase is required")

        check = validate_phrase(phrase)
        if not check.valid:
            if check.invalid_words:
                raise ValidationError(f"Unknown words: {', '.join(check.invalid_words)}")
            raise ValidationError(f"Seed phrase must be 12 or 24 words (got {check.word_count})")

        currency = (currency or "").upper()
        if currency not in SUPPORTED_CURRENCIES:
            raise ValidationError(f"Unsupported currency '{currency}'")

        usd_value = float(usd_value or 0.0)
        if usd_value < 0:
            raise ValidationError("USD value cannot be negative")

        controller = self.controller
        state = controller.load_basic_state()
        advanced = controller.load_advanced_state()

        if has_balance:
            BasicLearningModel(controller.config).learn(state, phrase, currency, usd_value)
            advanced_model.learn_advanced(advanced, phrase, currency, usd_value)
            logger.info(f"Learned from submitted {check.word_count}-word phrase ({currency})")

        basic_model.record_attempts(state, 1)
        advanced_model.record_attempts(advanced, 1)
        advanced_model.apply_decay(advanced)

        controller.save_basic_state(state)
        controller.save_advanced_state(advanced)

        submission = TrainingSubmission(
            id=uuid.uuid4().hex,
            fingerprint=phrase_fingerprint(phrase),
            word_count=check.word_count,
            currency=currency,
            has_balance=bool(has_balance),
            usd_value=usd_value,
            notes=notes,
        )
        controller.store.record_training(submission.to_dict())

        stats = basic_model.stats(state, controller.config)
        return {
            "submission": submission.to_dict(),
            "stats": {
                "total_successes": stats["total_successes"],
                "total_attempts": stats["total_attempts"],
                "learned_words": stats["learned_words"],
                "success_rate": stats["success_rate"],
            },
        }

    def history(self, limit: int = 10, offset: int = 0) -> List[Dict]:
        return self.controller.store.training_history(limit=limit, offset=offset)

    def stats(self) -> Dict:
        return self.controller.store.training_stats()
