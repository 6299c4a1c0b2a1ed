"""
Memory Store - Persistence Layer for Learning State

Holds one JSON blob per key (last write wins):
- ml_state            BasicLearningState
- ml_advanced_state   AdvancedLearningState
- ml_config           StrategyConfig
- ml_metrics          PerformanceMetrics

plus the manual training submissions log.

Supports multiple backends:
- JSON files (default)
- SQLite database
- In-memory (testing)
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Any
import json
import os
import sqlite3
import tempfile
from abc import ABC, abstractmethod

from config import STORE_BACKEND, STORE_BASE_PATH, STORE_DB_PATH
from src.errors import StateCorruptionError
from utils.logger import get_logger

logger = get_logger("MEMORY_STORE")


class StorageBackend(Enum):
    """Available storage backends."""
    JSON = "JSON"
    SQLITE = "SQLITE"
    MEMORY = "MEMORY"


@dataclass
class StoreConfig:
    """Configuration for memory store."""
    backend: StorageBackend = StorageBackend(STORE_BACKEND.upper())
    base_path: str = STORE_BASE_PATH
    db_path: str = STORE_DB_PATH

    # Training log retention
    max_training_records: int = 100000


class BaseStorage(ABC):
    """Abstract base for storage backends."""

    @abstractmethod
    def save(self, collection: str, key: str, data: Dict) -> bool:
        """Save a record."""

    @abstractmethod
    def load(self, collection: str, key: str) -> Optional[Dict]:
        """Load a record. Raises StateCorruptionError if it cannot be decoded."""

    @abstractmethod
    def load_all(self, collection: str) -> List[Dict]:
        """Load all records from a collection, oldest first."""

    @abstractmethod
    def delete(self, collection: str, key: str) -> bool:
        """Delete a record."""

    @abstractmethod
    def count(self, collection: str) -> int:
        """Count records in collection."""

    @abstractmethod
    def clear(self, collection: str) -> int:
        """Clear all records in collection."""


class JSONStorage(BaseStorage):
    """One JSON file per collection, rewritten atomically."""

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

        # In-memory cache
        self._cache: Dict[str, Dict[str, Dict]] = {}

    def _get_collection_path(self, collection: str) -> Path:
        return self.base_path / f"{collection}.json"

    def _load_collection(self, collection: str) -> Dict[str, Dict]:
        if collection in self._cache:
            return self._cache[collection]

        path = self._get_collection_path(collection)
        data: Dict[str, Dict] = {}
        if path.exists():
            try:
                with open(path, 'r') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError(f"expected object, got {type(data).__name__}")
            except (OSError, ValueError) as e:
                # Keep the unreadable file around for manual recovery
                stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
                backup = path.with_name(f"{collection}.corrupt-{stamp}.json")
                logger.error(f"Collection {collection} unreadable ({e}), moved to {backup.name}")
                try:
                    path.replace(backup)
                except OSError as move_error:
                    logger.error(f"Could not preserve {path}: {move_error}")
                data = {}

        self._cache[collection] = data
        return data

    def _save_collection(self, collection: str) -> bool:
        if collection not in self._cache:
            return True

        path = self._get_collection_path(collection)
        try:
            fd, tmp = tempfile.mkstemp(dir=self.base_path, prefix=f".{collection}.", suffix=".tmp")
            with os.fdopen(fd, 'w') as f:
                json.dump(self._cache[collection], f, indent=2)
            os.replace(tmp, path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error saving collection {collection}: {e}")
            return False

    def save(self, collection: str, key: str, data: Dict) -> bool:
        coll = self._load_collection(collection)
        coll[key] = data
        return self._save_collection(collection)

    def load(self, collection: str, key: str) -> Optional[Dict]:
        return self._load_collection(collection).get(key)

    def load_all(self, collection: str) -> List[Dict]:
        return list(self._load_collection(collection).values())

    def delete(self, collection: str, key: str) -> bool:
        coll = self._load_collection(collection)
        if key in coll:
            del coll[key]
            return self._save_collection(collection)
        return False

    def count(self, collection: str) -> int:
        return len(self._load_collection(collection))

    def clear(self, collection: str) -> int:
        count = self.count(collection)
        self._cache[collection] = {}
        self._save_collection(collection)
        return count


class SQLiteStorage(BaseStorage):
    """SQLite database storage."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    collection TEXT NOT NULL,
                    key TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, key)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_collection
                ON records(collection)
            """)
            conn.commit()

    def save(self, collection: str, key: str, data: Dict) -> bool:
        try:
            now = datetime.now(timezone.utc).isoformat()
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO records (collection, key, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(collection, key)
                    DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                """, (collection, key, json.dumps(data), now, now))
                conn.commit()
            return True
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"SQLite save error: {e}")
            return False

    def load(self, collection: str, key: str) -> Optional[Dict]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                row = conn.execute("""
                    SELECT data FROM records
                    WHERE collection = ? AND key = ?
                """, (collection, key)).fetchone()
        except sqlite3.Error as e:
            logger.error(f"SQLite load error: {e}")
            return None

        if not row:
            return None
        try:
            return json.loads(row[0])
        except ValueError as e:
            raise StateCorruptionError(f"{collection}/{key} is not valid JSON: {e}", key=key, raw=row[0])

    def load_all(self, collection: str) -> List[Dict]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                rows = conn.execute("""
                    SELECT data FROM records WHERE collection = ?
                    ORDER BY created_at, rowid
                """, (collection,)).fetchall()
        except sqlite3.Error as e:
            logger.error(f"SQLite load_all error: {e}")
            return []

        records = []
        for (raw,) in rows:
            try:
                records.append(json.loads(raw))
            except ValueError:
                logger.warning(f"Skipping undecodable record in {collection}")
        return records

    def delete(self, collection: str, key: str) -> bool:
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.execute("""
                    DELETE FROM records WHERE collection = ? AND key = ?
                """, (collection, key))
                conn.commit()
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"SQLite delete error: {e}")
            return False

    def count(self, collection: str) -> int:
        try:
            with sqlite3.connect(self.db_path) as conn:
                return conn.execute("""
                    SELECT COUNT(*) FROM records WHERE collection = ?
                """, (collection,)).fetchone()[0]
        except sqlite3.Error as e:
            logger.error(f"SQLite count error: {e}")
            return 0

    def clear(self, collection: str) -> int:
        count = self.count(collection)
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("""
                    DELETE FROM records WHERE collection = ?
                """, (collection,))
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"SQLite clear error: {e}")
        return count


class MemoryStorage(BaseStorage):
    """In-memory storage (for testing)."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict]] = {}

    def save(self, collection: str, key: str, data: Dict) -> bool:
        # Round-trip through JSON so tests see what a real backend would return
        self._data.setdefault(collection, {})[key] = json.loads(json.dumps(data))
        return True

    def load(self, collection: str, key: str) -> Optional[Dict]:
        return self._data.get(collection, {}).get(key)

    def load_all(self, collection: str) -> List[Dict]:
        return list(self._data.get(collection, {}).values())

    def delete(self, collection: str, key: str) -> bool:
        if key in self._data.get(collection, {}):
            del self._data[collection][key]
            return True
        return False

    def count(self, collection: str) -> int:
        return len(self._data.get(collection, {}))

    def clear(self, collection: str) -> int:
        count = self.count(collection)
        self._data[collection] = {}
        return count


class MemoryStore:
    """
    Central persistence layer for learning data.

    Usage:
        store = MemoryStore()

        blob = store.load_json(MemoryStore.BASIC_STATE)
        store.save_json(MemoryStore.BASIC_STATE, serialize_state(state))

        store.record_training({...})
        history = store.training_history(limit=10)
    """

    # Collections
    STATE = "learning_state"
    TRAINING = "training_submissions"

    # Keys in STATE
    BASIC_STATE = "ml_state"
    ADVANCED_STATE = "ml_advanced_state"
    CONFIG = "ml_config"
    METRICS = "ml_metrics"

    def __init__(self, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig()

        if self.config.backend == StorageBackend.JSON:
            self._storage = JSONStorage(self.config.base_path)
        elif self.config.backend == StorageBackend.SQLITE:
            self._storage = SQLiteStorage(self.config.db_path)
        else:
            self._storage = MemoryStorage()

        logger.info(f"MemoryStore initialized with {self.config.backend.value} backend")

    # Key/value blobs

    def load_json(self, key: str) -> Optional[Dict]:
        """Blob stored under key, None if absent. May raise StateCorruptionError."""
        return self._storage.load(self.STATE, key)

    def save_json(self, key: str, blob: Dict) -> bool:
        ok = self._storage.save(self.STATE, key, blob)
        if not ok:
            logger.error(f"Failed to persist {key}")
        return ok

    def delete(self, key: str) -> bool:
        return self._storage.delete(self.STATE, key)

    def quarantine(self, key: str, blob: Any) -> bool:
        """Keep an undecodable blob under '<key>.corrupt' so it survives the next save."""
        wrapped = {
            "quarantined_at": datetime.now(timezone.utc).isoformat(),
            "blob": blob if isinstance(blob, (dict, list, str, int, float, bool)) else repr(blob),
        }
        return self._storage.save(self.STATE, f"{key}.corrupt", wrapped)

    # Training submissions

    def record_training(self, record: Dict) -> bool:
        key = record.get("id") or f"{datetime.now(timezone.utc).timestamp():.6f}"
        record = dict(record, id=key)
        ok = self._storage.save(self.TRAINING, key, record)

        overflow = self._storage.count(self.TRAINING) - self.config.max_training_records
        if overflow > 0:
            for old in self._storage.load_all(self.TRAINING)[:overflow]:
                self._storage.delete(self.TRAINING, old.get("id", ""))
        return ok

    def training_history(self, limit: int = 10, offset: int = 0) -> List[Dict]:
        """Most recent submissions first."""
        records = sorted(
            self._storage.load_all(self.TRAINING),
            key=lambda r: r.get("created_at", ""),
            reverse=True
        )
        return records[offset:offset + limit]

    def training_stats(self) -> Dict:
        records = self._storage.load_all(self.TRAINING)
        with_balance = [r for r in records if r.get("has_balance")]
        stamps = sorted(r.get("created_at", "") for r in records)
        return {
            "total_submissions": len(records),
            "with_balance": len(with_balance),
            "without_balance": len(records) - len(with_balance),
            "word_12": sum(1 for r in records if r.get("word_count") == 12),
            "word_24": sum(1 for r in records if r.get("word_count") == 24),
            "total_usd": round(sum(float(r.get("usd_value") or 0) for r in with_balance), 2),
            "avg_word_count": (sum(r.get("word_count", 0) for r in records) / len(records)) if records else 0,
            "first_submission": stamps[0] if stamps else None,
            "last_submission": stamps[-1] if stamps else None,
        }

    def get_stats(self) -> Dict:
        return {
            "backend": self.config.backend.value,
            "state_keys": self._storage.count(self.STATE),
            "training_submissions": self._storage.count(self.TRAINING),
        }


# Singleton instance
_store: Optional[MemoryStore] = None


def get_memory_store(config: Optional[StoreConfig] = None) -> MemoryStore:
    """Get singleton MemoryStore instance."""
    global _store
    if _store is None:
        _store = MemoryStore(config)
    return _store
