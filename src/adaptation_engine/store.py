"""
Per-user state persistence boundary.

The engine loads and saves signatures, history, learned analytics and
training samples only through an AdaptationStore. InMemoryAdaptationStore is
the reference implementation used by default and in tests; durable stores
implement the same protocol.
"""

import copy
import threading
from typing import Protocol, runtime_checkable

from .models import AdaptationAnalytics, AdaptationHistoryEntry, TrainingSample, UserSignature


@runtime_checkable
class AdaptationStore(Protocol):
    def get_signature(self, user_id: str) -> UserSignature | None: ...

    def save_signature(self, signature: UserSignature) -> None: ...

    def get_history(self, user_id: str) -> list[AdaptationHistoryEntry]: ...

    def append_history(self, user_id: str, entries: list[AdaptationHistoryEntry]) -> None: ...

    def replace_history_entry(self, user_id: str, entry: AdaptationHistoryEntry) -> bool: ...

    def get_analytics(self, user_id: str) -> AdaptationAnalytics | None: ...

    def save_analytics(self, user_id: str, analytics: AdaptationAnalytics) -> None: ...

    def add_training_sample(self, sample: TrainingSample) -> None: ...

    def get_training_samples(self, user_id: str | None = None) -> list[TrainingSample]: ...


class InMemoryAdaptationStore:
    """
    Thread-safe in-process store.

    Mutable values (signatures, analytics) are deep-copied on the way in and
    out so callers never share state with the store.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._signatures: dict[str, UserSignature] = {}
        self._history: dict[str, list[AdaptationHistoryEntry]] = {}
        self._analytics: dict[str, AdaptationAnalytics] = {}
        self._training_samples: list[TrainingSample] = []

    def get_signature(self, user_id: str) -> UserSignature | None:
        with self._lock:
            signature = self._signatures.get(user_id)
            return copy.deepcopy(signature) if signature is not None else None

    def save_signature(self, signature: UserSignature) -> None:
        with self._lock:
            self._signatures[signature.user_id] = copy.deepcopy(signature)

    def delete_user(self, user_id: str) -> None:
        """Drop every record for a user (profile deletion)."""
        with self._lock:
            self._signatures.pop(user_id, None)
            self._history.pop(user_id, None)
            self._analytics.pop(user_id, None)
            self._training_samples = [s for s in self._training_samples if s.user_id != user_id]

    def get_history(self, user_id: str) -> list[AdaptationHistoryEntry]:
        with self._lock:
            return list(self._history.get(user_id, ()))

    def append_history(self, user_id: str, entries: list[AdaptationHistoryEntry]) -> None:
        with self._lock:
            self._history.setdefault(user_id, []).extend(entries)

    def replace_history_entry(self, user_id: str, entry: AdaptationHistoryEntry) -> bool:
        with self._lock:
            history = self._history.get(user_id, [])
            for index, existing in enumerate(history):
                if existing.id == entry.id:
                    history[index] = entry
                    return True
            return False

    def get_analytics(self, user_id: str) -> AdaptationAnalytics | None:
        with self._lock:
            analytics = self._analytics.get(user_id)
            return copy.deepcopy(analytics) if analytics is not None else None

    def save_analytics(self, user_id: str, analytics: AdaptationAnalytics) -> None:
        with self._lock:
            self._analytics[user_id] = copy.deepcopy(analytics)

    def add_training_sample(self, sample: TrainingSample) -> None:
        with self._lock:
            self._training_samples.append(sample)

    def get_training_samples(self, user_id: str | None = None) -> list[TrainingSample]:
        with self._lock:
            if user_id is None:
                return list(self._training_samples)
            return [s for s in self._training_samples if s.user_id == user_id]


__all__ = ["AdaptationStore", "InMemoryAdaptationStore"]
