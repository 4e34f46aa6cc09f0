"""In-memory storage for customer histories and the prediction log.

Histories are keyed by customer id (missing customers share the
"anonymous" bucket) and kept as bounded FIFOs: once a history holds
`history_limit` entries the oldest is evicted on every append. The
prediction log is a bounded ring buffer shared by all requests. All data
lives in memory and is lost on restart.
"""

import threading
from collections import deque
from typing import Deque, Dict, List, Optional, Set, Tuple

from riskengine.errors import StateInconsistencyError
from riskengine.models import HistoryEntry, ModelPrediction, OutcomeLabel


class HistoryStore:
    """Thread-safe per-customer transaction history."""

    def __init__(self, history_limit: int = 1000) -> None:
        self.history_limit = history_limit
        self._histories: Dict[str, Deque[HistoryEntry]] = {}
        # Transaction ids currently held per customer, kept in step with _histories
        self._ids: Dict[str, Set[str]] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def lock_for(self, customer_key: str) -> threading.RLock:
        """Return the lock serializing access to one customer's history."""
        with self._locks_guard:
            lock = self._locks.get(customer_key)
            if lock is None:
                lock = threading.RLock()
                self._locks[customer_key] = lock
            return lock

    def append(self, customer_key: str, entry: HistoryEntry) -> None:
        """Append an entry, evicting the oldest one past the bound."""
        with self.lock_for(customer_key):
            history = self._histories.setdefault(customer_key, deque())
            ids = self._ids.setdefault(customer_key, set())

            if entry.transaction_id in ids:
                raise StateInconsistencyError(
                    f"Transaction {entry.transaction_id} already recorded "
                    f"for customer '{customer_key}'"
                )

            history.append(entry)
            ids.add(entry.transaction_id)

            if len(history) > self.history_limit:
                evicted = history.popleft()
                ids.discard(evicted.transaction_id)

            if len(history) > self.history_limit:
                raise StateInconsistencyError(
                    f"History for '{customer_key}' holds {len(history)} entries "
                    f"(limit {self.history_limit})"
                )

    def get(self, customer_key: str) -> List[HistoryEntry]:
        """Return a snapshot of a customer's history, oldest first."""
        if customer_key not in self._histories:
            return []
        with self.lock_for(customer_key):
            return list(self._histories.get(customer_key, ()))

    def contains(self, customer_key: str, transaction_id: str) -> bool:
        if customer_key not in self._histories:
            return False
        with self.lock_for(customer_key):
            return transaction_id in self._ids.get(customer_key, ())

    def customers(self) -> List[str]:
        with self._locks_guard:
            return list(self._histories.keys())


class PredictionLog:
    """Bounded ring buffer of recent predictions plus ground-truth labels."""

    def __init__(self, limit: int = 1000) -> None:
        self.limit = limit
        self._predictions: Deque[ModelPrediction] = deque(maxlen=limit)
        self._labels: Dict[str, OutcomeLabel] = {}
        self._lock = threading.Lock()

    def append(self, prediction: ModelPrediction) -> None:
        with self._lock:
            if len(self._predictions) == self.limit:
                dropped = self._predictions[0]
                self._labels.pop(dropped.transaction_id, None)
            self._predictions.append(prediction)

    def recent(self, limit: Optional[int] = None) -> List[ModelPrediction]:
        """Return the most recent predictions, oldest first."""
        with self._lock:
            predictions = list(self._predictions)
        if limit is not None:
            predictions = predictions[-limit:] if limit > 0 else []
        return predictions

    def find(self, transaction_id: str) -> Optional[ModelPrediction]:
        with self._lock:
            for prediction in reversed(self._predictions):
                if prediction.transaction_id == transaction_id:
                    return prediction
        return None

    def add_label(self, label: OutcomeLabel) -> bool:
        """Attach ground truth to a logged prediction.

        Returns False when the transaction is not (or no longer) in the log.
        """
        with self._lock:
            known = any(
                p.transaction_id == label.transaction_id for p in self._predictions
            )
            if known:
                self._labels[label.transaction_id] = label
            return known

    def labelled(self) -> List[Tuple[ModelPrediction, OutcomeLabel]]:
        """Return logged predictions that have ground truth, oldest first."""
        with self._lock:
            return [
                (p, self._labels[p.transaction_id])
                for p in self._predictions
                if p.transaction_id in self._labels
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._predictions)
