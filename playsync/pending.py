import logging
from typing import List
from .models import PendingOperation, PendingQueueState
from .state import JsonStateFile

logger = logging.getLogger(__name__)

class PendingOperationQueue(JsonStateFile):
    """
    Durable FIFO of start/finish operations that could not be delivered.

    Survives process restarts through its own JSON file. Replay and the attempt
    cap live in the scrobbler's flush; this class only stores.
    """
    model = PendingQueueState

    def enqueue(self, op: PendingOperation):
        with self._lock:
            self.state.items.append(op.model_copy(deep=True))
            self._save_locked()
        logger.debug(f"Queued pending {op.kind.value} operation ({len(self)} pending)")

    def requeue_front(self, ops: List[PendingOperation]):
        """Puts ``ops`` back ahead of anything queued meanwhile, keeping their order."""
        if not ops:
            return
        with self._lock:
            self.state.items[:0] = [op.model_copy(deep=True) for op in ops]
            self._save_locked()
        logger.debug(f"Re-queued {len(ops)} pending operation(s) at the front ({len(self)} pending)")

    def dequeue_all(self) -> List[PendingOperation]:
        """Returns every queued operation in insertion order and empties the queue."""
        with self._lock:
            drained = self.state.items
            if not drained:
                return []
            self.state.items = []
            self._save_locked()
            return drained

    def peek(self) -> List[PendingOperation]:
        with self._lock:
            return [op.model_copy(deep=True) for op in self.state.items]

    def __len__(self) -> int:
        with self._lock:
            return len(self.state.items)
