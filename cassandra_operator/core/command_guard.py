"""
No-repeat guard for decommission commands.

A node keeps reporting NORMAL for a short while after it was asked to
decommission. The guard remembers when each node was last commanded so the
state machine waits instead of re-sending the command on every pass. It is
a per-process optimisation only: phases are never derived from it, and
losing it (operator restart) at worst re-sends an idempotent command.
"""
import time
from typing import Callable, Dict, Tuple

from cassandra_operator.config.logging import get_logger
from cassandra_operator.models.cluster import Rack

logger = get_logger(__name__)

NodeKey = Tuple[str, str, int]


class DecommissionCommandGuard:
    """Remembers recently sent decommission commands, keyed by node."""

    def __init__(self, resend_after: float, clock: Callable[[], float] = time.monotonic):
        self.resend_after = resend_after
        self._clock = clock
        self._sent: Dict[NodeKey, float] = {}

    @staticmethod
    def _key(rack: Rack, ordinal: int) -> NodeKey:
        return (rack.namespace, rack.statefulset_name, ordinal)

    def recently_commanded(self, rack: Rack, ordinal: int) -> bool:
        sent_at = self._sent.get(self._key(rack, ordinal))
        if sent_at is None:
            return False
        return self._clock() - sent_at < self.resend_after

    def record(self, rack: Rack, ordinal: int) -> None:
        self._sent[self._key(rack, ordinal)] = self._clock()

    def forget(self, rack: Rack, ordinal: int) -> None:
        self._sent.pop(self._key(rack, ordinal), None)

    def forget_rack(self, rack: Rack) -> None:
        """Drop every entry of a rack (called once the rack is stable)."""
        stale = [key for key in self._sent if key[:2] == (rack.namespace, rack.statefulset_name)]
        for key in stale:
            del self._sent[key]
        if stale:
            logger.debug("command_guard_cleared", rack=rack.key, entries=len(stale))

    def __len__(self) -> int:
        return len(self._sent)
