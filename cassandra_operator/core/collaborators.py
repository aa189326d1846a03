"""
Collaborator protocols used by the decommission state machine.

The state machine only depends on these narrow contracts. Production
implementations live in ``cassandra_operator.services``; tests provide
in-memory doubles.
"""
from typing import Protocol, runtime_checkable

from cassandra_operator.models.cluster import OperationMode, Rack


@runtime_checkable
class NodeHealthClient(Protocol):
    """
    Management side-channel of a single Cassandra node.

    Both calls raise ManagementInterfaceError on any failure (timeout,
    refused connection, non-2xx status, malformed payload).
    """

    async def get_operation_mode(self, rack: Rack, ordinal: int) -> OperationMode:
        ...

    async def command_decommission(self, rack: Rack, ordinal: int) -> None:
        ...


@runtime_checkable
class DisruptionGate(Protocol):
    """Reports whether a new disruptive action may start on a rack."""

    async def disruption_allowed(self, rack: Rack) -> bool:
        ...


@runtime_checkable
class ReplicaSetAccessor(Protocol):
    """
    Reads and patches the StatefulSet backing a rack.

    ``set_replica_count`` is a patch; the caller guarantees that ``replicas``
    is exactly one below the count it last read.
    """

    async def get_replica_count(self, rack: Rack) -> int:
        ...

    async def set_replica_count(self, rack: Rack, replicas: int, expected_current: int) -> None:
        ...

    async def pod_exists(self, rack: Rack, ordinal: int) -> bool:
        ...
