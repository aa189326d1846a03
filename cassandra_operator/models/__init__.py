from cassandra_operator.models.cluster import (
    CassandraCluster,
    ClusterSpec,
    DisruptionBudget,
    OperationMode,
    Rack,
    RackGroup,
)
from cassandra_operator.models.reconcile import ReconcileResult

__all__ = [
    "CassandraCluster",
    "ClusterSpec",
    "DisruptionBudget",
    "OperationMode",
    "Rack",
    "RackGroup",
    "ReconcileResult",
]
