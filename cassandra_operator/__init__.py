"""
Cassandra cluster operator.

Reconciles the declared topology of CassandraCluster resources against the
live StatefulSets, safely decommissioning nodes one at a time when a rack is
scaled down.
"""

__version__ = "0.4.0"
