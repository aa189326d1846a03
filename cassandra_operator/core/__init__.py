"""
Core scale-down logic of the operator.

- Decommission state machine deriving a rack's phase from live observations
- Collaborator protocols (node health, disruption gate, replica set)
- No-repeat guard for decommission commands

Users should import directly from submodules:
# from cassandra_operator.core.decommission import RackDecommissioner
# from cassandra_operator.core.command_guard import DecommissionCommandGuard
"""

__all__ = [
    "DecommissionPhase",
    "DecommissionStateMachine",
    "RackDecommissioner",
    "DecommissionCommandGuard",
]
