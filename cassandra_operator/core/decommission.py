"""
Decommission state machine for rack scale-down.

When a rack's desired node count drops below its StatefulSet replica count,
nodes are removed one at a time, always starting from the highest ordinal:

1. the node is asked to decommission through its Jolokia agent,
2. the operator waits while it streams its data away (LEAVING),
3. once it reports DECOMMISSIONED the StatefulSet is scaled down by one,
4. the operator waits for Kubernetes to delete the pod before looking at
   the next node.

Nothing is persisted between passes. Every pass re-derives the phase from
three live observations: the replica count, the target node's operation
mode, and whether the pods around the boundary still exist.

Phases:
- STABLE: replica count matches the declared count
- PENDING_POD_REMOVAL: replicas were decremented but the removed pod still exists
- TARGET_UNAVAILABLE: the highest-ordinal pod is missing or not yet settled
- AWAITING_SAFETY: the disruption budget forbids starting a decommission
- NOT_STARTED: the target is NORMAL, a decommission command is sent
- COMMAND_SENT: the target is still NORMAL shortly after being commanded
- IN_PROGRESS: the target is LEAVING
- COMMAND_COMPLETE: the target is DECOMMISSIONED, replicas are decremented

Usage:
    >>> DecommissionStateMachine.derive_phase(
    ...     RackObservation(desired=2, current=3, removed_pod_exists=False,
    ...                     target_pod_exists=True, mode=OperationMode.LEAVING)
    ... )
    <DecommissionPhase.IN_PROGRESS: 'in_progress'>
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Tuple

from cassandra_operator.config.logging import get_logger
from cassandra_operator.core.collaborators import (
    DisruptionGate,
    NodeHealthClient,
    ReplicaSetAccessor,
)
from cassandra_operator.core.command_guard import DecommissionCommandGuard
from cassandra_operator.exceptions import InvariantViolation, ManagementInterfaceError
from cassandra_operator.models.cluster import OperationMode, Rack

logger = get_logger(__name__)


class DecommissionPhase(str, Enum):
    """Derived scale-down phase of a rack."""
    STABLE = "stable"
    PENDING_POD_REMOVAL = "pending_pod_removal"
    TARGET_UNAVAILABLE = "target_unavailable"
    AWAITING_SAFETY = "awaiting_safety"
    NOT_STARTED = "not_started"
    COMMAND_SENT = "command_sent"
    IN_PROGRESS = "in_progress"
    COMMAND_COMPLETE = "command_complete"


class DecommissionAction(str, Enum):
    """Side effect performed for a phase."""
    NONE = "none"
    WAIT = "wait"
    COMMAND_DECOMMISSION = "command_decommission"
    DECREMENT_REPLICAS = "decrement_replicas"


@dataclass(frozen=True)
class RackObservation:
    """
    Live facts gathered for one rack during one pass.

    Optional fields are only observed when an earlier fact does not already
    decide the phase; None means "not observed".
    """
    desired: int
    current: int
    removed_pod_exists: Optional[bool] = None
    target_pod_exists: Optional[bool] = None
    mode: Optional[OperationMode] = None
    disruption_allowed: Optional[bool] = None
    recently_commanded: bool = False

    @property
    def target_ordinal(self) -> int:
        """Highest surviving ordinal of the rack."""
        return self.current - 1


@dataclass(frozen=True)
class RackOutcome:
    """Result of one state machine step on a rack."""
    rack: Rack
    phase: DecommissionPhase
    action: DecommissionAction
    current_replicas: int
    target_ordinal: Optional[int] = None
    mode: Optional[OperationMode] = None

    @property
    def in_progress(self) -> bool:
        return self.phase != DecommissionPhase.STABLE


class DecommissionStateMachine:
    """
    Pure phase derivation and phase-to-action mapping.

    ``derive_phase`` never performs I/O; the RackDecommissioner gathers the
    observations it needs, in order, and stops as soon as the phase is known.
    """

    ACTIONS: Dict[DecommissionPhase, DecommissionAction] = {
        DecommissionPhase.STABLE: DecommissionAction.NONE,
        DecommissionPhase.PENDING_POD_REMOVAL: DecommissionAction.WAIT,
        DecommissionPhase.TARGET_UNAVAILABLE: DecommissionAction.WAIT,
        DecommissionPhase.AWAITING_SAFETY: DecommissionAction.WAIT,
        DecommissionPhase.NOT_STARTED: DecommissionAction.COMMAND_DECOMMISSION,
        DecommissionPhase.COMMAND_SENT: DecommissionAction.WAIT,
        DecommissionPhase.IN_PROGRESS: DecommissionAction.WAIT,
        DecommissionPhase.COMMAND_COMPLETE: DecommissionAction.DECREMENT_REPLICAS,
    }

    @classmethod
    def derive_phase(cls, observation: RackObservation) -> Optional[DecommissionPhase]:
        """
        Derive the phase from what has been observed so far.

        Returns:
            The phase, or None when another observation is required

        Example:
            >>> DecommissionStateMachine.derive_phase(RackObservation(desired=3, current=3))
            >>> DecommissionStateMachine.derive_phase(
            ...     RackObservation(desired=3, current=3, removed_pod_exists=False)
            ... )
            <DecommissionPhase.STABLE: 'stable'>
        """
        # A pod beyond the replica count is still being deleted by the
        # StatefulSet controller: nothing may be targeted until it is gone.
        if observation.removed_pod_exists is None:
            return None
        if observation.removed_pod_exists:
            return DecommissionPhase.PENDING_POD_REMOVAL

        # Scale-up and bootstrap are handled elsewhere
        if observation.current <= observation.desired:
            return DecommissionPhase.STABLE

        if observation.target_pod_exists is None:
            return None
        if not observation.target_pod_exists:
            return DecommissionPhase.TARGET_UNAVAILABLE

        if observation.mode is None:
            return None
        if observation.mode == OperationMode.LEAVING:
            return DecommissionPhase.IN_PROGRESS
        if observation.mode == OperationMode.DECOMMISSIONED:
            return DecommissionPhase.COMMAND_COMPLETE
        if observation.mode != OperationMode.NORMAL:
            return DecommissionPhase.TARGET_UNAVAILABLE

        if observation.recently_commanded:
            return DecommissionPhase.COMMAND_SENT
        if observation.disruption_allowed is None:
            return None
        if not observation.disruption_allowed:
            return DecommissionPhase.AWAITING_SAFETY
        return DecommissionPhase.NOT_STARTED

    @classmethod
    def action_for(cls, phase: DecommissionPhase) -> DecommissionAction:
        return cls.ACTIONS[phase]


class RackDecommissioner:
    """
    Performs at most one state-advancing action on a rack per call.

    The only node ever queried or commanded is the highest ordinal of the
    rack, and the replica count is only ever lowered by exactly one.
    """

    def __init__(
        self,
        health: NodeHealthClient,
        gate: DisruptionGate,
        replicas: ReplicaSetAccessor,
        guard: Optional[DecommissionCommandGuard] = None,
    ):
        self.health = health
        self.gate = gate
        self.replicas = replicas
        self.guard = guard

    async def step(self, rack: Rack, current: Optional[int] = None) -> RackOutcome:
        """
        Observe the rack and advance its scale-down by at most one action.

        Args:
            rack: Rack to evaluate
            current: Replica count already read during this pass, if any

        Returns:
            RackOutcome describing the derived phase and the action taken

        Raises:
            TransientError: When a collaborator call fails
            InvariantViolation: When the targeting rules would be broken
        """
        if current is None:
            current = await self.replicas.get_replica_count(rack)
        if current < 0:
            raise InvariantViolation(rack.key, None, f"negative replica count {current}")

        phase, observation = await self._observe(
            rack, RackObservation(desired=rack.desired_replicas, current=current)
        )
        action = DecommissionStateMachine.action_for(phase)

        target = current - 1 if current > rack.desired_replicas else None
        mode = observation.mode
        if action == DecommissionAction.COMMAND_DECOMMISSION:
            await self._command(rack, current, target)
        elif action == DecommissionAction.DECREMENT_REPLICAS:
            await self._decrement(rack, current, target)
            current -= 1

        if phase == DecommissionPhase.STABLE and self.guard is not None:
            self.guard.forget_rack(rack)

        # The pod being waited on sits just past the highest ordinal
        reported = current if phase == DecommissionPhase.PENDING_POD_REMOVAL else target

        log = logger.info if action not in (DecommissionAction.NONE, DecommissionAction.WAIT) else logger.debug
        log(
            "rack_decommission_step",
            rack=rack.key,
            statefulset=rack.statefulset_name,
            desired=rack.desired_replicas,
            current=current,
            phase=phase.value,
            action=action.value,
            ordinal=reported,
            mode=mode.value if mode else None,
        )
        return RackOutcome(
            rack=rack,
            phase=phase,
            action=action,
            current_replicas=current,
            target_ordinal=reported,
            mode=mode,
        )

    async def _observe(
        self, rack: Rack, observation: RackObservation
    ) -> Tuple[DecommissionPhase, RackObservation]:
        """Gather observations lazily until the phase is decided."""
        machine = DecommissionStateMachine

        # The pod one past the highest ordinal is the last removed node
        removed = await self.replicas.pod_exists(rack, observation.current)
        observation = replace(observation, removed_pod_exists=removed)
        phase = machine.derive_phase(observation)
        if phase is not None:
            return phase, observation

        target = observation.target_ordinal
        observation = replace(observation, target_pod_exists=await self.replicas.pod_exists(rack, target))
        phase = machine.derive_phase(observation)
        if phase is not None:
            return phase, observation

        self._ensure_target(rack, observation.current, target)
        mode = await self.health.get_operation_mode(rack, target)
        if mode != OperationMode.NORMAL and self.guard is not None:
            self.guard.forget(rack, target)
        recently = self.guard.recently_commanded(rack, target) if self.guard is not None else False
        observation = replace(observation, mode=mode, recently_commanded=recently)
        phase = machine.derive_phase(observation)
        if phase is not None:
            return phase, observation

        observation = replace(observation, disruption_allowed=await self.gate.disruption_allowed(rack))
        phase = machine.derive_phase(observation)
        if phase is None:
            raise InvariantViolation(rack.key, target, "phase undecided after full observation")
        return phase, observation

    async def _command(self, rack: Rack, current: int, target: Optional[int]) -> None:
        self._ensure_target(rack, current, target)
        logger.info(
            "decommission_command_sending",
            rack=rack.key,
            statefulset=rack.statefulset_name,
            ordinal=target,
        )
        if self.guard is not None:
            # Recorded first so a timed-out command is not re-sent while it may still run
            self.guard.record(rack, target)
        try:
            await self.health.command_decommission(rack, target)
        except ManagementInterfaceError as e:
            if self.guard is not None and not e.request_delivered:
                self.guard.forget(rack, target)
            raise

    async def _decrement(self, rack: Rack, current: int, target: Optional[int]) -> None:
        self._ensure_target(rack, current, target)
        replicas = current - 1
        if replicas < rack.desired_replicas:
            raise InvariantViolation(
                rack.key, target, f"decrement to {replicas} would go below desired {rack.desired_replicas}"
            )
        logger.info(
            "statefulset_scaling_down",
            rack=rack.key,
            statefulset=rack.statefulset_name,
            from_replicas=current,
            to_replicas=replicas,
        )
        await self.replicas.set_replica_count(rack, replicas, expected_current=current)
        if self.guard is not None:
            self.guard.forget(rack, target)

    @staticmethod
    def _ensure_target(rack: Rack, current: int, ordinal: Optional[int]) -> None:
        """Refuse to touch any node other than the current highest ordinal."""
        if ordinal is None or ordinal != current - 1 or ordinal < 0:
            raise InvariantViolation(
                rack.key, ordinal, f"only ordinal {current - 1} may be targeted (replicas={current})"
            )
        if current <= rack.desired_replicas:
            raise InvariantViolation(
                rack.key, ordinal, f"rack is not scaling down (desired={rack.desired_replicas}, current={current})"
            )
