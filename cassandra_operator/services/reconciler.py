"""
CassandraCluster reconciler.

One call to ``reconcile`` is one pass over one cluster: load the declared
topology, step the decommission state machine once per rack, record the
outcome on the resource status and return a requeue directive.

Racks are evaluated one after the other and independently: a failure on one
rack never prevents its siblings from being evaluated, but it makes the
whole pass report failure.
"""
from typing import List, Optional, Tuple

import structlog

from cassandra_operator.config.logging import get_logger
from cassandra_operator.config.settings import settings
from cassandra_operator.core.command_guard import DecommissionCommandGuard
from cassandra_operator.core.decommission import RackDecommissioner, RackOutcome
from cassandra_operator.exceptions import (
    ClusterNotFoundError,
    ConfigurationError,
    InvariantViolation,
    KubernetesError,
    TransientError,
)
from cassandra_operator.models.cluster import CassandraCluster, Rack
from cassandra_operator.models.reconcile import ReconcileResult
from cassandra_operator.services.cluster_service import ClusterService
from cassandra_operator.services.statefulset_service import StatefulSetService

logger = get_logger(__name__)

REASON_OK = "Ok"
REASON_TRANSIENT = "TransientError"
REASON_INVARIANT = "InvariantViolation"
REASON_CONFIGURATION = "InvalidSpec"
REASON_UNEXPECTED = "UnexpectedError"

# The most severe rack failure decides the recorded condition reason
SEVERITY = {
    REASON_OK: 0,
    REASON_TRANSIENT: 1,
    REASON_UNEXPECTED: 2,
    REASON_INVARIANT: 3,
}


class Reconciler:
    """
    Entry point of a reconcile pass for a single CassandraCluster.

    Passes for the same cluster must not overlap; the ReconciliationWorker
    runs them one at a time.
    """

    def __init__(
        self,
        clusters: ClusterService,
        statefulsets: StatefulSetService,
        decommissioner: RackDecommissioner,
        requeue_after: Optional[float] = None,
        error_requeue_after: Optional[float] = None,
    ):
        self.clusters = clusters
        self.statefulsets = statefulsets
        self.decommissioner = decommissioner
        self.requeue_after = requeue_after or settings.requeue_after_seconds
        self.error_requeue_after = error_requeue_after or settings.error_requeue_after_seconds

    @classmethod
    def build(cls, clusters, statefulsets, gate, health) -> "Reconciler":
        """Wire a reconciler with a process-wide decommission command guard."""
        guard = DecommissionCommandGuard(resend_after=settings.decommission_resend_seconds)
        return cls(
            clusters=clusters,
            statefulsets=statefulsets,
            decommissioner=RackDecommissioner(health=health, gate=gate, replicas=statefulsets, guard=guard),
        )

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """
        Run one pass over a cluster.

        Returns:
            ReconcileResult: after(delay) while any rack is scaling down or
            hit a transient error, done() when every rack is stable. Failed
            passes carry ``failed=True`` and the first error message.
        """
        with structlog.contextvars.bound_contextvars(cluster=name, namespace=namespace):
            try:
                cluster = await self.clusters.get_cluster(namespace, name)
            except ClusterNotFoundError:
                logger.info("cassandracluster_gone")
                return ReconcileResult.done()
            except TransientError as e:
                logger.warning("cassandracluster_load_failed", error=e.message)
                result = ReconcileResult.after(e.retry_after or self.error_requeue_after)
                result.failed, result.error = True, e.message
                return result
            except ConfigurationError as e:
                logger.error("cassandracluster_unparsable", error=e.message)
                return ReconcileResult(failed=True, error=e.message)

            try:
                racks = cluster.racks()
            except ConfigurationError as e:
                logger.error("cassandracluster_spec_invalid", error=e.message, **e.details)
                await self.clusters.record_status(cluster, [], REASON_CONFIGURATION, e.message, succeeded=False)
                return ReconcileResult(failed=True, error=e.message)

            return await self._reconcile_racks(cluster, racks)

    async def _reconcile_racks(self, cluster: CassandraCluster, racks: List[Rack]) -> ReconcileResult:
        outcomes: List[RackOutcome] = []
        results: List[ReconcileResult] = []
        reason, message = REASON_OK, "all racks evaluated"

        for rack in racks:
            outcome, result, failure = await self._reconcile_rack(rack)
            if outcome is not None:
                outcomes.append(outcome)
            results.append(result)
            if failure is not None and SEVERITY[failure[0]] > SEVERITY[reason]:
                reason, message = failure

        combined = ReconcileResult.combine(results)
        await self.clusters.record_status(
            cluster, outcomes, reason, message, succeeded=not combined.failed
        )

        logger.info(
            "reconcile_pass_completed",
            racks=len(racks),
            scaling_down=sum(1 for o in outcomes if o.in_progress),
            failed=combined.failed,
            requeue_after=combined.delay,
        )
        return combined

    async def _reconcile_rack(
        self, rack: Rack
    ) -> Tuple[Optional[RackOutcome], ReconcileResult, Optional[Tuple[str, str]]]:
        """Step one rack, turning its errors into a requeue directive."""
        try:
            group = await self.statefulsets.get_rack_group(rack)
        except KubernetesError as e:
            if e.status == 404:
                # Rack creation belongs to the bootstrap flow
                logger.info("statefulset_not_found", rack=rack.key, statefulset=rack.statefulset_name)
                return None, ReconcileResult.done(), None
            return None, self._transient(rack, e), (REASON_TRANSIENT, e.message)

        try:
            outcome = await self.decommissioner.step(rack, current=group.current_replicas)
        except TransientError as e:
            return None, self._transient(rack, e), (REASON_TRANSIENT, e.message)
        except InvariantViolation as e:
            logger.error("decommission_invariant_violated", rack=rack.key, ordinal=e.ordinal, reason=e.reason)
            return None, ReconcileResult(failed=True, error=e.message), (REASON_INVARIANT, e.message)
        except Exception as e:
            logger.error("rack_reconcile_crashed", rack=rack.key, error=str(e), exc_info=True)
            message = f"{type(e).__name__}: {e}"
            return None, ReconcileResult(failed=True, error=message), (REASON_UNEXPECTED, message)

        if outcome.in_progress:
            return outcome, ReconcileResult.after(self.requeue_after), None
        return outcome, ReconcileResult.done(), None

    def _transient(self, rack: Rack, error: TransientError) -> ReconcileResult:
        logger.warning(
            "rack_reconcile_transient_error",
            rack=rack.key,
            error_type=type(error).__name__,
            error=error.message,
        )
        result = ReconcileResult.after(error.retry_after or self.error_requeue_after)
        result.failed = True
        result.error = error.message
        return result
