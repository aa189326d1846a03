"""
Reconciliation worker driving reconcile passes for every CassandraCluster.

Runs a periodic tick. On each tick it lists the declared clusters and runs
one reconcile pass for every cluster whose requeue time has come, honouring
the directive returned by the previous pass.
"""
import asyncio
import time
from typing import Callable, Dict, Optional, Tuple

from cassandra_operator.config.logging import get_logger
from cassandra_operator.config.settings import settings
from cassandra_operator.exceptions import TransientError
from cassandra_operator.models.reconcile import ReconcileResult
from cassandra_operator.services.cluster_service import ClusterService
from cassandra_operator.services.reconciler import Reconciler

logger = get_logger(__name__)

ClusterKey = Tuple[str, str]


class ReconciliationWorker:
    """
    Schedules reconcile passes per cluster.

    Features:
    - Periodic tick (configurable interval)
    - Requeue directives: immediate, after a delay, or at the resync interval
    - Capped exponential backoff for clusters whose passes keep failing
    - Passes run one at a time, so passes of one cluster never overlap
    - Graceful shutdown
    """

    def __init__(
        self,
        reconciler: Reconciler,
        clusters: ClusterService,
        reconcile_interval: Optional[float] = None,
        namespace: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize reconciliation worker.

        Args:
            reconciler: Reconciler running one pass per cluster
            clusters: Service listing declared clusters
            reconcile_interval: Seconds between ticks
            namespace: Namespace to watch (None for all namespaces)
            clock: Monotonic clock, injectable for tests
        """
        self.reconciler = reconciler
        self.clusters = clusters
        self.reconcile_interval = reconcile_interval or settings.reconcile_interval
        self.namespace = namespace if namespace is not None else settings.watch_namespace
        self.running = False
        self._clock = clock
        self._due: Dict[ClusterKey, float] = {}
        self._failures: Dict[ClusterKey, int] = {}
        self._sleep_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start reconciliation worker (runs until stopped)."""
        self.running = True

        logger.info(
            "reconciliation_worker_started",
            interval_seconds=self.reconcile_interval,
            namespace=self.namespace or "*",
        )

        while self.running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("reconciliation_worker_cancelled")
                break
            except TransientError as e:
                logger.warning("reconciliation_tick_failed", error=e.message)
            except Exception as e:
                logger.error("reconciliation_tick_error", error=str(e), exc_info=True)

            if not self.running:
                break
            try:
                self._sleep_task = asyncio.create_task(asyncio.sleep(self.reconcile_interval))
                await self._sleep_task
            except asyncio.CancelledError:
                logger.info("reconciliation_sleep_cancelled")
                break
            finally:
                self._sleep_task = None

        self.running = False
        logger.info("reconciliation_worker_stopped")

    async def stop(self):
        """Stop reconciliation worker gracefully."""
        logger.info("stopping_reconciliation_worker")
        self.running = False

        if self._sleep_task and not self._sleep_task.done():
            self._sleep_task.cancel()
            try:
                await self._sleep_task
            except asyncio.CancelledError:
                pass

    async def run_once(self) -> Dict[ClusterKey, ReconcileResult]:
        """
        Run one tick: reconcile every cluster that is due.

        Returns:
            Results of the passes run during this tick, keyed by (namespace, name)
        """
        declared = await self.clusters.list_clusters(self.namespace)
        keys = {(cluster.namespace, cluster.name) for cluster in declared}

        for key in list(self._due):
            if key not in keys:
                logger.info("cluster_unscheduled", namespace=key[0], cluster=key[1])
                self._due.pop(key, None)
                self._failures.pop(key, None)

        results: Dict[ClusterKey, ReconcileResult] = {}
        for key in sorted(keys):
            now = self._clock()
            if self._due.get(key, now) > now:
                continue
            result = await self.reconciler.reconcile(*key)
            self._schedule(key, result)
            results[key] = result
        return results

    def next_run_in(self, namespace: str, name: str) -> Optional[float]:
        """Seconds until the next pass of a cluster, None if unknown."""
        due = self._due.get((namespace, name))
        if due is None:
            return None
        return max(due - self._clock(), 0.0)

    def _schedule(self, key: ClusterKey, result: ReconcileResult) -> None:
        delay = result.delay
        if delay is None:
            delay = settings.resync_interval_seconds

        if result.failed:
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
            backoff = min(
                settings.error_requeue_after_seconds * (2 ** (failures - 1)),
                settings.max_error_backoff_seconds,
            )
            delay = max(delay, backoff) if result.requeue else backoff
            logger.warning(
                "cluster_pass_failed",
                namespace=key[0],
                cluster=key[1],
                consecutive_failures=failures,
                retry_in_seconds=delay,
                error=result.error,
            )
        else:
            self._failures.pop(key, None)

        self._due[key] = self._clock() + delay
