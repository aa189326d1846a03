"""
Operator process entry point.

Runs the reconciliation worker (behind leader election when enabled) and a
small FastAPI app exposing Kubernetes health probes.
"""
import asyncio
import socket
import sys
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List, Optional

import httpx
from fastapi import FastAPI

from cassandra_operator.api.v1 import health
from cassandra_operator.config.logging import configure_logging, get_logger
from cassandra_operator.config.redis import RedisConnection
from cassandra_operator.config.settings import settings
from cassandra_operator.services.cluster_service import ClusterService
from cassandra_operator.services.disruption_gate import PodDisruptionBudgetGate
from cassandra_operator.services.jolokia_client import JolokiaClient
from cassandra_operator.services.kubernetes_client import KubernetesClientSet
from cassandra_operator.services.reconciler import Reconciler
from cassandra_operator.services.statefulset_service import StatefulSetService
from cassandra_operator.workers.leader_election import LeaderElection
from cassandra_operator.workers.reconciliation_worker import ReconciliationWorker

configure_logging()
logger = get_logger(__name__)


class OperatorRuntime:
    """Long-lived clients and background tasks of the operator process."""

    def __init__(self):
        self.instance_id = f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"
        self.clients: Optional[KubernetesClientSet] = None
        self.http: Optional[httpx.AsyncClient] = None
        self.worker: Optional[ReconciliationWorker] = None
        self.leader: Optional[LeaderElection] = None
        self.tasks: List[asyncio.Task] = []

    @property
    def started(self) -> bool:
        return self.clients is not None and self.worker is not None

    async def start(self) -> None:
        self.clients = await KubernetesClientSet.create()
        self.http = httpx.AsyncClient(timeout=settings.jolokia_timeout_seconds)

        clusters = ClusterService(self.clients)
        statefulsets = StatefulSetService(self.clients)
        reconciler = Reconciler.build(
            clusters=clusters,
            statefulsets=statefulsets,
            gate=PodDisruptionBudgetGate(self.clients),
            health=JolokiaClient(self.http),
        )
        self.worker = ReconciliationWorker(reconciler, clusters)

        if settings.leader_election_enabled:
            await RedisConnection.connect()
            self.leader = LeaderElection(
                instance_id=self.instance_id,
                lease_duration=settings.leader_lease_seconds,
            )
            self.tasks.append(asyncio.create_task(self.leader.run(self.worker)))
        else:
            self.tasks.append(asyncio.create_task(self.worker.start()))

        logger.info(
            "operator_started",
            instance_id=self.instance_id,
            leader_election=settings.leader_election_enabled,
            namespace=settings.watch_namespace or "*",
        )

    async def stop(self) -> None:
        if self.worker is not None:
            await self.worker.stop()
        for task in self.tasks:
            task.cancel()
        if self.tasks:
            try:
                await asyncio.wait_for(asyncio.gather(*self.tasks, return_exceptions=True), timeout=30.0)
                logger.info("background_tasks_stopped")
            except asyncio.TimeoutError:
                logger.warning("background_tasks_shutdown_timeout")
        self.tasks = []

        if self.http is not None:
            await self.http.aclose()
        if self.clients is not None:
            await self.clients.close()
        if settings.leader_election_enabled:
            await RedisConnection.close()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Start the operator on startup and stop it gracefully on shutdown."""
    logger.info(
        "operator_starting",
        version=settings.app_version,
        environment=settings.environment,
    )
    runtime = OperatorRuntime()
    app.state.runtime = runtime
    try:
        await runtime.start()
    except Exception as e:
        logger.error("operator_startup_failed", error=str(e))
        await runtime.stop()
        raise

    yield

    logger.info("operator_shutting_down")
    await runtime.stop()
    logger.info("operator_shutdown_complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Cassandra cluster operator health endpoints",
    docs_url=None,
    redoc_url=None,
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/health", tags=["Health"])


if __name__ == "__main__":
    import uvicorn

    try:
        uvicorn.run(
            "cassandra_operator.main:app",
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
        )
    except KeyboardInterrupt:
        logger.info("operator_stopped")
        sys.exit(0)
