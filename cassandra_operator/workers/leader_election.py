"""
Leader election over Redis.

Several operator replicas may run for availability, but reconcile passes of
one cluster must never overlap. Only the replica holding the lease runs the
ReconciliationWorker.
"""
import asyncio
from typing import Optional

import redis.asyncio as redis

from cassandra_operator.config.logging import get_logger
from cassandra_operator.config.redis import RedisConnection
from cassandra_operator.workers.reconciliation_worker import ReconciliationWorker

logger = get_logger(__name__)

LEADER_KEY = "cassandra-operator:leader"


class LeaderElection:
    """
    Lease-based leader election using Redis ``SET NX EX``.

    The lease is renewed every ``lease_duration / 3`` seconds while held.
    A replica that fails to renew stops its worker before the lease can
    expire and be taken by another replica.
    """

    def __init__(
        self,
        instance_id: str,
        lease_duration: int = 30,
        client: Optional[redis.Redis] = None,
    ):
        self.instance_id = instance_id
        self.lease_duration = lease_duration
        self.leader_key = LEADER_KEY
        self.is_leader = False
        self._client = client

    async def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = await RedisConnection.get_client()
        return self._client

    async def acquire_leadership(self) -> bool:
        """Try to acquire, or confirm, leadership."""
        client = await self._redis()

        acquired = await client.set(
            self.leader_key, self.instance_id, nx=True, ex=self.lease_duration
        )
        if not acquired:
            # The key may already be ours from a previous round
            acquired = await client.get(self.leader_key) == self.instance_id
            if acquired:
                await client.expire(self.leader_key, self.lease_duration)

        if acquired and not self.is_leader:
            logger.info("leadership_acquired", instance_id=self.instance_id)
        elif not acquired and self.is_leader:
            logger.warning("leadership_lost", instance_id=self.instance_id)

        self.is_leader = bool(acquired)
        return self.is_leader

    async def release_leadership(self) -> None:
        """Release leadership (on shutdown)."""
        if not self.is_leader:
            return

        client = await self._redis()
        if await client.get(self.leader_key) == self.instance_id:
            await client.delete(self.leader_key)
            logger.info("leadership_released", instance_id=self.instance_id)
        self.is_leader = False

    async def run(self, worker: ReconciliationWorker) -> None:
        """
        Keep trying to lead; run the worker only while leading.

        Runs until cancelled, then stops the worker and releases the lease.
        """
        worker_task: Optional[asyncio.Task] = None
        renew_every = max(self.lease_duration / 3, 1)

        try:
            while True:
                try:
                    leading = await self.acquire_leadership()
                except (redis.ConnectionError, redis.TimeoutError) as e:
                    logger.error("leader_election_error", error=str(e))
                    leading = False
                    self.is_leader = False

                if leading and worker_task is None:
                    logger.info("became_leader_starting_reconciler", instance_id=self.instance_id)
                    worker_task = asyncio.create_task(worker.start())
                elif not leading and worker_task is not None:
                    logger.info("not_leader_stopping_reconciler", instance_id=self.instance_id)
                    await worker.stop()
                    await asyncio.gather(worker_task, return_exceptions=True)
                    worker_task = None

                await asyncio.sleep(renew_every)
        finally:
            if worker_task is not None:
                await worker.stop()
                worker_task.cancel()
                await asyncio.gather(worker_task, return_exceptions=True)
            try:
                await self.release_leadership()
            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.warning("leadership_release_failed", error=str(e))
