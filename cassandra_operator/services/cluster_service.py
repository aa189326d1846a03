"""
CassandraCluster custom resource access.

Loads declared clusters and records the outcome of each reconcile pass on
the resource's status subresource.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from kubernetes_asyncio.client import ApiException
from pydantic import ValidationError

from cassandra_operator.config.logging import get_logger
from cassandra_operator.config.settings import settings
from cassandra_operator.core.decommission import RackOutcome
from cassandra_operator.exceptions import ClusterNotFoundError, ConfigurationError
from cassandra_operator.models.cluster import CassandraCluster
from cassandra_operator.services.kubernetes_client import KubernetesClientSet
from cassandra_operator.utils.retry import retry_on_k8s_error, to_kubernetes_error

logger = get_logger(__name__)

CONDITION_RECONCILED = "Reconciled"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_status_patch(
    outcomes: Iterable[RackOutcome],
    reason: str,
    message: str,
    succeeded: bool,
) -> Dict[str, Any]:
    """
    Build the merge patch recorded on the CassandraCluster status.

    Rack phases are informational only; the decommission state machine
    never reads them back.
    """
    timestamp = _now()
    rack_status = {
        outcome.rack.key: {
            "phase": outcome.phase.value,
            "replicas": outcome.current_replicas,
            "desiredReplicas": outcome.rack.desired_replicas,
            "targetOrdinal": outcome.target_ordinal,
            "lastTransitionTime": timestamp,
        }
        for outcome in outcomes
    }
    status: Dict[str, Any] = {
        "lastReconcileTime": timestamp,
        "conditions": [
            {
                "type": CONDITION_RECONCILED,
                "status": "True" if succeeded else "False",
                "reason": reason,
                "message": message,
                "lastTransitionTime": timestamp,
            }
        ],
    }
    if rack_status:
        status["cassandraRackStatus"] = rack_status
    return {"status": status}


class ClusterService:
    """Reads CassandraCluster objects and writes their status."""

    def __init__(self, clients: KubernetesClientSet):
        self.clients = clients

    @property
    def _crd(self) -> Dict[str, str]:
        return {
            "group": settings.crd_group,
            "version": settings.crd_version,
            "plural": settings.crd_plural,
        }

    @retry_on_k8s_error(max_retries=2)
    async def _get_object(self, namespace: str, name: str) -> Dict[str, Any]:
        return await self.clients.custom_api.get_namespaced_custom_object(
            namespace=namespace, name=name, **self._crd
        )

    async def get_cluster(self, namespace: str, name: str) -> CassandraCluster:
        """
        Load one CassandraCluster.

        Raises:
            ClusterNotFoundError: If the resource does not exist
            ConfigurationError: If the object cannot be parsed
            KubernetesError: On other API failures
        """
        try:
            obj = await self._get_object(namespace, name)
        except ApiException as e:
            if e.status == 404:
                raise ClusterNotFoundError(namespace, name)
            raise to_kubernetes_error(f"get cassandracluster {namespace}/{name}", e)
        except Exception as e:
            raise to_kubernetes_error(f"get cassandracluster {namespace}/{name}", e)
        try:
            return CassandraCluster.from_object(obj)
        except (KeyError, ValidationError) as e:
            raise ConfigurationError(f"cannot parse cassandracluster {namespace}/{name}: {e}")

    @retry_on_k8s_error(max_retries=2)
    async def _list_objects(self, namespace: Optional[str]) -> Dict[str, Any]:
        if namespace:
            return await self.clients.custom_api.list_namespaced_custom_object(
                namespace=namespace, **self._crd
            )
        return await self.clients.custom_api.list_cluster_custom_object(**self._crd)

    async def list_clusters(self, namespace: Optional[str] = None) -> List[CassandraCluster]:
        """
        List CassandraClusters in one namespace, or cluster-wide when None.

        Objects that cannot be parsed are skipped with an error log.
        """
        try:
            result = await self._list_objects(namespace)
        except Exception as e:
            raise to_kubernetes_error("list cassandraclusters", e)

        clusters = []
        for obj in result.get("items", []):
            try:
                clusters.append(CassandraCluster.from_object(obj))
            except Exception as e:
                logger.error(
                    "cassandracluster_parse_failed",
                    name=(obj.get("metadata") or {}).get("name"),
                    namespace=(obj.get("metadata") or {}).get("namespace"),
                    error=str(e),
                )
        return clusters

    async def record_status(
        self,
        cluster: CassandraCluster,
        outcomes: Iterable[RackOutcome],
        reason: str,
        message: str,
        succeeded: bool,
    ) -> bool:
        """
        Merge-patch the status subresource with the pass outcome.

        Returns:
            True if the status was written. Failures are logged, never raised.
        """
        body = build_status_patch(outcomes, reason, message, succeeded)
        try:
            await self.clients.custom_api.patch_namespaced_custom_object_status(
                namespace=cluster.namespace,
                name=cluster.name,
                body=body,
                _content_type="application/merge-patch+json",
                **self._crd,
            )
            return True
        except Exception as e:
            logger.warning(
                "cassandracluster_status_update_failed",
                cluster=cluster.name,
                namespace=cluster.namespace,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
