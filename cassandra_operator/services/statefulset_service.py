"""
StatefulSet accessor: replica counts and pod existence for a rack.
"""
from kubernetes_asyncio.client import ApiException

from cassandra_operator.config.logging import get_logger
from cassandra_operator.models.cluster import Rack, RackGroup
from cassandra_operator.services.jolokia_client import pod_name
from cassandra_operator.services.kubernetes_client import KubernetesClientSet
from cassandra_operator.utils.retry import retry_on_k8s_error, to_kubernetes_error

logger = get_logger(__name__)


class StatefulSetService:
    """
    Reads and patches the StatefulSet backing each rack.

    Replica changes are sent as a JSON patch that first tests the current
    value, so a decrement computed from a stale read is rejected by the API
    server instead of overwriting a concurrent change.
    """

    def __init__(self, clients: KubernetesClientSet):
        self.clients = clients

    async def get_rack_group(self, rack: Rack) -> RackGroup:
        """
        Read the StatefulSet of a rack.

        Raises:
            KubernetesError: On API failure (status 404 when the StatefulSet is absent)
        """
        try:
            statefulset = await self._read_statefulset(rack.statefulset_name, rack.namespace)
        except Exception as e:
            raise to_kubernetes_error(f"read statefulset {rack.namespace}/{rack.statefulset_name}", e)

        replicas = statefulset.spec.replicas
        return RackGroup(
            name=rack.statefulset_name,
            namespace=rack.namespace,
            current_replicas=1 if replicas is None else replicas,
        )

    async def get_replica_count(self, rack: Rack) -> int:
        return (await self.get_rack_group(rack)).current_replicas

    async def set_replica_count(self, rack: Rack, replicas: int, expected_current: int) -> None:
        """
        Patch ``spec.replicas`` from ``expected_current`` to ``replicas``.

        Raises:
            KubernetesError: On API failure, including a failed precondition
                (422) when the replica count changed since it was read
        """
        body = [
            {"op": "test", "path": "/spec/replicas", "value": expected_current},
            {"op": "replace", "path": "/spec/replicas", "value": replicas},
        ]
        try:
            await self.clients.apps_api.patch_namespaced_stateful_set(
                name=rack.statefulset_name,
                namespace=rack.namespace,
                body=body,
                _content_type="application/json-patch+json",
            )
        except Exception as e:
            logger.error(
                "statefulset_patch_failed",
                statefulset=rack.statefulset_name,
                namespace=rack.namespace,
                replicas=replicas,
                error=str(e),
            )
            raise to_kubernetes_error(f"patch statefulset {rack.namespace}/{rack.statefulset_name}", e)

        logger.info(
            "statefulset_replicas_patched",
            statefulset=rack.statefulset_name,
            namespace=rack.namespace,
            replicas=replicas,
        )

    async def pod_exists(self, rack: Rack, ordinal: int) -> bool:
        """
        Check whether the pod with the given ordinal still exists.

        A pod being deleted (deletion timestamp set) still counts as existing:
        its node may still answer on the management side-channel.
        """
        name = pod_name(rack, ordinal)
        try:
            await self._read_pod(name, rack.namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise to_kubernetes_error(f"read pod {rack.namespace}/{name}", e)
        except Exception as e:
            raise to_kubernetes_error(f"read pod {rack.namespace}/{name}", e)
        return True

    @retry_on_k8s_error()
    async def _read_statefulset(self, name: str, namespace: str):
        return await self.clients.apps_api.read_namespaced_stateful_set(name=name, namespace=namespace)

    @retry_on_k8s_error()
    async def _read_pod(self, name: str, namespace: str):
        return await self.clients.core_api.read_namespaced_pod(name=name, namespace=namespace)
