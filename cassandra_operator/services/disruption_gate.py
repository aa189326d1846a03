"""
Disruption gate backed by the cluster's PodDisruptionBudget.
"""
from kubernetes_asyncio.client import ApiException

from cassandra_operator.config.logging import get_logger
from cassandra_operator.models.cluster import DisruptionBudget, Rack
from cassandra_operator.services.kubernetes_client import KubernetesClientSet
from cassandra_operator.utils.retry import retry_on_k8s_error, to_kubernetes_error

logger = get_logger(__name__)


class PodDisruptionBudgetGate:
    """
    Allows a disruptive action only while the cluster's PodDisruptionBudget
    reports at least one allowed disruption.

    The budget is named after the cluster and covers all of its racks.
    Read-only.
    """

    def __init__(self, clients: KubernetesClientSet):
        self.clients = clients

    async def get_budget(self, rack: Rack) -> DisruptionBudget:
        """
        Raises:
            KubernetesError: When the budget cannot be read
        """
        try:
            pdb = await self._read_budget(rack.cluster_name, rack.namespace)
        except ApiException as e:
            if e.status == 404:
                # No budget yet: nothing proves a disruption is safe
                logger.warning("poddisruptionbudget_not_found", budget=rack.cluster_name, namespace=rack.namespace)
                return DisruptionBudget(name=rack.cluster_name, namespace=rack.namespace, disruptions_allowed=0)
            raise to_kubernetes_error(f"read poddisruptionbudget {rack.namespace}/{rack.cluster_name}", e)
        except Exception as e:
            raise to_kubernetes_error(f"read poddisruptionbudget {rack.namespace}/{rack.cluster_name}", e)

        allowed = (pdb.status.disruptions_allowed if pdb.status else 0) or 0
        return DisruptionBudget(
            name=rack.cluster_name,
            namespace=rack.namespace,
            disruptions_allowed=max(allowed, 0),
        )

    async def disruption_allowed(self, rack: Rack) -> bool:
        budget = await self.get_budget(rack)
        allowed = budget.disruptions_allowed > 0
        if not allowed:
            logger.info(
                "disruption_not_allowed",
                rack=rack.key,
                budget=budget.name,
                disruptions_allowed=budget.disruptions_allowed,
            )
        return allowed

    @retry_on_k8s_error()
    async def _read_budget(self, name: str, namespace: str):
        return await self.clients.policy_api.read_namespaced_pod_disruption_budget(
            name=name, namespace=namespace
        )
