"""
Kubernetes API client set shared by the operator services.
"""
from typing import Optional

from kubernetes_asyncio import client, config

from cassandra_operator.config.logging import get_logger
from cassandra_operator.config.settings import settings
from cassandra_operator.exceptions import KubernetesError

logger = get_logger(__name__)


class KubernetesClientSet:
    """Container for Kubernetes API clients."""

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.core_api = client.CoreV1Api(api_client)
        self.apps_api = client.AppsV1Api(api_client)
        self.policy_api = client.PolicyV1Api(api_client)
        self.custom_api = client.CustomObjectsApi(api_client)

    @classmethod
    async def create(
        cls,
        in_cluster: Optional[bool] = None,
        kubeconfig_path: Optional[str] = None,
    ) -> "KubernetesClientSet":
        """
        Load Kubernetes configuration and build the client set.

        Args:
            in_cluster: Use the pod's service account (defaults to settings)
            kubeconfig_path: kubeconfig file when not in cluster (defaults to settings)

        Raises:
            KubernetesError: If no usable configuration can be loaded
        """
        in_cluster = settings.k8s_in_cluster if in_cluster is None else in_cluster
        kubeconfig_path = kubeconfig_path or settings.kubeconfig_path

        try:
            if in_cluster:
                config.load_incluster_config()
                logger.info("kubernetes_config_loaded", source="in_cluster")
            else:
                await config.load_kube_config(config_file=kubeconfig_path)
                logger.info("kubernetes_config_loaded", source=kubeconfig_path or "default")
        except Exception as e:
            logger.error("kubernetes_config_load_failed", error=str(e))
            raise KubernetesError(f"cannot load configuration: {e}")

        return cls(client.ApiClient())

    async def close(self) -> None:
        """Close all API clients."""
        if self.api_client:
            await self.api_client.close()
            logger.info("kubernetes_client_closed")
