"""
Jolokia client for the Cassandra StorageService MBean.

Each Cassandra pod runs a Jolokia agent exposing JMX over HTTP. The operator
uses it for exactly two things: reading a node's ``OperationMode`` and
invoking ``decommission``. Requests are addressed to the pod's stable DNS
name behind the cluster's headless service:

    http://<statefulset>-<ordinal>.<cluster>.<namespace>[.<domain>]:8778/jolokia/

Jolokia answers HTTP 200 even for failed JMX calls and reports the real
outcome in the ``status`` field of the JSON body, so both are checked.
"""
from typing import Any, Dict, Optional

import httpx

from cassandra_operator.config.logging import get_logger
from cassandra_operator.config.settings import settings
from cassandra_operator.exceptions import ManagementInterfaceError
from cassandra_operator.models.cluster import OperationMode, Rack

logger = get_logger(__name__)

STORAGE_SERVICE_MBEAN = "org.apache.cassandra.db:type=StorageService"


def pod_name(rack: Rack, ordinal: int) -> str:
    """Name of the StatefulSet pod with the given ordinal."""
    return f"{rack.statefulset_name}-{ordinal}"


def pod_fqdn(rack: Rack, ordinal: int, cluster_domain: Optional[str] = None) -> str:
    """
    Stable DNS name of a pod behind the cluster's headless service.

    Example:
        >>> pod_fqdn(rack, 2)
        'cassandra-demo-dc1-rack1-2.cassandra-demo.cassandra'
    """
    domain = settings.cluster_domain if cluster_domain is None else cluster_domain
    fqdn = f"{pod_name(rack, ordinal)}.{rack.cluster_name}.{rack.namespace}"
    return f"{fqdn}.{domain}" if domain else fqdn


def jolokia_url(host: str, port: int) -> str:
    return f"http://{host}:{port}/jolokia/"


class JolokiaClient:
    """
    Node health client over Jolokia.

    Stateless between calls: it keeps no memory of previous answers. The
    injected httpx.AsyncClient carries the per-request timeout.

    Example:
        async with httpx.AsyncClient(timeout=5.0) as http:
            jolokia = JolokiaClient(http=http)
            mode = await jolokia.get_operation_mode(rack, 2)
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        port: Optional[int] = None,
        cluster_domain: Optional[str] = None,
        command_timeout: Optional[float] = None,
    ):
        self.http = http
        self.port = port or settings.jolokia_port
        self.cluster_domain = cluster_domain
        self.command_timeout = httpx.Timeout(
            command_timeout or settings.jolokia_command_timeout_seconds,
            connect=settings.jolokia_timeout_seconds,
        )

    def url_for(self, rack: Rack, ordinal: int) -> str:
        return jolokia_url(pod_fqdn(rack, ordinal, self.cluster_domain), self.port)

    async def get_operation_mode(self, rack: Rack, ordinal: int) -> OperationMode:
        """
        Read the StorageService ``OperationMode`` attribute of a node.

        Raises:
            ManagementInterfaceError: On transport failure, error status, or
                an unknown mode value
        """
        node = pod_fqdn(rack, ordinal, self.cluster_domain)
        payload = await self._post(
            rack,
            ordinal,
            {
                "type": "read",
                "mbean": STORAGE_SERVICE_MBEAN,
                "attribute": "OperationMode",
            },
        )

        value = payload.get("value")
        try:
            mode = OperationMode(value)
        except ValueError:
            raise ManagementInterfaceError(node, f"unknown operation mode {value!r}")

        logger.debug("operation_mode_read", node=node, mode=mode.value)
        return mode

    async def command_decommission(self, rack: Rack, ordinal: int) -> None:
        """
        Invoke the StorageService ``decommission`` operation on a node.

        Cassandra runs the decommission inside the JMX call and only answers
        once streaming is over, so the request gets its own, longer timeout.
        A read timeout means the node got the command and is most likely
        streaming: it is still a ManagementInterfaceError, flagged with
        ``request_delivered``, and the next pass observes the actual mode.
        """
        await self._post(
            rack,
            ordinal,
            {
                "type": "exec",
                "mbean": STORAGE_SERVICE_MBEAN,
                "operation": "decommission",
            },
            timeout=self.command_timeout,
        )
        logger.info("decommission_command_acknowledged", node=pod_fqdn(rack, ordinal, self.cluster_domain))

    async def _post(
        self,
        rack: Rack,
        ordinal: int,
        body: Dict[str, Any],
        timeout: Optional[httpx.Timeout] = None,
    ) -> Dict[str, Any]:
        node = pod_fqdn(rack, ordinal, self.cluster_domain)
        url = self.url_for(rack, ordinal)
        extra = {"timeout": timeout} if timeout is not None else {}

        try:
            response = await self.http.post(url, json=body, **extra)
            response.raise_for_status()
            payload = response.json()
        except (httpx.ReadTimeout, httpx.WriteTimeout) as e:
            if body["type"] == "exec":
                logger.info("jolokia_exec_still_running", node=node, operation=body.get("operation"))
            else:
                logger.warning("jolokia_timeout", node=node, request_type=body["type"], error=str(e))
            raise ManagementInterfaceError(node, "timeout", request_delivered=True)
        except httpx.TimeoutException as e:
            logger.warning("jolokia_timeout", node=node, request_type=body["type"], error=str(e))
            raise ManagementInterfaceError(node, "timeout")
        except httpx.HTTPStatusError as e:
            logger.warning("jolokia_http_error", node=node, status_code=e.response.status_code)
            raise ManagementInterfaceError(node, f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning("jolokia_unreachable", node=node, error_type=type(e).__name__, error=str(e))
            raise ManagementInterfaceError(node, f"{type(e).__name__}: {e}")
        except ValueError:
            raise ManagementInterfaceError(node, "response is not valid JSON")

        if not isinstance(payload, dict):
            raise ManagementInterfaceError(node, "unexpected response payload")

        status = payload.get("status")
        if status != 200:
            logger.warning(
                "jolokia_request_failed",
                node=node,
                status=status,
                error_type=payload.get("error_type"),
                error=payload.get("error"),
            )
            raise ManagementInterfaceError(
                node,
                f"Jolokia status {status}: {payload.get('error', 'no error message')}",
            )
        return payload
