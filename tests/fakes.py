"""
Test doubles for the operator collaborators.

The Kubernetes side is replaced by small in-memory fakes; the Jolokia
side-channel is exercised for real through an httpx MockTransport.
"""
import json
from collections import Counter
from typing import Dict, List, Optional, Set, Tuple

import httpx

from cassandra_operator.exceptions import KubernetesError
from cassandra_operator.models.cluster import CassandraCluster, Rack, RackGroup
from cassandra_operator.services.jolokia_client import pod_fqdn

CLUSTER_NAME = "cassandra-demo"
NAMESPACE = "cassandra"


def make_rack(desired: int, dc: str = "dc1", rack: str = "rack1") -> Rack:
    return Rack(
        cluster_name=CLUSTER_NAME,
        namespace=NAMESPACE,
        dc_name=dc,
        rack_name=rack,
        desired_replicas=desired,
    )


def make_cluster(nodes_per_racks: int, racks: Tuple[str, ...] = ("rack1",), status=None) -> CassandraCluster:
    return CassandraCluster.from_object(
        {
            "metadata": {"name": CLUSTER_NAME, "namespace": NAMESPACE},
            "spec": {
                "nodesPerRacks": nodes_per_racks,
                "topology": {"dc": [{"name": "dc1", "rack": [{"name": r} for r in racks]}]},
            },
            "status": status or {},
        }
    )


def host(rack: Rack, ordinal: int) -> str:
    return pod_fqdn(rack, ordinal, cluster_domain="")


class JolokiaMock:
    """
    Jolokia agents of every pod, served through httpx.MockTransport.

    Hosts marked forbidden must never be contacted: any request to them is
    recorded as a violation and answered with a 404.
    """

    def __init__(self):
        self.modes: Dict[str, str] = {}
        self.calls: Counter = Counter()
        self.requests: List[Tuple[str, str]] = []
        self.forbidden: Set[str] = set()
        self.violations: List[str] = []
        self.failures: Dict[str, object] = {}
        self.command_failures: Dict[str, object] = {}

    def set_mode(self, hostname: str, mode: str) -> None:
        self.modes[hostname] = mode

    def forbid(self, hostname: str) -> None:
        self.forbidden.add(hostname)

    def allow(self, hostname: str) -> None:
        self.forbidden.discard(hostname)

    def fail(self, hostname: str, failure) -> None:
        """Fail requests to a host with an HTTP status (int) or an exception type."""
        self.failures[hostname] = failure

    def fail_commands(self, hostname: str, failure) -> None:
        """
        Fail decommission commands only; reads keep working.

        An int is answered as a Jolokia error status, an exception type is raised.
        """
        self.command_failures[hostname] = failure

    def reset_counts(self) -> None:
        self.calls.clear()
        self.requests.clear()

    def commands(self, hostname: str) -> int:
        return sum(1 for h, kind in self.requests if h == hostname and kind == "exec")

    def handler(self, request: httpx.Request) -> httpx.Response:
        hostname = request.url.host
        body = json.loads(request.content)
        self.calls[hostname] += 1
        self.requests.append((hostname, body["type"]))

        if hostname in self.forbidden:
            self.violations.append(hostname)
            return httpx.Response(404)

        failure = self.failures.get(hostname)
        if isinstance(failure, int):
            return httpx.Response(failure)
        if failure is not None:
            raise failure("injected failure", request=request)

        if body["type"] == "exec" and hostname in self.command_failures:
            failure = self.command_failures[hostname]
            if isinstance(failure, int):
                return httpx.Response(
                    200,
                    json={"request": body, "status": failure, "error_type": "java.lang.UnsupportedOperationException",
                          "error": "Node is not in normal state"},
                )
            raise failure("injected command failure", request=request)
        if body["type"] == "exec":
            return httpx.Response(200, json={"request": body, "value": None, "status": 200})

        if hostname not in self.modes:
            return httpx.Response(
                200,
                json={"request": body, "status": 404, "error_type": "InstanceNotFoundException",
                      "error": "no such MBean"},
            )
        return httpx.Response(200, json={"request": body, "value": self.modes[hostname], "status": 200})


class FakeStatefulSets:
    """
    In-memory StatefulSets and pods.

    Like the real StatefulSet controller, lowering replicas does not delete
    the pod right away: tests call ``delete_pod`` to simulate it.
    """

    def __init__(self):
        self.replicas: Dict[str, int] = {}
        self.pods: Dict[str, Set[int]] = {}
        self.patches: List[Tuple[str, int, int]] = []
        self.failures: Dict[str, KubernetesError] = {}

    def add(self, rack: Rack, replicas: int) -> None:
        self.replicas[rack.statefulset_name] = replicas
        self.pods[rack.statefulset_name] = set(range(replicas))

    def delete_pod(self, rack: Rack, ordinal: int) -> None:
        self.pods[rack.statefulset_name].discard(ordinal)

    async def get_rack_group(self, rack: Rack) -> RackGroup:
        if rack.statefulset_name in self.failures:
            raise self.failures[rack.statefulset_name]
        if rack.statefulset_name not in self.replicas:
            raise KubernetesError("statefulset not found", status=404)
        return RackGroup(
            name=rack.statefulset_name,
            namespace=rack.namespace,
            current_replicas=self.replicas[rack.statefulset_name],
        )

    async def get_replica_count(self, rack: Rack) -> int:
        return (await self.get_rack_group(rack)).current_replicas

    async def set_replica_count(self, rack: Rack, replicas: int, expected_current: int) -> None:
        if self.replicas[rack.statefulset_name] != expected_current:
            raise KubernetesError("precondition failed", status=422)
        self.patches.append((rack.statefulset_name, expected_current, replicas))
        self.replicas[rack.statefulset_name] = replicas

    async def pod_exists(self, rack: Rack, ordinal: int) -> bool:
        return ordinal in self.pods.get(rack.statefulset_name, set())


class FakeGate:
    def __init__(self, allowed: bool = True):
        self.allowed = allowed
        self.calls = 0

    async def disruption_allowed(self, rack: Rack) -> bool:
        self.calls += 1
        return self.allowed


class FakeClusterService:
    def __init__(self, cluster: Optional[CassandraCluster] = None, error: Optional[Exception] = None):
        self.cluster = cluster
        self.error = error
        self.statuses: List[dict] = []

    async def get_cluster(self, namespace: str, name: str) -> CassandraCluster:
        if self.error is not None:
            raise self.error
        return self.cluster

    async def list_clusters(self, namespace=None) -> List[CassandraCluster]:
        return [self.cluster] if self.cluster is not None else []

    async def record_status(self, cluster, outcomes, reason, message, succeeded) -> bool:
        self.statuses.append(
            {
                "outcomes": list(outcomes),
                "reason": reason,
                "message": message,
                "succeeded": succeeded,
            }
        )
        return True


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
