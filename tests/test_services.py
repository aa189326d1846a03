"""
Tests for the Kubernetes-backed collaborators.

The kubernetes_asyncio API objects are replaced with AsyncMocks; only the
calls made and the translation of their results are checked.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from kubernetes_asyncio.client import ApiException

from cassandra_operator.core.decommission import (
    DecommissionAction,
    DecommissionPhase,
    RackOutcome,
)
from cassandra_operator.exceptions import ClusterNotFoundError, ConfigurationError, KubernetesError
from cassandra_operator.services.cluster_service import ClusterService, build_status_patch
from cassandra_operator.services.disruption_gate import PodDisruptionBudgetGate
from cassandra_operator.services.statefulset_service import StatefulSetService
from fakes import CLUSTER_NAME, NAMESPACE, make_cluster, make_rack


@pytest.fixture
def clients():
    return SimpleNamespace(
        core_api=AsyncMock(),
        apps_api=AsyncMock(),
        policy_api=AsyncMock(),
        custom_api=AsyncMock(),
    )


def statefulset(replicas):
    return SimpleNamespace(spec=SimpleNamespace(replicas=replicas))


def budget(allowed):
    return SimpleNamespace(status=SimpleNamespace(disruptions_allowed=allowed))


class TestStatefulSetService:
    @pytest.mark.asyncio
    async def test_get_rack_group(self, clients):
        clients.apps_api.read_namespaced_stateful_set.return_value = statefulset(3)
        rack = make_rack(2)

        group = await StatefulSetService(clients).get_rack_group(rack)

        assert group.current_replicas == 3
        assert group.name == "cassandra-demo-dc1-rack1"
        clients.apps_api.read_namespaced_stateful_set.assert_awaited_once_with(
            name="cassandra-demo-dc1-rack1", namespace=NAMESPACE
        )

    @pytest.mark.asyncio
    async def test_unset_replicas_defaults_to_one(self, clients):
        clients.apps_api.read_namespaced_stateful_set.return_value = statefulset(None)

        assert await StatefulSetService(clients).get_replica_count(make_rack(1)) == 1

    @pytest.mark.asyncio
    async def test_missing_statefulset(self, clients):
        clients.apps_api.read_namespaced_stateful_set.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(KubernetesError) as exc_info:
            await StatefulSetService(clients).get_rack_group(make_rack(1))

        assert exc_info.value.status == 404
        assert clients.apps_api.read_namespaced_stateful_set.await_count == 1

    @pytest.mark.asyncio
    async def test_transient_read_is_retried(self, clients):
        clients.apps_api.read_namespaced_stateful_set.side_effect = [
            ApiException(status=503, reason="Service Unavailable"),
            statefulset(3),
        ]

        assert await StatefulSetService(clients).get_replica_count(make_rack(2)) == 3
        assert clients.apps_api.read_namespaced_stateful_set.await_count == 2

    @pytest.mark.asyncio
    async def test_set_replica_count_sends_guarded_json_patch(self, clients):
        rack = make_rack(2)

        await StatefulSetService(clients).set_replica_count(rack, 2, expected_current=3)

        clients.apps_api.patch_namespaced_stateful_set.assert_awaited_once_with(
            name=rack.statefulset_name,
            namespace=NAMESPACE,
            body=[
                {"op": "test", "path": "/spec/replicas", "value": 3},
                {"op": "replace", "path": "/spec/replicas", "value": 2},
            ],
            _content_type="application/json-patch+json",
        )

    @pytest.mark.asyncio
    async def test_failed_precondition_is_not_retried(self, clients):
        clients.apps_api.patch_namespaced_stateful_set.side_effect = ApiException(status=422, reason="Unprocessable")

        with pytest.raises(KubernetesError) as exc_info:
            await StatefulSetService(clients).set_replica_count(make_rack(2), 2, expected_current=3)

        assert exc_info.value.status == 422
        assert exc_info.value.retryable
        assert clients.apps_api.patch_namespaced_stateful_set.await_count == 1

    @pytest.mark.asyncio
    async def test_pod_exists(self, clients):
        clients.core_api.read_namespaced_pod.return_value = SimpleNamespace()
        rack = make_rack(2)

        assert await StatefulSetService(clients).pod_exists(rack, 2)
        clients.core_api.read_namespaced_pod.assert_awaited_once_with(
            name="cassandra-demo-dc1-rack1-2", namespace=NAMESPACE
        )

    @pytest.mark.asyncio
    async def test_pod_gone(self, clients):
        clients.core_api.read_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")

        assert not await StatefulSetService(clients).pod_exists(make_rack(2), 2)

    @pytest.mark.asyncio
    async def test_pod_read_forbidden(self, clients):
        clients.core_api.read_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(KubernetesError):
            await StatefulSetService(clients).pod_exists(make_rack(2), 2)


class TestPodDisruptionBudgetGate:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("allowed,expected", [(1, True), (2, True), (0, False), (None, False)])
    async def test_disruption_allowed(self, clients, allowed, expected):
        clients.policy_api.read_namespaced_pod_disruption_budget.return_value = budget(allowed)

        assert await PodDisruptionBudgetGate(clients).disruption_allowed(make_rack(2)) is expected
        clients.policy_api.read_namespaced_pod_disruption_budget.assert_awaited_once_with(
            name=CLUSTER_NAME, namespace=NAMESPACE
        )

    @pytest.mark.asyncio
    async def test_missing_budget_denies(self, clients):
        clients.policy_api.read_namespaced_pod_disruption_budget.side_effect = ApiException(status=404)

        assert not await PodDisruptionBudgetGate(clients).disruption_allowed(make_rack(2))

    @pytest.mark.asyncio
    async def test_unreadable_budget_is_transient(self, clients):
        clients.policy_api.read_namespaced_pod_disruption_budget.side_effect = ApiException(status=403)

        with pytest.raises(KubernetesError):
            await PodDisruptionBudgetGate(clients).disruption_allowed(make_rack(2))


def cluster_object(name=CLUSTER_NAME, nodes_per_racks=2):
    return {
        "metadata": {"name": name, "namespace": NAMESPACE},
        "spec": {"nodesPerRacks": nodes_per_racks},
    }


class TestClusterService:
    @pytest.mark.asyncio
    async def test_get_cluster(self, clients):
        clients.custom_api.get_namespaced_custom_object.return_value = cluster_object()

        cluster = await ClusterService(clients).get_cluster(NAMESPACE, CLUSTER_NAME)

        assert cluster.name == CLUSTER_NAME
        assert [r.desired_replicas for r in cluster.racks()] == [2]
        clients.custom_api.get_namespaced_custom_object.assert_awaited_once_with(
            namespace=NAMESPACE,
            name=CLUSTER_NAME,
            group="db.orange.com",
            version="v1alpha2",
            plural="cassandraclusters",
        )

    @pytest.mark.asyncio
    async def test_get_missing_cluster(self, clients):
        clients.custom_api.get_namespaced_custom_object.side_effect = ApiException(status=404)

        with pytest.raises(ClusterNotFoundError):
            await ClusterService(clients).get_cluster(NAMESPACE, CLUSTER_NAME)

    @pytest.mark.asyncio
    async def test_list_clusters_skips_unparsable_objects(self, clients):
        clients.custom_api.list_namespaced_custom_object.return_value = {
            "items": [
                cluster_object("first"),
                {"metadata": {"namespace": NAMESPACE}, "spec": {}},
                {"metadata": {"name": "second", "namespace": NAMESPACE}, "spec": {"nodesPerRacks": "many"}},
                cluster_object("third"),
            ]
        }

        clusters = await ClusterService(clients).list_clusters(NAMESPACE)

        assert [c.name for c in clusters] == ["first", "third"]

    @pytest.mark.asyncio
    async def test_list_clusters_cluster_wide(self, clients):
        clients.custom_api.list_cluster_custom_object.return_value = {"items": [cluster_object()]}

        clusters = await ClusterService(clients).list_clusters(None)

        assert len(clusters) == 1
        clients.custom_api.list_namespaced_custom_object.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_record_status(self, clients):
        cluster = make_cluster(2)

        written = await ClusterService(clients).record_status(cluster, [], "Ok", "all racks evaluated", True)

        assert written
        kwargs = clients.custom_api.patch_namespaced_custom_object_status.await_args.kwargs
        assert kwargs["_content_type"] == "application/merge-patch+json"
        assert kwargs["body"]["status"]["conditions"][0]["status"] == "True"

    @pytest.mark.asyncio
    async def test_record_status_failure_is_swallowed(self, clients):
        clients.custom_api.patch_namespaced_custom_object_status.side_effect = ApiException(status=409)

        written = await ClusterService(clients).record_status(make_cluster(2), [], "Ok", "ok", True)

        assert not written


def test_build_status_patch():
    rack = make_rack(2)
    outcome = RackOutcome(
        rack=rack,
        phase=DecommissionPhase.IN_PROGRESS,
        action=DecommissionAction.WAIT,
        current_replicas=3,
        target_ordinal=2,
    )

    status = build_status_patch([outcome], "TransientError", "node unreachable", succeeded=False)["status"]

    condition = status["conditions"][0]
    assert condition["type"] == "Reconciled"
    assert condition["status"] == "False"
    assert condition["reason"] == "TransientError"
    rack_status = status["cassandraRackStatus"]["dc1-rack1"]
    assert rack_status["phase"] == "in_progress"
    assert rack_status["replicas"] == 3
    assert rack_status["desiredReplicas"] == 2
    assert rack_status["targetOrdinal"] == 2


def test_build_status_patch_without_racks():
    status = build_status_patch([], "InvalidSpec", "duplicate rack", succeeded=False)["status"]

    assert "cassandraRackStatus" not in status


@pytest.mark.asyncio
async def test_unparsable_cluster_is_a_configuration_error(clients):
    clients.custom_api.get_namespaced_custom_object.return_value = {
        "metadata": {"name": CLUSTER_NAME, "namespace": NAMESPACE},
        "spec": {"nodesPerRacks": "many"},
    }

    with pytest.raises(ConfigurationError):
        await ClusterService(clients).get_cluster(NAMESPACE, CLUSTER_NAME)


def test_services_satisfy_collaborator_protocols(clients):
    from cassandra_operator.core.collaborators import DisruptionGate, ReplicaSetAccessor

    assert isinstance(StatefulSetService(clients), ReplicaSetAccessor)
    assert isinstance(PodDisruptionBudgetGate(clients), DisruptionGate)
