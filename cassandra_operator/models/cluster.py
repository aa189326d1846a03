"""
Pydantic models for CassandraCluster resources and their racks.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cassandra_operator.exceptions import ConfigurationError

DEFAULT_DC_NAME = "dc1"
DEFAULT_RACK_NAME = "rack1"


class OperationMode(str, Enum):
    """
    Membership state of a Cassandra node, as reported by the
    StorageService MBean ``OperationMode`` attribute.
    """

    STARTING = "STARTING"
    NORMAL = "NORMAL"
    JOINING = "JOINING"
    LEAVING = "LEAVING"
    DECOMMISSIONED = "DECOMMISSIONED"
    MOVING = "MOVING"
    DRAINING = "DRAINING"
    DRAINED = "DRAINED"


class RackSpec(BaseModel):
    """A named rack inside a datacenter."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    labels: Dict[str, str] = Field(default_factory=dict)


class DatacenterSpec(BaseModel):
    """A datacenter with its racks and optional rack size override."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    nodes_per_racks: Optional[int] = Field(default=None, alias="nodesPerRacks")
    rack: List[RackSpec] = Field(default_factory=list)


class Topology(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    dc: List[DatacenterSpec] = Field(default_factory=list)


class ClusterSpec(BaseModel):
    """Declared topology of a CassandraCluster."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    nodes_per_racks: int = Field(default=1, alias="nodesPerRacks")
    topology: Topology = Field(default_factory=Topology)


class Rack(BaseModel):
    """
    Resolved view of one rack: where it lives and how many nodes it should run.

    One Rack maps to exactly one StatefulSet named ``<cluster>-<dc>-<rack>``.
    """

    cluster_name: str
    namespace: str
    dc_name: str
    rack_name: str
    desired_replicas: int

    @property
    def key(self) -> str:
        """Status key of the rack (``<dc>-<rack>``)."""
        return f"{self.dc_name}-{self.rack_name}"

    @property
    def statefulset_name(self) -> str:
        return f"{self.cluster_name}-{self.dc_name}-{self.rack_name}"


class CassandraCluster(BaseModel):
    """A CassandraCluster custom object."""

    name: str
    namespace: str
    spec: ClusterSpec = Field(default_factory=ClusterSpec)
    status: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "CassandraCluster":
        """Build a CassandraCluster from the dict returned by the custom objects API."""
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace", "default"),
            spec=ClusterSpec.model_validate(obj.get("spec") or {}),
            status=obj.get("status") or {},
        )

    def racks(self) -> List[Rack]:
        """
        Flatten the topology into racks, resolving the desired replica count.

        A datacenter-level ``nodesPerRacks`` overrides the cluster-wide value.
        An empty topology yields a single ``dc1/rack1`` rack, and a datacenter
        without racks gets a single ``rack1``.

        Raises:
            ConfigurationError: If rack names are duplicated or a rack size
                is negative
        """
        datacenters = self.spec.topology.dc or [DatacenterSpec(name=DEFAULT_DC_NAME)]

        racks: List[Rack] = []
        seen = set()
        for dc in datacenters:
            desired = dc.nodes_per_racks if dc.nodes_per_racks is not None else self.spec.nodes_per_racks
            if desired < 0:
                raise ConfigurationError(
                    f"datacenter {dc.name} has a negative nodesPerRacks ({desired})",
                    details={"dc": dc.name, "nodesPerRacks": desired},
                )
            for rack in dc.rack or [RackSpec(name=DEFAULT_RACK_NAME)]:
                key = (dc.name, rack.name)
                if key in seen:
                    raise ConfigurationError(
                        f"rack {dc.name}/{rack.name} is declared more than once",
                        details={"dc": dc.name, "rack": rack.name},
                    )
                seen.add(key)
                racks.append(
                    Rack(
                        cluster_name=self.name,
                        namespace=self.namespace,
                        dc_name=dc.name,
                        rack_name=rack.name,
                        desired_replicas=desired,
                    )
                )
        return racks


class RackGroup(BaseModel):
    """Live StatefulSet backing a rack."""

    name: str
    namespace: str
    current_replicas: int


class DisruptionBudget(BaseModel):
    """Observed state of the cluster's PodDisruptionBudget."""

    name: str
    namespace: str
    disruptions_allowed: int = Field(default=0, ge=0)
