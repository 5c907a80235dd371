"""Data models for deployment requests, inventory records and create payloads."""

from __future__ import annotations

from dataclasses import dataclass, field

VALID_PROTOCOLS = ("tcp", "udp")
DIRECT_ENDPOINT_NAME = "directInstancePort"
DEFAULT_DIRECT_PORT_BASE = 30000
DEFAULT_INSTANCE_COUNT = 6


def lb_set_name_for(endpoint_name: str) -> str:
    """Load-balancer set name derived from the endpoint name, e.g. 'LBhttp'."""
    return f"LB{endpoint_name}"


def availability_set_name_for(endpoint_name: str) -> str:
    """Availability set name derived from the endpoint name, e.g. 'httpavailability'."""
    return f"{endpoint_name}availability"


def direct_port_for(index: int, base: int = DEFAULT_DIRECT_PORT_BASE) -> int:
    """Public port of the per-instance direct endpoint."""
    return base + index


@dataclass(frozen=True)
class Endpoint:
    """One input endpoint on an instance."""

    name: str
    protocol: str  # "tcp" or "udp"
    local_port: int
    public_port: int
    lb_set_name: str | None = None
    direct_server_return: bool = False

    @property
    def is_load_balanced(self) -> bool:
        return bool(self.lb_set_name)


@dataclass(frozen=True)
class ImageReference:
    """A single entry of the OS image catalog."""

    family: str
    publisher: str
    published_date: str
    image_name: str


@dataclass(frozen=True)
class InstanceRecord:
    """An instance as reported by the compute inventory."""

    name: str
    instance_size: str
    source_image_name: str
    availability_set_name: str | None = None
    endpoints: frozenset[Endpoint] = field(default_factory=frozenset)

    def load_balanced_endpoint(self) -> Endpoint | None:
        """The first endpoint (by name) that belongs to a load-balancer set."""
        for endpoint in sorted(self.endpoints, key=lambda e: e.name):
            if endpoint.is_load_balanced:
                return endpoint
        return None


@dataclass(frozen=True)
class LoadBalancedEndpointConfig:
    """Endpoint, load-balancer set and availability set shared by every instance."""

    endpoint_name: str
    protocol: str
    local_port: int
    public_port: int
    lb_set_name: str
    availability_set_name: str
    direct_server_return: bool = False

    @classmethod
    def derive(
        cls,
        endpoint_name: str,
        protocol: str,
        local_port: int,
        public_port: int,
        direct_server_return: bool = False,
    ) -> LoadBalancedEndpointConfig:
        return cls(
            endpoint_name=endpoint_name,
            protocol=protocol.lower(),
            local_port=local_port,
            public_port=public_port,
            lb_set_name=lb_set_name_for(endpoint_name),
            availability_set_name=availability_set_name_for(endpoint_name),
            direct_server_return=direct_server_return,
        )

    @classmethod
    def from_template(cls, endpoint: Endpoint, availability_set_name: str | None) -> LoadBalancedEndpointConfig:
        """Reuse an existing instance's endpoint and availability set.

        Falls back to the derived availability set name when the template
        instance is not in one.
        """
        return cls(
            endpoint_name=endpoint.name,
            protocol=endpoint.protocol.lower(),
            local_port=endpoint.local_port,
            public_port=endpoint.public_port,
            lb_set_name=endpoint.lb_set_name or lb_set_name_for(endpoint.name),
            availability_set_name=availability_set_name or availability_set_name_for(endpoint.name),
            direct_server_return=endpoint.direct_server_return,
        )


@dataclass(frozen=True)
class NewDeployment:
    """Create a service and its first instances from caller-supplied settings."""

    service_name: str
    computer_name_base: str
    instance_size: str
    location: str
    affinity_group_name: str
    endpoint_name: str
    endpoint_protocol: str
    endpoint_public_port: int
    endpoint_local_port: int
    instance_count: int = DEFAULT_INSTANCE_COUNT
    image_family: str | None = None
    image_publisher: str | None = None


@dataclass(frozen=True)
class AppendDeployment:
    """Add instances to an existing service, copying its configuration."""

    service_name: str
    computer_name_base: str
    instance_count: int = DEFAULT_INSTANCE_COUNT


DeploymentMode = NewDeployment | AppendDeployment


@dataclass(frozen=True)
class DeploymentRequest:
    """Fully resolved request, ready to hand to the instance provisioner."""

    service_name: str
    computer_name_base: str
    instance_size: str
    location: str
    endpoint: LoadBalancedEndpointConfig
    image_name: str
    instance_count: int
    mode: str  # "new" or "existing"
    affinity_group_name: str | None = None


@dataclass(frozen=True)
class ExistingState:
    """What the inspector learned about a deployment that already has instances."""

    next_index: int
    template: InstanceRecord
    endpoint: LoadBalancedEndpointConfig
    instances: tuple[InstanceRecord, ...] = ()


@dataclass(frozen=True)
class ProbeSpec:
    protocol: str
    port: int


@dataclass(frozen=True)
class AdminCredential:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class InstanceConfiguration:
    """Everything needed to create one instance."""

    name: str
    index: int
    service_name: str
    location: str
    instance_size: str
    image_name: str
    availability_set_name: str
    load_balanced_endpoint: Endpoint
    probe: ProbeSpec
    direct_endpoint: Endpoint
    credential: AdminCredential
    affinity_group_name: str | None = None

    @property
    def endpoints(self) -> frozenset[Endpoint]:
        return frozenset({self.load_balanced_endpoint, self.direct_endpoint})

    def to_record(self) -> InstanceRecord:
        return InstanceRecord(
            name=self.name,
            instance_size=self.instance_size,
            source_image_name=self.image_name,
            availability_set_name=self.availability_set_name,
            endpoints=self.endpoints,
        )


@dataclass(frozen=True)
class ServiceInfo:
    name: str
    location: str
    affinity_group_name: str | None = None


@dataclass(frozen=True)
class AffinityGroup:
    name: str
    location: str


@dataclass
class BatchResult:
    """Outcome of a best-effort batch: created instances plus per-instance failures."""

    created: list[InstanceRecord] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed
