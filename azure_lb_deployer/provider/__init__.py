"""Provider-agnostic Protocols for the control plane and for credentials."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..models import (
        AdminCredential,
        AffinityGroup,
        ImageReference,
        InstanceConfiguration,
        InstanceRecord,
        ServiceInfo,
    )


@runtime_checkable
class CloudProvider(Protocol):
    """Protocol that every control-plane backend must satisfy.

    Lookups return ``None`` for absent resources. Create calls raise
    ``ProvisioningError`` on failure and block until the resource is ready.
    """

    def get_storage_account_location(self) -> str:
        """Location of the storage account the deployment writes disks to."""
        ...

    def list_images(self, location: str) -> list[ImageReference]:
        """Return the full OS image catalog visible in ``location``."""
        ...

    def get_affinity_group(self, name: str) -> AffinityGroup | None:
        ...

    def create_affinity_group(self, name: str, location: str) -> AffinityGroup:
        ...

    def get_service(self, service_name: str) -> ServiceInfo | None:
        ...

    def create_service(self, service_name: str, location: str, affinity_group_name: str | None) -> ServiceInfo:
        ...

    def list_instances(self, service_name: str) -> list[InstanceRecord]:
        """Return every instance in the service with its endpoints."""
        ...

    def create_instance(self, config: InstanceConfiguration) -> InstanceRecord:
        """Create one instance and wait until it has booted."""
        ...


@runtime_checkable
class CredentialProvider(Protocol):
    """Supplies the administrator credential for new instances."""

    def get_credential(self) -> AdminCredential:
        ...
