"""Shared fixtures: an in-memory control plane for reconciler scenarios."""

from __future__ import annotations

import logging

import pytest

from azure_lb_deployer.credentials import StaticCredentialProvider
from azure_lb_deployer.exceptions import ProvisioningError
from azure_lb_deployer.models import (
    AdminCredential,
    AffinityGroup,
    Endpoint,
    ImageReference,
    InstanceConfiguration,
    InstanceRecord,
    ServiceInfo,
)

CATALOG = [
    ImageReference("Windows Server 2019 Datacenter", "Microsoft Windows Server Group", "2023-01-10", "win2019-jan"),
    ImageReference("Windows Server 2022 Datacenter", "Microsoft Windows Server Group", "2023-03-14", "win2022-mar"),
    ImageReference("Windows Server 2022 Datacenter", "Microsoft Windows Server Group", "2023-06-13", "win2022-jun"),
    ImageReference("Ubuntu Server 22.04 LTS", "Canonical", "2023-07-01", "ubuntu-2204-jul"),
]


class FakeProvider:
    """In-memory CloudProvider that records every mutating call."""

    def __init__(self, storage_location="westus", images=None):
        self.storage_location = storage_location
        self.images = list(CATALOG if images is None else images)
        self.affinity_groups: dict[str, AffinityGroup] = {}
        self.services: dict[str, ServiceInfo] = {}
        self.instances: dict[str, list[InstanceRecord]] = {}
        self.created: list[InstanceConfiguration] = []
        self.mutations: list[tuple] = []
        self.fail_instances: set[str] = set()
        self.fail_affinity = False

    # seeding helpers

    def add_service(self, name, location="westus", affinity_group=None):
        self.services[name] = ServiceInfo(name, location, affinity_group)
        self.instances.setdefault(name, [])

    def add_instance(self, service, record):
        self.instances.setdefault(service, []).append(record)

    # CloudProvider

    def get_storage_account_location(self):
        return self.storage_location

    def list_images(self, location):
        return list(self.images)

    def get_affinity_group(self, name):
        return self.affinity_groups.get(name)

    def create_affinity_group(self, name, location):
        self.mutations.append(("create_affinity_group", name, location))
        if self.fail_affinity:
            raise ProvisioningError(f"Could not create affinity group '{name}'", name)
        group = AffinityGroup(name, location)
        self.affinity_groups[name] = group
        return group

    def get_service(self, service_name):
        return self.services.get(service_name)

    def create_service(self, service_name, location, affinity_group_name):
        self.mutations.append(("create_service", service_name, location, affinity_group_name))
        self.add_service(service_name, location, affinity_group_name)
        return self.services[service_name]

    def list_instances(self, service_name):
        return list(self.instances.get(service_name, []))

    def create_instance(self, config):
        self.mutations.append(("create_instance", config.name))
        if config.name in self.fail_instances:
            raise ProvisioningError(f"Could not create instance '{config.name}'", config.name)
        self.created.append(config)
        record = config.to_record()
        self.add_instance(config.service_name, record)
        return record


def lb_instance(name, lb_set="LBhttp", endpoint="http", size="Standard_D2s_v5",
                image="win2022-mar", availability_set="httpavailability", public_port=80, local_port=8080):
    """An existing instance with a load-balanced endpoint."""
    return InstanceRecord(
        name=name,
        instance_size=size,
        source_image_name=image,
        availability_set_name=availability_set,
        endpoints=frozenset({
            Endpoint(endpoint, "tcp", local_port, public_port, lb_set_name=lb_set),
            Endpoint("directInstancePort", "tcp", local_port, 30000 + int(name[-1])),
        }),
    )


@pytest.fixture(autouse=True)
def restore_root_logger():
    """configure_logging replaces root handlers; undo it after each test."""
    root = logging.getLogger()
    level, handlers = root.level, root.handlers[:]
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def credential():
    return AdminCredential("azureuser", "S3cret!pass")


@pytest.fixture
def credentials(credential):
    return StaticCredentialProvider(credential)
