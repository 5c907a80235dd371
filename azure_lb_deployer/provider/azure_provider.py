"""Azure Resource Manager backend for the deployment reconciler.

Classic concepts map onto ARM resources as follows: the service is a
Standard Load Balancer (plus its public IP), an affinity group is a
proximity placement group, a load-balancer set is a backend pool with its
rule and probe, and each direct endpoint is an inbound NAT rule.
"""

from __future__ import annotations

import logging
import time

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import AzureCliCredential, DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.network.models import (
    BackendAddressPool,
    InboundNatRule,
    LoadBalancingRule,
    Probe,
    SubResource,
)
from azure.mgmt.resource.resources import ResourceManagementClient

from ..config import AzureConfig, ImagesConfig, ProvisioningConfig
from ..exceptions import ProvisioningError, ResolutionError
from ..models import (
    AffinityGroup,
    Endpoint,
    ImageReference,
    InstanceConfiguration,
    InstanceRecord,
    ServiceInfo,
)

logger = logging.getLogger(__name__)

STORAGE_API_VERSION = "2023-01-01"
FRONTEND_NAME = "frontend"
AFFINITY_GROUP_TAG = "lbdeployer:affinityGroup"
SERVICE_TAG = "lbdeployer:service"

_TRANSPORT = {"tcp": "Tcp", "udp": "Udp"}


def _protocol_name(value) -> str:
    """SDK enums and plain strings both become "tcp" / "udp"."""
    return str(getattr(value, "value", value)).lower()


class AzureProvider:
    """Talks to ARM through the management SDK; one resource group per deployment."""

    def __init__(
        self,
        azure_config: AzureConfig,
        images_config: ImagesConfig,
        provisioning_config: ProvisioningConfig,
    ):
        self._config = azure_config
        self._images = images_config
        self._provisioning = provisioning_config
        self._rg = azure_config.resource_group
        if azure_config.credential_type == "cli":
            self._credential = AzureCliCredential()
        else:
            self._credential = DefaultAzureCredential()
        self._compute = ComputeManagementClient(self._credential, azure_config.subscription_id)
        self._network = NetworkManagementClient(self._credential, azure_config.subscription_id)
        self._resources = ResourceManagementClient(self._credential, azure_config.subscription_id)

    # ── Location / affinity ─────────────────────────────────────────

    def get_storage_account_location(self) -> str:
        name = self._config.storage_account
        try:
            account = self._resources.resources.get(
                self._rg, "Microsoft.Storage", "", "storageAccounts", name, STORAGE_API_VERSION,
            )
        except ResourceNotFoundError as exc:
            raise ResolutionError(f"Storage account '{name}' not found in {self._rg}") from exc
        except AzureError as exc:
            raise ResolutionError(f"Could not read storage account '{name}': {exc}") from exc
        return account.location

    def get_affinity_group(self, name: str) -> AffinityGroup | None:
        try:
            group = self._compute.proximity_placement_groups.get(self._rg, name)
        except ResourceNotFoundError:
            return None
        except AzureError as exc:
            raise ResolutionError(f"Could not read affinity group '{name}': {exc}") from exc
        return AffinityGroup(name=group.name, location=group.location)

    def create_affinity_group(self, name: str, location: str) -> AffinityGroup:
        try:
            group = self._compute.proximity_placement_groups.create_or_update(
                self._rg, name, {"location": location, "proximity_placement_group_type": "Standard"},
            )
        except AzureError as exc:
            raise ProvisioningError(f"Could not create affinity group '{name}': {exc}", name) from exc
        return AffinityGroup(name=group.name, location=group.location)

    # ── Image catalog ───────────────────────────────────────────────

    def list_images(self, location: str) -> list[ImageReference]:
        """Enumerate every version of every offer/sku of the configured publishers."""
        images: list[ImageReference] = []
        images_api = self._compute.virtual_machine_images
        try:
            for publisher in self._images.publishers:
                for offer in images_api.list_offers(location, publisher):
                    for sku in images_api.list_skus(location, publisher, offer.name):
                        for version in images_api.list(location, publisher, offer.name, sku.name):
                            images.append(ImageReference(
                                family=f"{offer.name} {sku.name}",
                                publisher=publisher,
                                published_date=version.name,
                                image_name=f"{publisher}:{offer.name}:{sku.name}:{version.name}",
                            ))
        except AzureError as exc:
            raise ResolutionError(f"Could not list images in {location}: {exc}") from exc

        logger.debug("Image catalog for %s has %d entries", location, len(images))
        return images

    # ── Service (load balancer) ─────────────────────────────────────

    def get_service(self, service_name: str) -> ServiceInfo | None:
        try:
            lb = self._get_load_balancer(service_name)
        except AzureError as exc:
            raise ResolutionError(f"Could not read service '{service_name}': {exc}") from exc
        if lb is None:
            return None
        tags = lb.tags or {}
        return ServiceInfo(name=lb.name, location=lb.location, affinity_group_name=tags.get(AFFINITY_GROUP_TAG))

    def create_service(self, service_name: str, location: str, affinity_group_name: str | None) -> ServiceInfo:
        tags = {AFFINITY_GROUP_TAG: affinity_group_name} if affinity_group_name else {}
        try:
            pip = self._network.public_ip_addresses.begin_create_or_update(
                self._rg,
                f"{service_name}-ip",
                {
                    "location": location,
                    "sku": {"name": "Standard"},
                    "public_ip_allocation_method": "Static",
                    "dns_settings": {"domain_name_label": service_name.lower()},
                    "tags": tags,
                },
            ).result()
            lb = self._network.load_balancers.begin_create_or_update(
                self._rg,
                service_name,
                {
                    "location": location,
                    "sku": {"name": "Standard"},
                    "frontend_ip_configurations": [
                        {"name": FRONTEND_NAME, "public_ip_address": {"id": pip.id}},
                    ],
                    "tags": tags,
                },
            ).result()
        except AzureError as exc:
            raise ProvisioningError(f"Could not create service '{service_name}': {exc}", service_name) from exc
        return ServiceInfo(name=lb.name, location=lb.location, affinity_group_name=affinity_group_name)

    # ── Inventory ───────────────────────────────────────────────────

    def list_instances(self, service_name: str) -> list[InstanceRecord]:
        """Instances whose NIC is in one of the service's pools or NAT rules."""
        try:
            records = self._collect_instances(service_name)
        except AzureError as exc:
            raise ResolutionError(f"Could not list instances of '{service_name}': {exc}") from exc

        logger.debug("Service %s has %d instances", service_name, len(records), extra={"service": service_name})
        return records

    def _collect_instances(self, service_name: str) -> list[InstanceRecord]:
        lb = self._get_load_balancer(service_name)
        if lb is None:
            return []

        pools = {p.id.lower(): p.name for p in (lb.backend_address_pools or [])}
        rule_endpoints: dict[str, list[Endpoint]] = {}
        for rule in lb.load_balancing_rules or []:
            if not rule.backend_address_pool:
                continue
            if _protocol_name(rule.protocol) not in _TRANSPORT:
                # HA-ports rules (protocol All) have no single endpoint to copy
                logger.warning("Ignoring rule %s of %s: protocol %s", rule.name, lb.name, rule.protocol)
                continue
            pool_id = rule.backend_address_pool.id.lower()
            rule_endpoints.setdefault(pool_id, []).append(Endpoint(
                name=rule.name,
                protocol=_protocol_name(rule.protocol),
                local_port=rule.backend_port,
                public_port=rule.frontend_port,
                lb_set_name=pools.get(pool_id),
                direct_server_return=bool(rule.enable_floating_ip),
            ))
        nat_endpoints = {
            nat.id.lower(): Endpoint(
                name=nat.name.rsplit("-", 1)[-1],
                protocol=_protocol_name(nat.protocol),
                local_port=nat.backend_port,
                public_port=nat.frontend_port,
            )
            for nat in (lb.inbound_nat_rules or [])
            if _protocol_name(nat.protocol) in _TRANSPORT
        }

        records: list[InstanceRecord] = []
        for vm in self._compute.virtual_machines.list(self._rg):
            endpoints: set[Endpoint] = set()
            for ip_config in self._vm_ip_configurations(vm):
                for pool_ref in ip_config.load_balancer_backend_address_pools or []:
                    endpoints.update(rule_endpoints.get(pool_ref.id.lower(), []))
                for nat_ref in ip_config.load_balancer_inbound_nat_rules or []:
                    if nat_ref.id.lower() in nat_endpoints:
                        endpoints.add(nat_endpoints[nat_ref.id.lower()])
            if not endpoints:
                continue

            records.append(InstanceRecord(
                name=vm.name,
                instance_size=vm.hardware_profile.vm_size,
                source_image_name=self._image_name(vm),
                availability_set_name=self._name_from_id(vm.availability_set.id) if vm.availability_set else None,
                endpoints=frozenset(endpoints),
            ))
        return records

    # ── Instance creation ───────────────────────────────────────────

    def create_instance(self, config: InstanceConfiguration) -> InstanceRecord:
        image_reference = self._image_reference(config.image_name)
        for endpoint in (config.load_balanced_endpoint, config.direct_endpoint):
            if endpoint.protocol not in _TRANSPORT:
                raise ProvisioningError(
                    f"Endpoint '{endpoint.name}' of '{config.name}' uses unsupported protocol '{endpoint.protocol}'",
                    config.name,
                )

        try:
            availability_set_id = self._ensure_availability_set(config)
            pool_id, nat_rule_id = self._ensure_load_balancer_rules(config)
            nic = self._network.network_interfaces.begin_create_or_update(
                self._rg,
                f"{config.name}-nic",
                {
                    "location": config.location,
                    "ip_configurations": [{
                        "name": "ipconfig1",
                        "subnet": {"id": self._subnet_id()},
                        "load_balancer_backend_address_pools": [{"id": pool_id}],
                        "load_balancer_inbound_nat_rules": [{"id": nat_rule_id}],
                    }],
                },
            ).result()

            vm_params = {
                "location": config.location,
                "tags": {SERVICE_TAG: config.service_name},
                "hardware_profile": {"vm_size": config.instance_size},
                "storage_profile": {"image_reference": image_reference},
                "os_profile": {
                    "computer_name": config.name,
                    "admin_username": config.credential.username,
                    "admin_password": config.credential.password,
                },
                "network_profile": {"network_interfaces": [{"id": nic.id}]},
                "availability_set": {"id": availability_set_id},
            }
            if config.affinity_group_name:
                vm_params["proximity_placement_group"] = {"id": self._affinity_group_id(config.affinity_group_name)}

            self._compute.virtual_machines.begin_create_or_update(self._rg, config.name, vm_params).result()
        except AzureError as exc:
            raise ProvisioningError(f"Could not create instance '{config.name}': {exc}", config.name) from exc

        self._wait_until_running(config.name)
        return config.to_record()

    def _ensure_availability_set(self, config: InstanceConfiguration) -> str:
        name = config.availability_set_name
        try:
            return self._compute.availability_sets.get(self._rg, name).id
        except ResourceNotFoundError:
            pass

        logger.info("Creating availability set %s", name, extra={"service": config.service_name})
        params = {
            "location": config.location,
            "sku": {"name": "Aligned"},
            "platform_fault_domain_count": 2,
            "platform_update_domain_count": 5,
        }
        if config.affinity_group_name:
            params["proximity_placement_group"] = {"id": self._affinity_group_id(config.affinity_group_name)}
        return self._compute.availability_sets.create_or_update(self._rg, name, params).id

    def _ensure_load_balancer_rules(self, config: InstanceConfiguration) -> tuple[str, str]:
        """Add the pool, probe, rule and this instance's NAT rule; return (pool id, NAT rule id)."""
        lb = self._get_load_balancer(config.service_name)
        if lb is None:
            raise ProvisioningError(f"Service '{config.service_name}' does not exist", config.service_name)

        primary = config.load_balanced_endpoint
        direct = config.direct_endpoint
        frontend = SubResource(id=self._frontend_id(lb))
        pool_id = f"{lb.id}/backendAddressPools/{primary.lb_set_name}"
        probe_name = f"{primary.lb_set_name}-probe"
        nat_name = f"{config.name}-{direct.name}"
        changed = False

        pools = lb.backend_address_pools = list(lb.backend_address_pools or [])
        if not any(p.name == primary.lb_set_name for p in pools):
            pools.append(BackendAddressPool(name=primary.lb_set_name))
            changed = True

        probes = lb.probes = list(lb.probes or [])
        if not any(p.name == probe_name for p in probes):
            # ARM probes have no UDP flavour; a TCP probe on the same port stands in
            probes.append(Probe(
                name=probe_name,
                protocol="Tcp",
                port=config.probe.port,
                interval_in_seconds=15,
                number_of_probes=2,
            ))
            changed = True

        rules = lb.load_balancing_rules = list(lb.load_balancing_rules or [])
        if not any(r.name == primary.name for r in rules):
            rules.append(LoadBalancingRule(
                name=primary.name,
                protocol=_TRANSPORT[primary.protocol],
                frontend_port=primary.public_port,
                backend_port=primary.local_port,
                frontend_ip_configuration=frontend,
                backend_address_pool=SubResource(id=pool_id),
                probe=SubResource(id=f"{lb.id}/probes/{probe_name}"),
                enable_floating_ip=primary.direct_server_return,
            ))
            changed = True

        nat_rules = lb.inbound_nat_rules = list(lb.inbound_nat_rules or [])
        if not any(n.name == nat_name for n in nat_rules):
            nat_rules.append(InboundNatRule(
                name=nat_name,
                protocol=_TRANSPORT[direct.protocol],
                frontend_port=direct.public_port,
                backend_port=direct.local_port,
                frontend_ip_configuration=frontend,
            ))
            changed = True

        if changed:
            logger.debug("Updating load balancer %s for %s", lb.name, config.name, extra={"instance": config.name})
            self._network.load_balancers.begin_create_or_update(self._rg, lb.name, lb).result()

        return pool_id, f"{lb.id}/inboundNatRules/{nat_name}"

    def _wait_until_running(self, vm_name: str) -> None:
        """Poll the instance view until the VM reports PowerState/running."""
        deadline = time.monotonic() + self._provisioning.boot_timeout_seconds
        while True:
            try:
                view = self._compute.virtual_machines.instance_view(self._rg, vm_name)
            except AzureError as exc:
                raise ProvisioningError(f"Could not read state of '{vm_name}': {exc}", vm_name) from exc

            codes = [(s.code or "").lower() for s in (view.statuses or [])]
            if "powerstate/running" in codes:
                return
            if "provisioningstate/failed" in codes:
                raise ProvisioningError(f"Instance '{vm_name}' failed to provision", vm_name)
            if time.monotonic() >= deadline:
                raise ProvisioningError(f"Instance '{vm_name}' did not start in time", vm_name)

            logger.debug("Waiting for %s to boot (%s)", vm_name, ", ".join(codes), extra={"instance": vm_name})
            time.sleep(self._provisioning.boot_poll_seconds)

    # ── Helpers ──────────────────────────────────────────────────────

    def _get_load_balancer(self, name: str):
        try:
            return self._network.load_balancers.get(self._rg, name)
        except ResourceNotFoundError:
            return None

    def _vm_ip_configurations(self, vm) -> list:
        """IP configurations of every NIC attached to the VM."""
        configs: list = []
        if not vm.network_profile or not vm.network_profile.network_interfaces:
            return configs

        for nic_ref in vm.network_profile.network_interfaces:
            nic_rg = self._resource_group_from_id(nic_ref.id) or self._rg
            try:
                nic = self._network.network_interfaces.get(nic_rg, self._name_from_id(nic_ref.id))
            except ResourceNotFoundError:
                logger.debug("NIC %s of %s is gone", nic_ref.id, vm.name)
                continue
            configs.extend(nic.ip_configurations or [])
        return configs

    @staticmethod
    def _frontend_id(lb) -> str:
        configs = lb.frontend_ip_configurations or []
        if configs:
            return configs[0].id
        return f"{lb.id}/frontendIPConfigurations/{FRONTEND_NAME}"

    def _subnet_id(self) -> str:
        subnet = self._network.subnets.get(self._rg, self._config.virtual_network, self._config.subnet)
        return subnet.id

    def _affinity_group_id(self, name: str) -> str:
        return (
            f"/subscriptions/{self._config.subscription_id}/resourceGroups/{self._rg}"
            f"/providers/Microsoft.Compute/proximityPlacementGroups/{name}"
        )

    @staticmethod
    def _image_reference(image_name: str) -> dict[str, str]:
        """Accept either a marketplace URN (publisher:offer:sku:version) or a resource ID."""
        if image_name.startswith("/"):
            return {"id": image_name}
        parts = image_name.split(":")
        if len(parts) != 4:
            raise ResolutionError(f"Image '{image_name}' is neither a URN nor a resource ID")
        publisher, offer, sku, version = parts
        return {"publisher": publisher, "offer": offer, "sku": sku, "version": version}

    @staticmethod
    def _image_name(vm) -> str:
        ref = vm.storage_profile.image_reference if vm.storage_profile else None
        if ref is None:
            return ""
        if ref.id:
            return ref.id
        version = ref.exact_version or ref.version
        return f"{ref.publisher}:{ref.offer}:{ref.sku}:{version}"

    @staticmethod
    def _name_from_id(resource_id: str) -> str:
        return resource_id.rstrip("/").split("/")[-1]

    @staticmethod
    def _resource_group_from_id(resource_id: str) -> str:
        """Extract the resource group name from an Azure resource ID."""
        parts = resource_id.split("/")
        for i, part in enumerate(parts):
            if part.lower() == "resourcegroups" and i + 1 < len(parts):
                return parts[i + 1]
        return ""
