"""Tests for service creation and batch provisioning."""

from unittest.mock import MagicMock

import pytest

from azure_lb_deployer.deployment.provisioner import build_instance_configuration, ensure_service, provision_batch
from azure_lb_deployer.exceptions import ProvisioningError
from azure_lb_deployer.models import DeploymentRequest, LoadBalancedEndpointConfig


def _request(protocol="tcp", **overrides):
    values = dict(
        service_name="shop",
        computer_name_base="web",
        instance_size="Standard_D2s_v5",
        location="westus",
        endpoint=LoadBalancedEndpointConfig.derive("http", protocol, 8080, 80),
        image_name="win2022-jun",
        instance_count=6,
        mode="new",
        affinity_group_name="shop-ag",
    )
    values.update(overrides)
    return DeploymentRequest(**values)


class TestBuildInstanceConfiguration:
    def test_names_and_ports(self, credential):
        config = build_instance_configuration(_request(), 6, credential)
        assert config.name == "web6"
        assert config.direct_endpoint.public_port == 30006
        assert config.direct_endpoint.local_port == 8080
        assert config.direct_endpoint.lb_set_name is None
        assert config.load_balanced_endpoint.lb_set_name == "LBhttp"
        assert config.load_balanced_endpoint.public_port == 80

    def test_probe_follows_public_port_and_protocol(self, credential):
        config = build_instance_configuration(_request(protocol="udp"), 1, credential)
        assert config.probe.port == 80
        assert config.probe.protocol == "udp"
        assert config.direct_endpoint.protocol == "udp"

    def test_custom_direct_port_base(self, credential):
        config = build_instance_configuration(_request(), 2, credential, direct_port_base=40000)
        assert config.direct_endpoint.public_port == 40002

    def test_record_has_both_endpoints(self, credential):
        record = build_instance_configuration(_request(), 1, credential).to_record()
        assert {e.name for e in record.endpoints} == {"http", "directInstancePort"}
        assert record.availability_set_name == "httpavailability"


class TestEnsureService:
    def test_creates_with_affinity_group(self, provider):
        service = ensure_service(provider, _request())
        assert service.affinity_group_name == "shop-ag"
        assert provider.mutations == [("create_service", "shop", "westus", "shop-ag")]

    def test_existing_service_untouched(self, provider):
        provider.add_service("shop")
        ensure_service(provider, _request())
        assert provider.mutations == []


class TestProvisionBatch:
    def test_sequential_indices(self, provider, credential):
        result = provision_batch(provider, _request(), 4, 3, credential)
        assert [r.name for r in result.created] == ["web4", "web5", "web6"]
        assert [c.direct_endpoint.public_port for c in provider.created] == [30004, 30005, 30006]

    def test_direct_ports_unique(self, provider, credential):
        provision_batch(provider, _request(), 1, 6, credential)
        ports = [c.direct_endpoint.public_port for c in provider.created]
        assert ports == [30001, 30002, 30003, 30004, 30005, 30006]
        assert len(set(ports)) == 6

    def test_failure_is_best_effort(self, provider, credential):
        provider.fail_instances = {"web1", "web3"}
        result = provision_batch(provider, _request(), 1, 4, credential)
        assert [r.name for r in result.created] == ["web2", "web4"]
        assert set(result.failed) == {"web1", "web3"}
        assert "web1" in result.failed["web1"]

    def test_unexpected_errors_propagate(self, credential):
        provider = MagicMock()
        provider.create_instance.side_effect = RuntimeError("boom")
        with pytest.raises(RuntimeError, match="boom"):
            provision_batch(provider, _request(), 1, 2, credential)
        assert provider.create_instance.call_count == 1

    def test_zero_count(self, provider, credential):
        result = provision_batch(provider, _request(), 1, 0, credential)
        assert result.ok
        assert result.created == []

    def test_provisioning_error_from_mock(self, credential):
        provider = MagicMock()
        provider.create_instance.side_effect = [ProvisioningError("quota"), MagicMock(name="record")]
        result = provision_batch(provider, _request(), 1, 2, credential)
        assert list(result.failed) == ["web1"]
        assert len(result.created) == 1
