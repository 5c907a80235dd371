"""Creates the service and a batch of load-balanced instances."""

from __future__ import annotations

import logging
import time

from ..exceptions import ProvisioningError
from ..models import (
    DEFAULT_DIRECT_PORT_BASE,
    DIRECT_ENDPOINT_NAME,
    AdminCredential,
    BatchResult,
    DeploymentRequest,
    Endpoint,
    InstanceConfiguration,
    ProbeSpec,
    ServiceInfo,
    direct_port_for,
)
from ..provider import CloudProvider

logger = logging.getLogger(__name__)


def ensure_service(
    provider: CloudProvider, request: DeploymentRequest, log: logging.Logger = logger,
) -> ServiceInfo:
    """Create the service, bound to the request's affinity group, if it is absent."""
    existing = provider.get_service(request.service_name)
    if existing is not None:
        log.debug("Service %s already exists", request.service_name, extra={"service": request.service_name})
        return existing

    log.info(
        "Creating service %s in %s", request.service_name, request.location,
        extra={"service": request.service_name, "location": request.location},
    )
    return provider.create_service(request.service_name, request.location, request.affinity_group_name)


def build_instance_configuration(
    request: DeploymentRequest,
    index: int,
    credential: AdminCredential,
    direct_port_base: int = DEFAULT_DIRECT_PORT_BASE,
) -> InstanceConfiguration:
    """Create payload for instance ``<base><index>``."""
    ep = request.endpoint
    load_balanced = Endpoint(
        name=ep.endpoint_name,
        protocol=ep.protocol,
        local_port=ep.local_port,
        public_port=ep.public_port,
        lb_set_name=ep.lb_set_name,
        direct_server_return=ep.direct_server_return,
    )
    direct = Endpoint(
        name=DIRECT_ENDPOINT_NAME,
        protocol=ep.protocol,
        local_port=ep.local_port,
        public_port=direct_port_for(index, direct_port_base),
    )
    return InstanceConfiguration(
        name=f"{request.computer_name_base}{index}",
        index=index,
        service_name=request.service_name,
        location=request.location,
        instance_size=request.instance_size,
        image_name=request.image_name,
        availability_set_name=ep.availability_set_name,
        load_balanced_endpoint=load_balanced,
        probe=ProbeSpec(protocol=ep.protocol, port=ep.public_port),
        direct_endpoint=direct,
        credential=credential,
        affinity_group_name=request.affinity_group_name,
    )


def provision_batch(
    provider: CloudProvider,
    request: DeploymentRequest,
    start_index: int,
    count: int,
    credential: AdminCredential,
    direct_port_base: int = DEFAULT_DIRECT_PORT_BASE,
    log: logging.Logger = logger,
) -> BatchResult:
    """Create ``count`` instances one at a time, starting at ``start_index``.

    Best-effort: a ProvisioningError on one instance is logged and the
    remaining indices are still attempted. Other errors propagate.
    """
    result = BatchResult()

    for index in range(start_index, start_index + count):
        config = build_instance_configuration(request, index, credential, direct_port_base)
        log.info(
            "Creating instance %s (direct port %d)", config.name, config.direct_endpoint.public_port,
            extra={"service": request.service_name, "instance": config.name, "index": index},
        )
        start = time.monotonic()
        try:
            record = provider.create_instance(config)
        except ProvisioningError as exc:
            log.error(
                "Failed to create instance %s: %s", config.name, exc,
                extra={"service": request.service_name, "instance": config.name, "index": index},
            )
            result.failed[config.name] = str(exc)
            continue

        result.created.append(record)
        log.info(
            "Instance %s is running", config.name,
            extra={
                "service": request.service_name,
                "instance": config.name,
                "index": index,
                "elapsed_seconds": round(time.monotonic() - start, 2),
            },
        )

    log.info(
        "Batch complete: %d created, %d failed", len(result.created), len(result.failed),
        extra={
            "service": request.service_name,
            "created_count": len(result.created),
            "failed_count": len(result.failed),
        },
    )
    return result
