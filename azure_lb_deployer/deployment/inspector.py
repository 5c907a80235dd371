"""Reads an existing deployment to find the next index and the settings to copy."""

from __future__ import annotations

import logging
import re

from ..exceptions import ParseError, StateError
from ..models import ExistingState, InstanceRecord, LoadBalancedEndpointConfig
from ..provider import CloudProvider

logger = logging.getLogger(__name__)


def parse_instance_index(name: str, computer_name_base: str) -> int:
    """Return N for a name of the form ``<base>N``.

    Raises ParseError for anything else, e.g. 'webserver1' under base 'web'.
    """
    match = re.fullmatch(rf"{re.escape(computer_name_base)}(\d+)", name, flags=re.IGNORECASE)
    if match is None:
        raise ParseError(
            f"Instance name '{name}' is not '{computer_name_base}' followed by a number"
        )
    return int(match.group(1))


def next_instance_index(names: list[str], computer_name_base: str) -> int:
    """1 + the highest existing index, or 1 when there are no instances."""
    if not names:
        return 1
    return 1 + max(parse_instance_index(name, computer_name_base) for name in names)


def matching_instances(instances: list[InstanceRecord], computer_name_base: str) -> list[InstanceRecord]:
    prefix = computer_name_base.lower()
    return [inst for inst in instances if inst.name.lower().startswith(prefix)]


def inspect_existing(
    provider: CloudProvider,
    service_name: str,
    computer_name_base: str,
    log: logging.Logger = logger,
) -> ExistingState | None:
    """Inspect instances named after ``computer_name_base`` in the service.

    Returns None for a fresh deployment. Otherwise the first matching
    instance is the template whose endpoint, size, image and availability
    set the new instances copy.
    """
    if provider.get_service(service_name) is None:
        log.debug("Service %s does not exist yet", service_name, extra={"service": service_name})
        return None

    matches = matching_instances(provider.list_instances(service_name), computer_name_base)
    if not matches:
        log.info("No instances named %s* in service %s", computer_name_base, service_name,
                 extra={"service": service_name})
        return None

    next_index = next_instance_index([inst.name for inst in matches], computer_name_base)

    template = matches[0]
    endpoint = template.load_balanced_endpoint()
    if endpoint is None:
        raise StateError(
            f"Instance '{template.name}' has no load-balanced endpoint; "
            f"service '{service_name}' cannot be extended"
        )

    log.info(
        "Found %d existing instances; next index %d, template %s (endpoint %s in %s)",
        len(matches), next_index, template.name, endpoint.name, endpoint.lb_set_name,
        extra={"service": service_name, "instance": template.name, "endpoint": endpoint.name},
    )
    return ExistingState(
        next_index=next_index,
        template=template,
        endpoint=LoadBalancedEndpointConfig.from_template(endpoint, template.availability_set_name),
        instances=tuple(matches),
    )
