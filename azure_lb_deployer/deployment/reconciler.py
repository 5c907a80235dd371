"""Decides between a new and an appended deployment and drives provisioning."""

from __future__ import annotations

import logging
from enum import Enum

from ..config import ImagesConfig
from ..exceptions import ConfigurationError, ConflictError, ResolutionError, StateError
from ..models import (
    DEFAULT_DIRECT_PORT_BASE,
    VALID_PROTOCOLS,
    AppendDeployment,
    BatchResult,
    DeploymentMode,
    DeploymentRequest,
    LoadBalancedEndpointConfig,
    NewDeployment,
)
from ..provider import CloudProvider, CredentialProvider
from .affinity import ensure_affinity_group
from .images import resolve_latest_image
from .inspector import inspect_existing, matching_instances
from .preconditions import validate_location
from .provisioner import ensure_service, provision_batch

logger = logging.getLogger(__name__)


class ReconcileState(Enum):
    UNINITIALIZED = "uninitialized"
    NEW_DEPLOYMENT = "new_deployment"
    APPEND_DEPLOYMENT = "append_deployment"
    PROVISIONING = "provisioning"
    DONE = "done"


_TRANSITIONS: dict[ReconcileState, frozenset[ReconcileState]] = {
    ReconcileState.UNINITIALIZED: frozenset({ReconcileState.NEW_DEPLOYMENT, ReconcileState.APPEND_DEPLOYMENT}),
    ReconcileState.NEW_DEPLOYMENT: frozenset({ReconcileState.PROVISIONING}),
    ReconcileState.APPEND_DEPLOYMENT: frozenset({ReconcileState.PROVISIONING}),
    ReconcileState.PROVISIONING: frozenset({ReconcileState.DONE}),
    ReconcileState.DONE: frozenset(),
}


class Reconciler:
    """Brings a load-balanced service to the requested number of new instances.

    One Reconciler handles one invocation. Every check that can fail fatally
    runs before the first create call, so a rejected request leaves the
    provider untouched.
    """

    def __init__(
        self,
        provider: CloudProvider,
        credentials: CredentialProvider,
        images: ImagesConfig | None = None,
        direct_port_base: int = DEFAULT_DIRECT_PORT_BASE,
        log: logging.Logger | None = None,
    ):
        self._provider = provider
        self._credentials = credentials
        self._images = images or ImagesConfig()
        self._direct_port_base = direct_port_base
        self._log = log or logger
        self._state = ReconcileState.UNINITIALIZED

    @property
    def state(self) -> ReconcileState:
        return self._state

    def reconcile(self, mode: DeploymentMode) -> BatchResult:
        """Resolve ``mode`` into a full request and create the instances."""
        request, start_index = self.resolve(mode)

        if isinstance(mode, NewDeployment):
            ensure_affinity_group(self._provider, mode.affinity_group_name, mode.location, self._log)

        self._transition(ReconcileState.PROVISIONING)
        ensure_service(self._provider, request, self._log)
        credential = self._credentials.get_credential()

        result = provision_batch(
            self._provider,
            request,
            start_index,
            request.instance_count,
            credential,
            direct_port_base=self._direct_port_base,
            log=self._log,
        )
        self._transition(ReconcileState.DONE)
        return result

    def resolve(self, mode: DeploymentMode) -> tuple[DeploymentRequest, int]:
        """Return the fully populated request and the first index to create."""
        if isinstance(mode, NewDeployment):
            return self._resolve_new(mode)
        if isinstance(mode, AppendDeployment):
            return self._resolve_append(mode)
        raise TypeError(f"Unsupported deployment mode: {type(mode).__name__}")

    # ── New deployment ──────────────────────────────────────────────

    def _resolve_new(self, mode: NewDeployment) -> tuple[DeploymentRequest, int]:
        _check_new_deployment(mode)
        validate_location(self._provider, mode.location, self._log)

        existing = self._existing_names(mode.service_name, mode.computer_name_base)
        if existing:
            raise ConflictError(
                f"Service '{mode.service_name}' already has {len(existing)} instances named "
                f"'{mode.computer_name_base}*'; use append mode to add to an existing deployment"
            )
        self._transition(ReconcileState.NEW_DEPLOYMENT)

        image = resolve_latest_image(
            self._provider.list_images(mode.location),
            mode.image_family or self._images.family,
            mode.image_publisher or self._images.publisher or None,
            self._log,
        )
        endpoint = LoadBalancedEndpointConfig.derive(
            mode.endpoint_name,
            mode.endpoint_protocol,
            mode.endpoint_local_port,
            mode.endpoint_public_port,
        )
        request = DeploymentRequest(
            service_name=mode.service_name,
            computer_name_base=mode.computer_name_base,
            instance_size=mode.instance_size,
            location=mode.location,
            endpoint=endpoint,
            image_name=image.image_name,
            instance_count=mode.instance_count,
            mode="new",
            affinity_group_name=mode.affinity_group_name,
        )
        return request, 1

    # ── Append to an existing deployment ────────────────────────────

    def _resolve_append(self, mode: AppendDeployment) -> tuple[DeploymentRequest, int]:
        if mode.instance_count < 1:
            raise ConfigurationError("instance_count must be >= 1")

        service = self._provider.get_service(mode.service_name)
        if service is None:
            raise ResolutionError(f"Service '{mode.service_name}' does not exist")
        validate_location(self._provider, service.location, self._log)

        existing = inspect_existing(self._provider, mode.service_name, mode.computer_name_base, self._log)
        if existing is None:
            raise ResolutionError(
                f"Service '{mode.service_name}' has no instances named '{mode.computer_name_base}*' to copy"
            )
        template = existing.template
        if not template.source_image_name:
            raise ResolutionError(
                f"Instance '{template.name}' has no source image to copy; it was not created from an image"
            )
        self._transition(ReconcileState.APPEND_DEPLOYMENT)

        request = DeploymentRequest(
            service_name=mode.service_name,
            computer_name_base=mode.computer_name_base,
            instance_size=template.instance_size,
            location=service.location,
            endpoint=existing.endpoint,
            image_name=template.source_image_name,
            instance_count=mode.instance_count,
            mode="existing",
            affinity_group_name=service.affinity_group_name,
        )
        return request, existing.next_index

    def _existing_names(self, service_name: str, computer_name_base: str) -> list[str]:
        """Names already taken under ``computer_name_base``, whatever their shape."""
        if self._provider.get_service(service_name) is None:
            return []
        instances = self._provider.list_instances(service_name)
        return [inst.name for inst in matching_instances(instances, computer_name_base)]

    def _transition(self, target: ReconcileState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise StateError(f"Invalid transition {self._state.value} -> {target.value}")
        self._log.debug("State %s -> %s", self._state.value, target.value)
        self._state = target


def _check_new_deployment(mode: NewDeployment) -> None:
    """Reject incomplete or contradictory new-deployment input."""
    required = {
        "service_name": mode.service_name,
        "computer_name_base": mode.computer_name_base,
        "instance_size": mode.instance_size,
        "location": mode.location,
        "affinity_group_name": mode.affinity_group_name,
        "endpoint_name": mode.endpoint_name,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise ConfigurationError(f"Missing required settings for a new deployment: {', '.join(missing)}")

    if mode.endpoint_protocol.lower() not in VALID_PROTOCOLS:
        raise ConfigurationError(f"endpoint_protocol must be one of {', '.join(VALID_PROTOCOLS)}")

    for name, port in (("endpoint_public_port", mode.endpoint_public_port),
                       ("endpoint_local_port", mode.endpoint_local_port)):
        if not 1 <= port <= 65535:
            raise ConfigurationError(f"{name} must be between 1 and 65535, got {port}")

    if mode.instance_count < 1:
        raise ConfigurationError("instance_count must be >= 1")
