"""Affinity group lookup and creation."""

from __future__ import annotations

import logging

from ..models import AffinityGroup
from ..provider import CloudProvider
from .preconditions import normalize_location

logger = logging.getLogger(__name__)


def ensure_affinity_group(
    provider: CloudProvider, name: str, location: str, log: logging.Logger = logger,
) -> AffinityGroup:
    """Create the affinity group if it does not already exist.

    An existing group in another location is tolerated with a warning, never
    moved. Creation failures propagate as ``ProvisioningError``.
    """
    existing = provider.get_affinity_group(name)
    if existing is None:
        log.info("Creating affinity group %s in %s", name, location, extra={"location": location})
        return provider.create_affinity_group(name, location)

    if normalize_location(existing.location) != normalize_location(location):
        log.warning(
            "Affinity group %s is in %s, not %s; leaving it as is",
            name, existing.location, location,
            extra={"location": location},
        )
    else:
        log.debug("Affinity group %s already exists", name)
    return existing
