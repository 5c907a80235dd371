"""Checks that must pass before any resource is created."""

from __future__ import annotations

import logging

from ..exceptions import ConfigurationError
from ..provider import CloudProvider

logger = logging.getLogger(__name__)


def normalize_location(location: str) -> str:
    """'West US' and 'westus' name the same region."""
    return location.replace(" ", "").lower()


def validate_location(provider: CloudProvider, location: str, log: logging.Logger = logger) -> None:
    """Fail unless ``location`` is the storage account's location."""
    storage_location = provider.get_storage_account_location()
    if normalize_location(storage_location) != normalize_location(location):
        raise ConfigurationError(
            f"Location '{location}' does not match the storage account location '{storage_location}'"
        )
    log.debug("Location %s matches the storage account", location, extra={"location": location})
