"""Administrator credential providers (configured or interactive)."""

from __future__ import annotations

import getpass
import logging
from typing import Callable

from .config import AdminConfig
from .exceptions import ConfigurationError
from .models import AdminCredential

logger = logging.getLogger(__name__)


class StaticCredentialProvider:
    """Returns a fixed credential, e.g. one interpolated from the environment."""

    def __init__(self, credential: AdminCredential):
        self._credential = credential

    def get_credential(self) -> AdminCredential:
        return self._credential


class PromptCredentialProvider:
    """Asks for the administrator password on the terminal, once per run."""

    def __init__(self, username: str, prompt: Callable[[str], str] = getpass.getpass):
        self._username = username
        self._prompt = prompt
        self._cached: AdminCredential | None = None

    def get_credential(self) -> AdminCredential:
        if self._cached is not None:
            return self._cached

        password = self._prompt(f"Administrator password for '{self._username}': ")
        if not password:
            raise ConfigurationError("An administrator password is required")

        self._cached = AdminCredential(username=self._username, password=password)
        return self._cached


def credential_provider_from_config(config: AdminConfig) -> StaticCredentialProvider | PromptCredentialProvider:
    """Use the configured password when set, otherwise prompt."""
    if config.password:
        logger.debug("Using configured administrator credential for %s", config.username)
        return StaticCredentialProvider(AdminCredential(config.username, config.password))
    return PromptCredentialProvider(config.username)
