"""Custom exception hierarchy for the load-balanced deployment tool."""


class DeployerError(Exception):
    """Base exception for all deployer errors."""


class ConfigurationError(DeployerError):
    """Bad or contradictory input, e.g. a location that does not match the storage account."""


class ConfigError(ConfigurationError):
    """Invalid or missing configuration file values."""


class ConflictError(ConfigurationError):
    """A new deployment was requested where matching instances already exist."""


class ResolutionError(DeployerError):
    """An image or inventory item could not be found."""


class StateError(DeployerError):
    """Existing resources are in a shape the deployer cannot extend."""


class ParseError(DeployerError):
    """An instance name does not follow the ``<base><digits>`` convention."""


class ProvisioningError(DeployerError):
    """A create call against the cloud provider failed."""

    def __init__(self, message: str, resource_name: str | None = None):
        super().__init__(message)
        self.resource_name = resource_name
