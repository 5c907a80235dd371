"""Argument parsing, configuration loading, and deployment bootstrap."""

from __future__ import annotations

import argparse
import logging
import sys

from .config import AppConfig, load_config
from .credentials import credential_provider_from_config
from .deployment.reconciler import Reconciler
from .exceptions import ConfigError, DeployerError
from .logging_config import configure_logging
from .models import VALID_PROTOCOLS, AppendDeployment, DeploymentMode, NewDeployment
from .provider import CloudProvider

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="azure-lb-deployer",
        description="Provision load-balanced VM instances behind a single Azure endpoint",
    )
    parser.add_argument(
        "-c", "--config",
        required=True,
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate the configuration file and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log at DEBUG level for this run",
    )

    sub = parser.add_subparsers(dest="mode", metavar="{new,append}")

    new = sub.add_parser("new", help="Create a new load-balanced deployment")
    _add_common_arguments(new)
    new.add_argument("--instance-size", required=True, help="VM size, e.g. Standard_D2s_v5")
    new.add_argument("--location", required=True, help="Azure region, e.g. westeurope")
    new.add_argument("--affinity-group", required=True, help="Affinity group to place the service in")
    new.add_argument("--endpoint-name", required=True, help="Name of the load-balanced endpoint")
    new.add_argument("--endpoint-protocol", required=True, choices=VALID_PROTOCOLS, type=str.lower)
    new.add_argument("--endpoint-public-port", required=True, type=int)
    new.add_argument("--endpoint-local-port", required=True, type=int)
    new.add_argument("--image-family", help="Image family wildcard (overrides images.family)")
    new.add_argument("--image-publisher", help="Publisher wildcard, e.g. 'Microsoft*' (overrides images.publisher)")

    append = sub.add_parser("append", help="Add instances to an existing deployment")
    _add_common_arguments(append)

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--service-name", required=True, help="Cloud service (load balancer) name")
    parser.add_argument("--computer-name-base", required=True, help="Instance name prefix, e.g. 'web'")
    parser.add_argument(
        "--instance-count",
        type=int,
        default=None,
        help="Number of instances to create (default: provisioning.default_instance_count)",
    )


def build_mode(args: argparse.Namespace, config: AppConfig) -> DeploymentMode:
    """Turn parsed arguments into a NewDeployment or AppendDeployment."""
    count = args.instance_count if args.instance_count is not None else config.provisioning.default_instance_count
    if args.mode == "new":
        return NewDeployment(
            service_name=args.service_name,
            computer_name_base=args.computer_name_base,
            instance_size=args.instance_size,
            location=args.location,
            affinity_group_name=args.affinity_group,
            endpoint_name=args.endpoint_name,
            endpoint_protocol=args.endpoint_protocol,
            endpoint_public_port=args.endpoint_public_port,
            endpoint_local_port=args.endpoint_local_port,
            instance_count=count,
            image_family=args.image_family,
            image_publisher=args.image_publisher,
        )
    return AppendDeployment(
        service_name=args.service_name,
        computer_name_base=args.computer_name_base,
        instance_count=count,
    )


def build_provider(config: AppConfig) -> CloudProvider:
    from .provider.azure_provider import AzureProvider  # lazy import keeps --validate free of SDK start-up

    return AzureProvider(config.azure, config.images, config.provisioning)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load config (minimal logging until config is loaded)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_FATAL

    configure_logging(config.logging, verbose=args.verbose)

    if args.validate:
        logger.info("Configuration is valid")
        return EXIT_OK

    if args.mode is None:
        parser.print_usage(sys.stderr)
        print("error: a mode ('new' or 'append') is required", file=sys.stderr)
        return EXIT_FATAL

    try:
        mode = build_mode(args, config)
        reconciler = Reconciler(
            build_provider(config),
            credential_provider_from_config(config.admin),
            images=config.images,
            direct_port_base=config.provisioning.direct_port_base,
        )
        result = reconciler.reconcile(mode)
    except DeployerError as exc:
        logger.error("Fatal error: %s", exc)
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.info("Interrupted; re-run to continue from the next free index")
        return EXIT_FATAL

    if not result.ok:
        logger.warning(
            "%d of %d instances failed: %s",
            len(result.failed), len(result.failed) + len(result.created), ", ".join(sorted(result.failed)),
            extra={"created_count": len(result.created), "failed_count": len(result.failed)},
        )
        return EXIT_PARTIAL

    logger.info("Deployment complete", extra={"created_count": len(result.created)})
    return EXIT_OK
