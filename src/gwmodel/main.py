"""
Command-line interface for compiling a Gateway into an ELBv2 resource stack.

Loads Kubernetes manifests, a static cloud inventory and the builder
configuration, builds one Gateway and writes the resulting stack as YAML.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

from gwmodel.builders.model_builder import GatewayModelBuilder, group_routes_by_port
from gwmodel.config import load_config
from gwmodel.exceptions import (
    CollaboratorError,
    ConfigurationError,
    GatewayModelError,
    ManifestError,
)
from gwmodel.io.inventory import SecurityGroupLookup, load_inventory
from gwmodel.io.manifests import load_manifests
from gwmodel.io.output import dump_result, write_result

logger = logging.getLogger(__name__)


def configure_logging(debug: bool = False, verbose: bool = False) -> None:
    """Configure application logging.

    Args:
        debug: Enable debug-level logging if True.
        verbose: Enable info-level logging from the builders if True.
    """
    if debug:
        level = logging.DEBUG
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    elif verbose:
        level = logging.INFO
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    else:
        level = logging.WARNING
        format_str = "%(levelname)s: %(message)s"

    # Logs go to stderr, stdout may carry the stack.
    logging.basicConfig(
        level=level,
        format=format_str,
        stream=sys.stderr,
        force=True,
    )


def parse_arguments(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Compile a Kubernetes Gateway into an AWS ELBv2 resource stack",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Build the stack of gateway 'web/public' and print it
  gwmodel -m manifests.yaml -i inventory.yaml -c config.yaml -g web/public

  # Write the stack to a file with debug output
  gwmodel -m gw.yaml -m routes.yaml -i inventory.yaml -c config.yaml \\
    -g web/public --debug output/stack.yaml
        """,
    )
    parser.add_argument(
        "-m",
        "--manifests",
        action="append",
        required=True,
        type=Path,
        metavar="FILE",
        help="Kubernetes manifest file (repeatable)",
    )
    parser.add_argument(
        "-i",
        "--inventory",
        required=True,
        type=Path,
        help="Static cloud inventory YAML file",
    )
    parser.add_argument(
        "-c", "--config", required=True, type=Path, help="Builder configuration file"
    )
    parser.add_argument(
        "-g",
        "--gateway",
        required=True,
        metavar="NAMESPACE/NAME",
        help="Gateway to build",
    )
    parser.add_argument(
        "output_file",
        nargs="?",
        type=Path,
        help="Where to write the stack YAML (default: stdout)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging for detailed output"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable info logging from the builders",
    )
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    """
    Build the requested Gateway.

    Returns:
        Process exit code: 0 on success, >0 per error category
    """
    try:
        config = load_config(args.config)
        inventory = load_inventory(args.inventory)
        manifests = load_manifests(args.manifests)

        gateway = manifests.gateway(args.gateway)
        routes = group_routes_by_port(gateway, manifests.routes_for(gateway))

        builder = GatewayModelBuilder(
            config,
            subnets_resolver=inventory,
            lb_lister=inventory,
            sg_resolver=SecurityGroupLookup(inventory),
            backend_sg_provider=inventory,
            vpc_info_provider=inventory,
            cert_discovery=inventory,
            trust_store_resolver=inventory,
            tg_arn_mapper=inventory,
            secrets_manager=inventory,
        )
        result = builder.build(gateway, manifests.lb_config_for(gateway), routes)

        if args.output_file:
            write_result(result, args.output_file)
        else:
            dump_result(result, sys.stdout)
        return 0

    except ManifestError as e:
        logger.error("Input file error: %s", e)
        return 1
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 2
    except CollaboratorError as e:
        logger.error("Lookup failed: %s", e)
        return 3
    except GatewayModelError as e:
        logger.error("Model build error: %s", e)
        return 4
    except OSError as e:
        logger.error("File system error: %s", e)
        return 5


def main(argv: Optional[list[str]] = None) -> NoReturn:
    args = parse_arguments(argv)
    configure_logging(args.debug, args.verbose)
    sys.exit(run(args))


if __name__ == "__main__":
    main()
