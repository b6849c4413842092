#!/usr/bin/env python3
"""CLI entry point for cloudup.

Noun-action subcommands:
- cloudup cluster create --cloud aws --zones us-east-1a --name test.k8s.local
- cloudup cluster validate --conf cluster.yaml
- cloudup secret get kubelet

Nouns:
- cluster: Cluster lifecycle (create/validate)
- secret: State store secrets (get)
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from common import CloudupError, parse_zone_list
from config import ClusterConfig, apply_values, get_default_model_dir, load_config_file, resolve_master_zones
from create_cluster import CreateClusterCmd
from statestore import StateStore
from targets import TARGET_DRYRUN, TARGETS
from validation import validate_config

NOUN_COMMANDS = {
    "cluster": "Cluster lifecycle (create/validate)",
    "secret": "State store secrets (get)",
}

DEFAULT_STATE_DIR = 'state'
DEFAULT_WORKERS = 4

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def print_usage():
    """Print top-level usage showing noun commands."""
    print("Usage: cloudup <noun> <action> [options]")
    print()
    print("Commands:")
    for noun, desc in NOUN_COMMANDS.items():
        print(f"  {noun:<12} {desc}")
    print()
    print("Run 'cloudup <noun> --help' for command-specific options.")
    print()
    print("Examples:")
    print("  cloudup cluster create --cloud aws --zones us-east-1a --name test.k8s.local --dryrun")
    print("  cloudup cluster create --conf cluster.yaml --target terraform")
    print("  cloudup secret get kubelet --state ./state")


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    """Options that feed the cluster configuration."""
    parser.add_argument('--conf', type=Path, help='Configuration file to load')
    parser.add_argument('--cloud', help='Cloud provider to use - gce, aws')
    parser.add_argument('--zones', help='Zones in which to run nodes')
    parser.add_argument(
        '--master-zones',
        help='Zones in which to run masters (must be an odd number; defaults to --zones)',
    )
    parser.add_argument('--project', help='Project to use (must be set on GCE)')
    parser.add_argument('--name', help='Name for cluster')
    parser.add_argument('--kubernetes-version', help='Version of kubernetes to run (defaults to latest)')
    parser.add_argument('--node-size', help='Set instance size for nodes')
    parser.add_argument('--master-size', help='Set instance size for masters')
    parser.add_argument('--node-count', type=int, help='Set the number of nodes')
    parser.add_argument(
        '--dns-zone',
        help='DNS hosted zone to use (defaults to last two components of cluster name)',
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )


def build_config(args) -> ClusterConfig:
    """Merge the configuration file (if any) with command line options.

    Command line options win over the file. Master zones given on either
    side are kept; otherwise they default to the node zones.

    Raises:
        ConfigError: If the file cannot be read or has unknown keys
    """
    config = ClusterConfig()
    if args.conf:
        load_config_file(args.conf, config)

    overrides = {}
    if args.cloud:
        overrides['cloud_provider'] = args.cloud
    if args.zones:
        overrides['node_zones'] = parse_zone_list(args.zones)
    if args.master_zones:
        overrides['master_zones'] = parse_zone_list(args.master_zones)
    if args.project:
        overrides['project'] = args.project
    if args.name:
        overrides['cluster_name'] = args.name
    if args.kubernetes_version:
        overrides['kubernetes_version'] = args.kubernetes_version
    if args.node_size:
        overrides['node_machine_type'] = args.node_size
    if args.master_size:
        overrides['master_machine_type'] = args.master_size
    if args.node_count:
        overrides['node_count'] = args.node_count
    if args.dns_zone:
        overrides['dns_zone'] = args.dns_zone
    apply_values(config, overrides, 'command line')

    resolve_master_zones(config)
    return config


def _default_ssh_public_key() -> Optional[Path]:
    path = Path.home() / '.ssh' / 'id_rsa.pub'
    return path if path.exists() else None


def _emit_error(e: Exception, json_output: bool) -> int:
    logger.error(str(e))
    if json_output:
        output = {'success': False, 'error': str(e)}
        if isinstance(e, CloudupError):
            output['code'] = e.code
        print(json.dumps(output, indent=2))
    return 1


def cluster_create_main(argv: list) -> int:
    """Handle 'cluster create'."""
    parser = argparse.ArgumentParser(
        prog='cloudup cluster create',
        description='Create cloud resources for a kubernetes cluster',
    )
    parser.add_argument(
        '--dryrun',
        action='store_true',
        help="Don't create cloud resources; just show what would be done",
    )
    parser.add_argument(
        '--target',
        default='direct',
        choices=TARGETS,
        help='Target - direct, dryrun, terraform',
    )
    parser.add_argument(
        '--model',
        default=str(get_default_model_dir()),
        help='Source directory to use as model (separate multiple models with commas)',
    )
    parser.add_argument(
        '--state',
        type=Path,
        default=Path(DEFAULT_STATE_DIR),
        help='Location to use to store configuration state',
    )
    parser.add_argument(
        '--ssh-public-key',
        type=Path,
        help='SSH public key to use (default: ~/.ssh/id_rsa.pub)',
    )
    parser.add_argument(
        '--workers',
        type=int,
        default=DEFAULT_WORKERS,
        help=f'Maximum number of tasks to run at once (default: {DEFAULT_WORKERS})',
    )
    parser.add_argument(
        '--single-master',
        action='store_true',
        help='Run one master instance instead of per-zone master autoscaling groups',
    )
    parser.add_argument(
        '--master-lb',
        action='store_true',
        help='Put a load balancer in front of the masters',
    )
    _add_config_arguments(parser)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    if args.workers < 1:
        print("Error: --workers must be at least 1", file=sys.stderr)
        return 1

    target = TARGET_DRYRUN if args.dryrun else args.target

    try:
        config = build_config(args)
        cmd = CreateClusterCmd(
            config=config,
            model_dirs=[Path(d.strip()) for d in args.model.split(',') if d.strip()],
            state_store=StateStore(args.state),
            target=target,
            ssh_public_key=args.ssh_public_key or _default_ssh_public_key(),
            work_dir=args.state,
            max_workers=args.workers,
            use_master_asg=not args.single_master,
            use_master_lb=args.master_lb,
            out=sys.stderr if args.json_output else sys.stdout,
        )
        result = cmd.run()
    except CloudupError as e:
        return _emit_error(e, args.json_output)

    if args.json_output:
        output = {'success': True}
        output.update(result.to_dict())
        print(json.dumps(output, indent=2))

    logger.info("Completed successfully")
    return 0


def cluster_validate_main(argv: list) -> int:
    """Handle 'cluster validate': check configuration without touching anything."""
    parser = argparse.ArgumentParser(
        prog='cloudup cluster validate',
        description='Validate cluster configuration',
    )
    _add_config_arguments(parser)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        config = build_config(args)
    except CloudupError as e:
        return _emit_error(e, args.json_output)

    errors = validate_config(config)

    if args.json_output:
        print(json.dumps({'valid': not errors, 'errors': errors, 'config': config.to_dict()}, indent=2))
        return 1 if errors else 0

    if errors:
        print("\nConfiguration validation failed:")
        for error in errors:
            print(f"  ✗ {error}")
        print()
        return 1

    print(f"Configuration for {config.cluster_name} is valid")
    return 0


def secret_get_main(argv: list) -> int:
    """Handle 'secret get <id>': print a secret, creating it if needed."""
    parser = argparse.ArgumentParser(
        prog='cloudup secret get',
        description='Print a secret from the state store (created on first use)',
    )
    parser.add_argument('id', help='Secret id')
    parser.add_argument(
        '--state',
        type=Path,
        default=Path(DEFAULT_STATE_DIR),
        help='Location of the state store',
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, False)

    try:
        secret, created = StateStore(args.state).secrets().get_or_create_secret(args.id)
    except CloudupError as e:
        return _emit_error(e, False)

    if created:
        logger.info(f"Created secret {args.id!r}")
    print(secret.as_string())
    return 0


def _dispatch(noun: str, actions: dict, argv: list) -> int:
    if not argv or argv[0].startswith('-'):
        print(f"Usage: cloudup {noun} <action> [options]")
        print()
        print("Actions:")
        for action, (_, desc) in actions.items():
            print(f"  {action:<10} {desc}")
        print()
        print(f"Run 'cloudup {noun} <action> --help' for action-specific options.")
        return 1 if not argv else 0

    action = argv[0]
    handler = actions.get(action)
    if handler is None:
        print(f"Error: Unknown {noun} action '{action}'")
        print(f"Available actions: {', '.join(actions)}")
        return 1
    return handler[0](argv[1:])


def dispatch_noun(noun: str, argv: list) -> int:
    """Dispatch to noun-specific handler.

    Args:
        noun: The noun command (e.g., "cluster")
        argv: Remaining command line arguments

    Returns:
        Exit code
    """
    if noun == "cluster":
        return _dispatch(noun, {
            'create': (cluster_create_main, 'Create (or plan) cluster infrastructure'),
            'validate': (cluster_validate_main, 'Validate cluster configuration'),
        }, argv)

    if noun == "secret":
        return _dispatch(noun, {
            'get': (secret_get_main, 'Print a secret (created on first use)'),
        }, argv)

    print(f"Error: Noun '{noun}' not yet implemented")
    return 1


def main(argv: Optional[list] = None) -> int:
    """CLI entry point: dispatch to noun-action handlers."""
    if argv is None:
        argv = sys.argv[1:]

    if not argv or argv[0] in ('-h', '--help'):
        print_usage()
        return 0

    noun = argv[0]
    if noun not in NOUN_COMMANDS:
        print(f"Error: Unknown command '{noun}'")
        print_usage()
        return 1

    return dispatch_noun(noun, argv[1:])


if __name__ == '__main__':
    sys.exit(main())
