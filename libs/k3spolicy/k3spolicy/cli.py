"""
CLI tool for k3spolicy.

Generates Authorino, Istio and Limitador manifests from a listing of
Gateways, HTTPRoutes and policies.
"""

import argparse
import logging
import sys

from .config import Settings
from .diff import compute_gateway_diff
from .generators import generate_all_manifests
from .overrides import ReconcileResult, resolve, validate_targets
from .schema import ObjectListing, load_objects
from .status import policy_status
from .topology import Topology, build_topology
from .types import ObjectKey


def load_topology(path: str) -> Topology:
    """Load an object listing and build its topology, exiting on errors."""
    try:
        listing: ObjectListing = load_objects(path)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)
    return build_topology(listing.gateways, listing.routes, listing.policies)


def cmd_generate(args: argparse.Namespace) -> None:
    """Generate enforcement manifests."""
    topology = load_topology(args.file)

    print(f"Generating policy manifests from {args.file}")
    print(f"  Gateways: {len(topology.gateways())}")
    print(f"  Routes: {len(topology.routes())}")
    print(f"  Policies: {len(topology.policies())}")

    settings = Settings.from_env()
    if args.auth_provider:
        settings.auth_provider = args.auth_provider

    result = generate_all_manifests(topology, output_dir=args.output, settings=settings)

    for locator, error in sorted(result.errors.items()):
        print(f"  ! {locator}: {error}")
    for message in result.diagnostics:
        print(f"  ! {message}")


def cmd_list(args: argparse.Namespace) -> None:
    """List gateways, routes and policies with their status."""
    topology = load_topology(args.file)

    print("Gateways:")
    print("-" * 60)
    for gateway in topology.gateways():
        hosts = ", ".join(gateway.hostnames()) or "*"
        print(f"  {gateway.key} [{hosts}]")
        for route in topology.routes_of(gateway):
            print(f"    <- {route.key} ({len(route.rules)} rules)")

    result = ReconcileResult()
    validate_targets(topology, result)
    for policy in topology.policies(lambda p: p.supports_layering):
        resolve(topology, policy, result)

    print("\nPolicies:")
    print("-" * 60)
    for policy in topology.policies():
        override = " [override]" if policy.is_atomic_override() else ""
        print(f"  {policy.locator} -> {policy.target_ref.kind} {policy.target_key()}{override}")
        for condition in policy_status(policy, result):
            print(f"      {condition['type']}={condition['status']} ({condition['reason']}): {condition['message']}")

    print(f"\nTotal: {len(topology.policies())} policies")


def cmd_diff(args: argparse.Namespace) -> None:
    """Show the gateway reference diff of one policy."""
    topology = load_topology(args.file)

    key = ObjectKey.parse(args.policy)
    matches = topology.policies(lambda p: p.locator == args.policy.lower() or p.key == key)
    if not matches:
        print(f"Error: policy {args.policy} not found")
        sys.exit(1)

    for policy in matches:
        diff = compute_gateway_diff(topology, policy)
        print(f"{policy.locator}:")
        for label, gateways in (
            ("valid", diff.valid_refs),
            ("missing", diff.missing_refs),
            ("invalid", diff.invalid_refs),
        ):
            names = ", ".join(str(g.key) for g in gateways) or "-"
            print(f"  {label}: {names}")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="k3spolicy CLI - Generate policy enforcement manifests from Gateway API objects"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Generate command
    gen_parser = subparsers.add_parser("generate", help="Generate enforcement manifests")
    gen_parser.add_argument(
        "--file", "-f",
        required=True,
        help="YAML listing of Gateways, HTTPRoutes and policies"
    )
    gen_parser.add_argument(
        "--output", "-o",
        default="./generated/policies",
        help="Output directory for manifests"
    )
    gen_parser.add_argument(
        "--auth-provider",
        default=None,
        help="Istio extension provider name (default: $AUTH_PROVIDER)"
    )

    # List command
    list_parser = subparsers.add_parser("list", help="List objects and policy status")
    list_parser.add_argument(
        "--file", "-f",
        required=True,
        help="YAML listing of Gateways, HTTPRoutes and policies"
    )

    # Diff command
    diff_parser = subparsers.add_parser("diff", help="Show the gateway reference diff of a policy")
    diff_parser.add_argument(
        "--file", "-f",
        required=True,
        help="YAML listing of Gateways, HTTPRoutes and policies"
    )
    diff_parser.add_argument(
        "policy",
        help="Policy as kind:namespace/name, namespace/name or a name in the default namespace"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "generate":
        cmd_generate(args)
    elif args.command == "list":
        cmd_list(args)
    elif args.command == "diff":
        cmd_diff(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
