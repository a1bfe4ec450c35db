"""
Override/default resolution for layered policy kinds.

A gateway-level policy either fills the gaps left by routes without their own
policy (a default) or fully replaces every route-level policy of the same
kind beneath the gateway (an atomic override). Resolution never raises:
problems are recorded in the ReconcileResult passed in by the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import OverrideConflict, PolicyError, TargetNotFound
from .policies import Policy
from .topology import Topology
from .types import Gateway, HTTPRoute, ObjectKey, ObjectMeta

logger = logging.getLogger(__name__)


def age_key(policy: Policy):
    """Oldest first; ties broken by namespace/name."""
    return (policy.creation_timestamp, str(policy.key))


@dataclass
class ReconcileResult:
    """
    Per-run record of affected policies, policy errors and diagnostics.

    Attributes:
        affected: Policy locator -> keys of the policies affecting it. An empty
            list means affected without being overridden (nothing to enforce).
        errors: Policy locator -> error to surface on the policy's status
        diagnostics: Human readable notes about resolution decisions
    """
    affected: Dict[str, List[ObjectKey]] = field(default_factory=dict)
    errors: Dict[str, PolicyError] = field(default_factory=dict)
    diagnostics: List[str] = field(default_factory=list)

    def set_affected(self, policy: Policy, affected_by: List[ObjectKey]) -> None:
        self.affected[policy.locator] = list(affected_by)

    def remove_affected(self, policy: Policy) -> None:
        self.affected.pop(policy.locator, None)

    def is_affected(self, policy: Policy) -> bool:
        return policy.locator in self.affected

    def is_overridden(self, policy: Policy) -> bool:
        return bool(self.affected.get(policy.locator))

    def affected_by(self, policy: Policy) -> List[ObjectKey]:
        return list(self.affected.get(policy.locator, []))

    def record_error(self, policy: Policy, error: PolicyError) -> None:
        self.errors[policy.locator] = error

    def error_for(self, policy: Policy) -> Optional[PolicyError]:
        return self.errors.get(policy.locator)

    def add_diagnostic(self, message: str) -> None:
        if message in self.diagnostics:
            return
        logger.warning(message)
        self.diagnostics.append(message)


@dataclass
class Resolution:
    """
    Outcome of resolving one policy against the topology.

    ``route`` is the route whose rules the policy applies to: the target
    itself, or a route fabricated from a gateway's eligible routes. When
    ``deleted`` is set, the policy currently contributes nothing and its
    downstream objects must be torn down.
    """
    policy: Policy
    target: Optional[object] = None
    gateways: List[Gateway] = field(default_factory=list)
    route: Optional[HTTPRoute] = None
    hostnames: List[str] = field(default_factory=list)
    deleted: bool = False
    overridden_by: List[ObjectKey] = field(default_factory=list)


def validate_targets(topology: Topology, result: ReconcileResult) -> None:
    """Record malformed and missing targets of every policy in the topology."""
    for policy in topology.policies():
        if policy.locator in topology.errors:
            result.record_error(policy, topology.errors[policy.locator])
        elif topology.target_of(policy) is None:
            logger.warning(f"{policy.locator} target {policy.target_ref.name} was not found")
            result.record_error(policy, TargetNotFound(policy.kind, policy.target_ref.name))


def override_winners(topology: Topology, kind: str, result: ReconcileResult) -> Dict[ObjectKey, Policy]:
    """
    Pick the effective atomic override of a kind for every gateway.

    When more than one override targets the same gateway, the oldest by
    creation timestamp wins (ties broken by namespace/name); every other one
    is recorded as conflicted.

    Returns:
        Gateway key -> winning override policy
    """
    winners: Dict[ObjectKey, Policy] = {}
    for gateway in topology.gateways():
        overrides = sorted(
            (
                p for p in topology.policies_of(gateway, kind)
                if p.is_atomic_override() and not p.is_deleting
            ),
            key=age_key,
        )
        if not overrides:
            continue
        winner = overrides[0]
        winners[gateway.key] = winner
        for loser in overrides[1:]:
            result.record_error(loser, OverrideConflict(kind, str(winner.key), str(gateway.key)))
            result.add_diagnostic(
                f"{loser.locator} conflicts with {winner.locator} on gateway {gateway.key}; "
                f"{winner.locator} is older and wins"
            )
    return winners


def gateway_overrides(topology: Topology, route: HTTPRoute, kind: str,
                      result: ReconcileResult) -> List[Policy]:
    """Winning atomic overrides of the route's parent gateways."""
    winners = override_winners(topology, kind, result)
    return [winners[g.key] for g in topology.gateways_of(route) if g.key in winners]


def effective_policy(
    topology: Topology,
    gateway: Gateway,
    route: HTTPRoute,
    kind: str,
    result: ReconcileResult,
) -> Optional[Policy]:
    """
    Policy of a kind that governs a gateway/route pair.

    The gateway override wins, then the route's own policy (the oldest when
    there are several), then the gateway default.
    """
    override = override_winners(topology, kind, result).get(gateway.key)
    if override is not None:
        return override
    own = sorted(topology.policies_of(route, kind), key=age_key)
    if own:
        return own[0]
    defaults = sorted(
        (p for p in topology.policies_of(gateway, kind) if not p.is_atomic_override()),
        key=age_key,
    )
    return defaults[0] if defaults else None


def route_hostnames(topology: Topology, route: HTTPRoute) -> List[str]:
    """Route hostnames, falling back to its gateways' listener hostnames, then '*'."""
    if route.hostnames:
        return list(route.hostnames)
    hosts: List[str] = []
    for gateway in topology.gateways_of(route):
        hosts.extend(h for h in gateway.hostnames() if h not in hosts)
    return hosts or ["*"]


def _resolve_gateway_target(
    topology: Topology, policy: Policy, gateway: Gateway,
    resolution: Resolution, result: ReconcileResult,
) -> None:
    kind = policy.kind
    if policy.is_atomic_override():
        winner = override_winners(topology, kind, result).get(gateway.key)
        if winner is not None and winner.uid != policy.uid:
            resolution.deleted = True
            resolution.overridden_by = [winner.key]
            result.set_affected(policy, [winner.key])
            return
        routes = topology.routes_of(gateway)
    else:
        routes = topology.untargeted_routes(gateway, kind)

    rules = [rule for route in routes for rule in route.rules]
    if not rules:
        # an override with nothing to enforce is affected but not overridden
        others = [] if policy.is_atomic_override() else sorted(
            {p.key for p in topology.policies_from_gateway(gateway, kind) if p.uid != policy.uid}
        )
        logger.debug(f"{policy.locator} has no eligible routes under gateway {gateway.key}")
        resolution.deleted = True
        resolution.overridden_by = others
        result.set_affected(policy, others)
        return

    resolution.route = HTTPRoute(
        metadata=ObjectMeta(name=gateway.name, namespace=gateway.namespace),
        hostnames=list(resolution.hostnames),
        rules=rules,
    )
    result.remove_affected(policy)


def resolve(topology: Topology, policy: Policy, result: ReconcileResult) -> Resolution:
    """
    Resolve which route rules and hostnames a layered policy applies to.

    Args:
        topology: Topology snapshot
        policy: AuthPolicy or RateLimitPolicy to resolve
        result: Per-run result object receiving errors and affected policies

    Returns:
        Resolution describing the fabricated or targeted route, or a deletion
    """
    resolution = Resolution(policy=policy)
    target = topology.target_of(policy)
    if target is None:
        if policy.locator in topology.errors:
            result.record_error(policy, topology.errors[policy.locator])
        else:
            result.record_error(policy, TargetNotFound(policy.kind, policy.target_ref.name))
        resolution.deleted = True
        return resolution

    resolution.target = target
    if isinstance(target, Gateway):
        resolution.gateways = [target]
        resolution.hostnames = target.hostnames() or ["*"]
        _resolve_gateway_target(topology, policy, target, resolution, result)
        return resolution

    resolution.gateways = topology.gateways_of(target)
    resolution.hostnames = route_hostnames(topology, target)
    overrides = [p for p in gateway_overrides(topology, target, policy.kind, result) if p.uid != policy.uid]
    if overrides:
        keys = sorted({p.key for p in overrides})
        logger.debug(f"{policy.locator} is overridden by {[str(k) for k in keys]}")
        resolution.deleted = True
        resolution.overridden_by = keys
        result.set_affected(policy, keys)
        return resolution

    resolution.route = target
    result.remove_affected(policy)
    return resolution
