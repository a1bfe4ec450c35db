"""
Rate limit index and Limitador limits.

Merges gateway-level and route-level RateLimitPolicies into one entry per
(policy, gateway) pair, so that routes inheriting the same gateway policy
collapse into a single logical configuration.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .overrides import ReconcileResult, age_key, override_winners
from .policies import Limit, Policy, RateLimitPolicy
from .topology import Topology
from .types import Gateway, HTTPRoute, ObjectKey

logger = logging.getLogger(__name__)

LIMIT_IDENTIFIER_PREFIX = "limit."

UNIT_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}

IndexKey = Tuple[ObjectKey, ObjectKey]


@dataclass
class EffectiveLimits:
    """Limits one policy enforces through one gateway."""
    policy: Policy
    gateway: Gateway
    routes: List[HTTPRoute] = field(default_factory=list)
    limits: Dict[str, Limit] = field(default_factory=dict)


def policy_sort_key(policy: Policy):
    """Gateway-targeting policies first, then oldest, then namespace/name."""
    return (0 if policy.targets_gateway() else 1,) + age_key(policy)


def limits_namespace(policy: Policy) -> str:
    return str(policy.key)


def limit_identifier(limit_name: str) -> str:
    """
    Limitador identifier for a limit name.

    Characters other than letters, digits and '_' are replaced by '_'; a
    short hash of the original name keeps sanitized names unique.
    """
    sanitized = "".join(c if c.isalnum() or c == "_" else "_" for c in limit_name)
    digest = hashlib.sha256(limit_name.encode("utf-8")).hexdigest()[:8]
    return f"{LIMIT_IDENTIFIER_PREFIX}{sanitized}__{digest}"


def rate_seconds(duration: int, unit: str) -> int:
    """Window length in seconds; unknown units count as seconds, negatives as 0."""
    seconds = UNIT_SECONDS.get(unit, 1) * duration
    return max(seconds, 0)


def limitador_limits(policy: RateLimitPolicy) -> List[Dict[str, Any]]:
    """
    Limitador limits for every rate of every limit in a policy.

    Args:
        policy: RateLimitPolicy

    Returns:
        Limit dicts sorted by limit name, then rate order
    """
    namespace = limits_namespace(policy)
    limits: List[Dict[str, Any]] = []
    for name, limit in sorted(policy.limits().items()):
        identifier = limit_identifier(name)
        for rate in limit.rates:
            limits.append({
                "namespace": namespace,
                "maxValue": max(rate.limit, 0),
                "seconds": rate_seconds(rate.duration, rate.unit),
                "conditions": [f'{identifier} == "1"'],
                "variables": list(limit.counters),
            })
    return limits


def build_index(topology: Topology, result: Optional[ReconcileResult] = None) -> Dict[IndexKey, EffectiveLimits]:
    """
    Build the rate limit index.

    Every gateway is walked, then every route parented by it. A route's
    policies are the gateway's winning override, else its own policies,
    else the gateway's policies. A (policy, gateway) pair is stored once.

    Args:
        topology: Topology snapshot
        result: Per-run result object receiving override conflicts

    Returns:
        Mapping of (policy key, gateway key) to its effective limits
    """
    result = result or ReconcileResult()
    kind = RateLimitPolicy.kind
    winners = override_winners(topology, kind, result)
    index: Dict[IndexKey, EffectiveLimits] = {}

    for gateway in sorted(topology.gateways(), key=lambda g: g.key):
        gateway_policies = sorted(
            (p for p in topology.policies_of(gateway, kind) if not p.is_deleting),
            key=policy_sort_key,
        )
        for route in sorted(topology.routes_of(gateway), key=lambda r: r.key):
            if gateway.key in winners:
                policies = [winners[gateway.key]]
            else:
                own = [p for p in topology.policies_of(route, kind) if not p.is_deleting]
                policies = sorted(own, key=policy_sort_key) or [
                    p for p in gateway_policies if not p.is_atomic_override()
                ]
            for policy in policies:
                key = (policy.key, gateway.key)
                if key in index:
                    index[key].routes.append(route)
                    continue
                index[key] = EffectiveLimits(
                    policy=policy,
                    gateway=gateway,
                    routes=[route],
                    limits=policy.limits(),
                )
                logger.debug(f"Indexed {policy.locator} on gateway {gateway.key} via route {route.key}")
    return index


def policies_for_gateway(index: Dict[IndexKey, EffectiveLimits], gateway: Gateway) -> List[EffectiveLimits]:
    """Index entries of a gateway in policy order."""
    entries = [e for (_, gw_key), e in index.items() if gw_key == gateway.key]
    return sorted(entries, key=lambda e: policy_sort_key(e.policy))
