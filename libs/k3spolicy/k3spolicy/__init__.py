"""
k3spolicy - Policy attachment topology and route-match condition compiler.

Reads Gateways, HTTPRoutes and AuthPolicy/RateLimitPolicy/DNSPolicy/TLSPolicy
objects, resolves which policy governs which route, and generates the
Authorino, Istio and Limitador objects that enforce them.
"""

from .types import (
    Gateway,
    HTTPRoute,
    HTTPRouteRule,
    HTTPRouteMatch,
    ObjectKey,
)
from .policies import (
    AuthPolicy,
    RateLimitPolicy,
    DNSPolicy,
    TLSPolicy,
    RouteSelector,
    policy_from_dict,
)
from .topology import Topology, build_topology
from .diff import GatewayDiff, compute_gateway_diff
from .overrides import ReconcileResult, Resolution, effective_policy, resolve
from .conditions import compile_rule
from .dialects import (
    AUTHORIZATION_ENGINE,
    AUTHORIZATION_POLICY,
    RATE_LIMIT,
    filter_predicate,
)
from .ratelimit import build_index
from .generators import generate_all_manifests

__version__ = "0.1.0"
__all__ = [
    "Gateway",
    "HTTPRoute",
    "HTTPRouteRule",
    "HTTPRouteMatch",
    "ObjectKey",
    "AuthPolicy",
    "RateLimitPolicy",
    "DNSPolicy",
    "TLSPolicy",
    "RouteSelector",
    "policy_from_dict",
    "Topology",
    "build_topology",
    "GatewayDiff",
    "compute_gateway_diff",
    "ReconcileResult",
    "Resolution",
    "effective_policy",
    "resolve",
    "compile_rule",
    "AUTHORIZATION_ENGINE",
    "AUTHORIZATION_POLICY",
    "RATE_LIMIT",
    "filter_predicate",
    "build_index",
    "generate_all_manifests",
]
