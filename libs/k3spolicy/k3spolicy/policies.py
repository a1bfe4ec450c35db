"""
Policy kinds attached to Gateway API objects.

Every kind implements the same small capability interface on ``Policy``;
topology, diff and resolver code only ever talk to that interface.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .types import GATEWAY_API_GROUP, HTTPRoute, HTTPRouteMatch, HTTPRouteRule, ObjectKey, ObjectMeta


TARGETABLE_KINDS = ("Gateway", "HTTPRoute")


@dataclass
class RouteSelector:
    """
    Narrows a policy, limit or auth rule to some rules and hostnames of a route.

    A rule is selected when at least one of its matches carries every criterion
    the selector match names (headers and query params as subsets). Selector
    hostnames must intersect the route's hostnames.
    """
    hostnames: List[str] = field(default_factory=list)
    matches: List[HTTPRouteMatch] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "RouteSelector":
        data = data or {}
        return cls(
            hostnames=list(data.get("hostnames") or []),
            matches=[HTTPRouteMatch.from_dict(m) for m in data.get("matches") or []],
        )

    @staticmethod
    def _selects_match(selector: HTTPRouteMatch, match: HTTPRouteMatch) -> bool:
        if selector.path is not None and selector.path != match.path:
            return False
        if selector.method is not None and selector.method != match.method:
            return False
        if any(h not in match.headers for h in selector.headers):
            return False
        return all(q in match.query_params for q in selector.query_params)

    def select_rules(self, route: HTTPRoute) -> List[HTTPRouteRule]:
        """Rules of the route picked by this selector, in route order."""
        if self.hostnames and not set(self.hostnames) & set(route.hostnames):
            return []
        if not self.matches:
            return list(route.rules)
        return [
            rule for rule in route.rules
            if any(
                self._selects_match(selector, match)
                for selector in self.matches
                for match in rule.matches
            )
        ]

    def hostnames_for_conditions(self, route: HTTPRoute) -> List[str]:
        """Route hostnames, narrowed to the selector's when it names any."""
        if not self.hostnames:
            return list(route.hostnames)
        return [h for h in route.hostnames if h in self.hostnames]


def route_selectors_from(data: Optional[Dict]) -> List[RouteSelector]:
    return [RouteSelector.from_dict(s) for s in (data or {}).get("routeSelectors") or []]


@dataclass
class TargetRef:
    """Reference from a policy to the single Gateway or HTTPRoute it attaches to."""
    name: str
    kind: str
    group: str = GATEWAY_API_GROUP
    namespace: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "TargetRef":
        return cls(
            name=data["name"],
            kind=data["kind"],
            group=data.get("group", GATEWAY_API_GROUP),
            namespace=data.get("namespace"),
        )


@dataclass
class Policy:
    """Base class for all policy kinds."""
    metadata: ObjectMeta
    target_ref: TargetRef
    spec: Dict[str, Any] = field(default_factory=dict)

    kind = "Policy"
    back_reference_annotation = ""
    supports_layering = False

    @classmethod
    def from_dict(cls, data: Dict) -> "Policy":
        spec = dict(data.get("spec") or {})
        target = spec.pop("targetRef", None)
        if not target:
            raise ValueError(f"{cls.kind} is missing spec.targetRef")
        policy = cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            target_ref=TargetRef.from_dict(target),
            spec=spec,
        )
        if policy.target_ref.namespace is None:
            policy.target_ref.namespace = policy.metadata.namespace
        return policy

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def locator(self) -> str:
        return f"{self.kind.lower()}:{self.key}"

    @property
    def uid(self) -> str:
        return self.metadata.uid

    @property
    def creation_timestamp(self) -> str:
        return self.metadata.creation_timestamp

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def target_key(self) -> ObjectKey:
        return ObjectKey(self.target_ref.namespace or self.namespace, self.target_ref.name)

    def targets_gateway(self) -> bool:
        return self.target_ref.kind == "Gateway"

    def is_atomic_override(self) -> bool:
        return False

    def common_spec(self) -> Dict[str, Any]:
        return self.spec


class LayeredPolicy(Policy):
    """Policy kind with gateway defaults and overrides layered over route policies."""

    supports_layering = True

    def is_atomic_override(self) -> bool:
        return self.spec.get("overrides") is not None

    def common_spec(self) -> Dict[str, Any]:
        """Defaults first, then overrides, then the implicit (bare) spec."""
        if self.spec.get("defaults") is not None:
            return self.spec["defaults"]
        if self.spec.get("overrides") is not None:
            return self.spec["overrides"]
        return {k: v for k, v in self.spec.items() if k not in ("defaults", "overrides")}


class AuthPolicy(LayeredPolicy):
    kind = "AuthPolicy"
    back_reference_annotation = "kuadrant.io/authpolicies"

    def conditions(self) -> List[Dict[str, Any]]:
        """Top-level 'when' pattern expressions of the effective spec."""
        return list(self.common_spec().get("when") or [])

    def patterns(self) -> Dict[str, Any]:
        return dict(self.common_spec().get("patterns") or {})

    def auth_scheme(self) -> Dict[str, Any]:
        return dict(self.common_spec().get("rules") or {})

    def route_selectors(self) -> List[RouteSelector]:
        """Top-level selectors narrowing the whole policy."""
        return route_selectors_from(self.common_spec())


@dataclass
class Rate:
    """Maximum number of requests per time window."""
    limit: int
    duration: int
    unit: str

    @classmethod
    def from_dict(cls, data: Dict) -> "Rate":
        return cls(
            limit=int(data.get("limit", 0)),
            duration=int(data.get("duration", 1)),
            unit=data.get("unit", "second"),
        )


@dataclass
class Limit:
    """A named limit of a RateLimitPolicy."""
    rates: List[Rate] = field(default_factory=list)
    counters: List[str] = field(default_factory=list)
    when: List[Dict[str, str]] = field(default_factory=list)
    route_selectors: List[RouteSelector] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "Limit":
        data = data or {}
        return cls(
            rates=[Rate.from_dict(r) for r in data.get("rates") or []],
            counters=list(data.get("counters") or []),
            when=list(data.get("when") or []),
            route_selectors=route_selectors_from(data),
        )


class RateLimitPolicy(LayeredPolicy):
    kind = "RateLimitPolicy"
    back_reference_annotation = "kuadrant.io/ratelimitpolicies"

    def limits(self) -> Dict[str, Limit]:
        return {
            name: Limit.from_dict(data)
            for name, data in (self.common_spec().get("limits") or {}).items()
        }


class DNSPolicy(Policy):
    kind = "DNSPolicy"
    back_reference_annotation = "kuadrant.io/dnspolicies"


class TLSPolicy(Policy):
    kind = "TLSPolicy"
    back_reference_annotation = "kuadrant.io/tlspolicies"


POLICY_KINDS = {
    cls.kind: cls for cls in (AuthPolicy, RateLimitPolicy, DNSPolicy, TLSPolicy)
}


def policy_from_dict(data: Dict) -> Policy:
    """
    Build a policy object from a manifest.

    Args:
        data: Parsed policy manifest

    Returns:
        Policy instance of the matching kind

    Raises:
        ValueError: If the kind is not a known policy kind
    """
    kind = data.get("kind")
    if kind not in POLICY_KINDS:
        raise ValueError(f"Unknown policy kind: {kind}")
    return POLICY_KINDS[kind].from_dict(data)
