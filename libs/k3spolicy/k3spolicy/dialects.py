"""
Renderers of compiled predicate trees into downstream rule languages.

Each dialect is described by the criteria it can express and whether it
accepts regular expressions. A single generic filter removes what a dialect
cannot express. Removing a criterion only ever widens what a predicate
matches, so a restricted dialect is always a subset of the full one.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .conditions import (
    HEADER,
    HOST,
    METHOD,
    PATH,
    QUERY,
    AllOf,
    AnyOf,
    Expression,
    Predicate,
    compile_match,
    compile_rule,
    host_predicate,
    strip_catch_all,
)
from .policies import RouteSelector
from .types import HTTPRoute, HTTPRouteRule


@dataclass(frozen=True)
class Dialect:
    """Capabilities of a downstream rule language."""
    name: str
    criteria: FrozenSet[str]
    regex: bool = True

    def supports(self, leaf: Predicate) -> bool:
        return leaf.criterion in self.criteria and (self.regex or not leaf.regex)


ALL_CRITERIA = frozenset({HOST, METHOD, PATH, HEADER, QUERY})

AUTHORIZATION_ENGINE = Dialect("authorino", ALL_CRITERIA)
RATE_LIMIT = Dialect("wasm", ALL_CRITERIA)
AUTHORIZATION_POLICY = Dialect("istio", frozenset({HOST, METHOD, PATH, HEADER}), regex=False)


def filter_predicate(expr: Optional[Expression], dialect: Dialect) -> Optional[Expression]:
    """
    Drop the criteria a dialect cannot express.

    None stands for "no restriction". An AllOf loses only its unsupported
    members; an AnyOf with an unrestricted member is itself unrestricted.
    """
    if expr is None:
        return None
    if isinstance(expr, Predicate):
        return expr if dialect.supports(expr) else None
    children = [filter_predicate(item, dialect) for item in expr.items]
    if isinstance(expr, AllOf):
        kept = tuple(c for c in children if c is not None)
        return AllOf(kept) if kept else None
    if any(c is None for c in children):
        return None
    return AnyOf(tuple(children))


def selected_rules(
    route: HTTPRoute,
    selectors: Optional[List[RouteSelector]] = None,
) -> List[Tuple[HTTPRouteRule, List[str]]]:
    """
    Route rules to compile, each with the hostnames its conditions use.

    Without selectors every rule is taken with the route's hostnames. A rule
    picked by several selectors is compiled once per selector.
    """
    if not selectors:
        return [(rule, list(route.hostnames)) for rule in route.rules]
    return [
        (rule, selector.hostnames_for_conditions(route))
        for selector in selectors
        for rule in selector.select_rules(route)
    ]


def _compiled(route: HTTPRoute, selectors: Optional[List[RouteSelector]],
              dialect: Dialect) -> List[Expression]:
    compiled = (
        filter_predicate(compile_rule(rule, hostnames), dialect)
        for rule, hostnames in selected_rules(route, selectors)
    )
    return [c for c in compiled if c is not None]


# Authorization engine (Authorino)

def to_authorino(expr: Expression) -> Dict[str, Any]:
    """Render a tree as Authorino pattern expressions."""
    if isinstance(expr, Predicate):
        return {"selector": expr.selector, "operator": expr.operator, "value": expr.value}
    key = "all" if isinstance(expr, AllOf) else "any"
    return {key: [to_authorino(item) for item in expr.items]}


def authorino_conditions(route: HTTPRoute,
                         selectors: Optional[List[RouteSelector]] = None) -> List[Dict[str, Any]]:
    """
    AuthConfig conditions for the rules of a route.

    Args:
        route: Targeted or fabricated route
        selectors: Route selectors narrowing the rules; all rules when empty

    Returns:
        A single 'any' condition across the rules, or an empty list when no
        rule restricts anything
    """
    compiled = _compiled(route, selectors, AUTHORIZATION_ENGINE)
    if not compiled:
        return []
    return [{"any": [to_authorino(c) for c in compiled]}]


# Proxy authorization policy (Istio)

def _istio_rule(arm: AllOf, hostnames: List[str]) -> Dict[str, Any]:
    leaves = filter_predicate(arm, AUTHORIZATION_POLICY)
    leaves = leaves.items if isinstance(leaves, AllOf) else ()
    rule: Dict[str, Any] = {}

    # an operation exists whenever the match names a host, method or path,
    # even when the path itself cannot be expressed
    if any(isinstance(i, Predicate) and i.criterion in (HOST, METHOD, PATH) for i in arm.items):
        operation: Dict[str, Any] = {}
        for leaf in leaves:
            if leaf.criterion == HOST:
                operation["hosts"] = list(hostnames)
            elif leaf.criterion == METHOD:
                operation["methods"] = [leaf.value]
            elif leaf.criterion == PATH:
                operation["paths"] = [leaf.raw if leaf.operator == "eq" else leaf.raw + "*"]
        rule["to"] = [{"operation": operation}]

    when = [
        {"key": f"request.headers[{leaf.name}]", "values": [leaf.value]}
        for leaf in leaves
        if leaf.criterion == HEADER
    ]
    if when:
        rule["when"] = when
    return rule


def authorization_policy_rules(route: HTTPRoute, hostnames: List[str],
                               selectors: Optional[List[RouteSelector]] = None) -> List[Dict[str, Any]]:
    """
    Istio AuthorizationPolicy rules for the rules of a route.

    One rule per route match. Query parameters and regular expressions have
    no representation and are left out. Operations without hosts are
    restricted to ``hostnames``.

    Args:
        route: Targeted or fabricated route
        hostnames: Hostnames applied to operations that name none
        selectors: Route selectors narrowing the rules; all rules when empty

    Returns:
        List of Istio rules
    """
    rules: List[Dict[str, Any]] = []
    for rule, rule_hostnames in selected_rules(route, selectors):
        host = host_predicate(rule_hostnames)
        hosts = strip_catch_all(rule_hostnames)
        if not rule.matches:
            if host is not None:
                rules.append({"to": [{"operation": {"hosts": list(hosts)}}]})
            continue
        for match in rule.matches:
            rules.append(_istio_rule(compile_match(match, host), hosts))

    for rule in rules:
        for to in rule.get("to", []):
            if not to["operation"].get("hosts"):
                to["operation"]["hosts"] = list(hostnames)
    return rules


# Rate-limit filter (WASM)

def _wasm_item(expr: Expression) -> Dict[str, Any]:
    if isinstance(expr, Predicate):
        return {"selector": expr.selector, "operator": expr.operator, "value": expr.value}
    key = "allOf" if isinstance(expr, AllOf) else "anyOf"
    return {key: [_wasm_item(item) for item in expr.items]}


def wasm_conditions(route: HTTPRoute,
                    selectors: Optional[List[RouteSelector]] = None) -> List[Dict[str, Any]]:
    """
    WASM rule conditions for the rules of a route: one 'allOf' per match.

    A catch-all rule contributes a single 'allOf' holding the host predicate.
    """
    conditions: List[Dict[str, Any]] = []
    for compiled in _compiled(route, selectors, RATE_LIMIT):
        if isinstance(compiled, Predicate):
            conditions.append({"allOf": [_wasm_item(compiled)]})
            continue
        for arm in compiled.items:
            conditions.append({"allOf": [_wasm_item(item) for item in arm.items]})
    return conditions
