"""
Policy attachment topology.

Builds a read-only directed graph of Gateways, HTTPRoutes and policies from
flat listings. Edges run Route -> Gateway (parentRef) and Policy -> Target
(targetRef). The graph is rebuilt from scratch for every run.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import networkx as nx

from .errors import MalformedTargetKind, PolicyError
from .policies import TARGETABLE_KINDS, Policy
from .types import Gateway, HTTPRoute, ObjectKey

logger = logging.getLogger(__name__)

Targetable = Union[Gateway, HTTPRoute]

PARENT_REF = "parentRef"
TARGET_REF = "targetRef"


def node_id(kind: str, key: ObjectKey) -> str:
    """Graph node id, e.g. 'Gateway#default/gw'."""
    return f"{kind}#{key}"


def object_node_id(obj) -> str:
    return node_id(obj.kind, obj.key)


class Targetables:
    """View over the targetable objects (Gateways and HTTPRoutes) of a topology."""

    def __init__(self, topology: "Topology"):
        self._topology = topology

    def children(self, policy: Policy) -> List[Targetable]:
        """Objects the policy is attached to. Empty when the target does not exist."""
        graph = self._topology.graph
        node = object_node_id(policy)
        if node not in graph:
            return []
        return [
            graph.nodes[n]["obj"]
            for n in sorted(graph.successors(node))
            if graph.edges[node, n]["kind"] == TARGET_REF
        ]

    def parents(self, obj: Targetable) -> List[Policy]:
        """Policies attached to the object."""
        graph = self._topology.graph
        node = object_node_id(obj)
        if node not in graph:
            return []
        return [
            graph.nodes[n]["obj"]
            for n in sorted(graph.predecessors(node))
            if graph.edges[n, node]["kind"] == TARGET_REF
        ]

    def items(self) -> List[Targetable]:
        return self._topology.gateways() + self._topology.routes()


class Topology:
    """
    Snapshot graph of Gateways, HTTPRoutes and policies.

    Attributes:
        graph: networkx DiGraph; every node carries 'kind' and 'obj' attributes
        errors: Build errors keyed by policy locator (malformed target kinds)
    """

    def __init__(self, graph: nx.DiGraph, errors: Optional[Dict[str, PolicyError]] = None):
        self.graph = graph
        self.errors: Dict[str, PolicyError] = errors or {}

    def _objects(self, predicate: Callable[[str], bool]) -> list:
        return [
            data["obj"]
            for n, data in sorted(self.graph.nodes(data=True))
            if predicate(data["kind"])
        ]

    def gateways(self) -> List[Gateway]:
        return self._objects(lambda kind: kind == "Gateway")

    def routes(self) -> List[HTTPRoute]:
        return self._objects(lambda kind: kind == "HTTPRoute")

    def policies(self, predicate: Optional[Callable[[Policy], bool]] = None) -> List[Policy]:
        policies = self._objects(lambda kind: kind not in TARGETABLE_KINDS)
        if predicate is None:
            return policies
        return [p for p in policies if predicate(p)]

    def targetables(self) -> Targetables:
        return Targetables(self)

    def get_gateway(self, key: ObjectKey) -> Optional[Gateway]:
        node = node_id("Gateway", key)
        return self.graph.nodes[node]["obj"] if node in self.graph else None

    def get_route(self, key: ObjectKey) -> Optional[HTTPRoute]:
        node = node_id("HTTPRoute", key)
        return self.graph.nodes[node]["obj"] if node in self.graph else None

    def target_of(self, policy: Policy) -> Optional[Targetable]:
        children = self.targetables().children(policy)
        return children[0] if children else None

    def routes_of(self, gateway: Gateway) -> List[HTTPRoute]:
        """HTTPRoutes whose parentRefs resolve to the gateway."""
        node = object_node_id(gateway)
        if node not in self.graph:
            return []
        return [
            self.graph.nodes[n]["obj"]
            for n in sorted(self.graph.predecessors(node))
            if self.graph.edges[n, node]["kind"] == PARENT_REF
        ]

    def gateways_of(self, route: HTTPRoute) -> List[Gateway]:
        """Parent Gateways of the route that exist in the topology."""
        node = object_node_id(route)
        if node not in self.graph:
            return []
        return [
            self.graph.nodes[n]["obj"]
            for n in sorted(self.graph.successors(node))
            if self.graph.edges[node, n]["kind"] == PARENT_REF
        ]

    def policies_of(self, obj: Targetable, kind: Optional[str] = None) -> List[Policy]:
        """Policies attached directly to the object, optionally of a single kind."""
        return [
            p for p in self.targetables().parents(obj)
            if kind is None or p.kind == kind
        ]

    def policies_from_gateway(self, gateway: Gateway, kind: Optional[str] = None) -> List[Policy]:
        """Policies attached to the gateway or to any of its routes."""
        policies = {p.locator: p for p in self.policies_of(gateway, kind)}
        for route in self.routes_of(gateway):
            for p in self.policies_of(route, kind):
                policies.setdefault(p.locator, p)
        return [policies[k] for k in sorted(policies)]

    def untargeted_routes(self, gateway: Gateway, kind: str) -> List[HTTPRoute]:
        """Routes of the gateway without a policy of the given kind of their own."""
        return [r for r in self.routes_of(gateway) if not self.policies_of(r, kind)]


def _index(objects: Iterable) -> Dict[Tuple[str, ObjectKey], object]:
    return {(obj.kind, obj.key): obj for obj in objects}


def build_topology(
    gateways: Iterable[Gateway],
    routes: Iterable[HTTPRoute],
    policies: Iterable[Policy],
) -> Topology:
    """
    Build the attachment graph from flat object listings.

    A policy whose target does not exist simply has no children. A target
    whose kind is neither Gateway nor HTTPRoute leaves that one policy
    unresolved and is reported in ``Topology.errors``.

    Args:
        gateways: Gateways in the cluster
        routes: HTTPRoutes in the cluster
        policies: Policies of any kind

    Returns:
        Topology snapshot
    """
    gateways = list(gateways)
    routes = list(routes)
    policies = list(policies)
    index = _index(gateways + routes)

    graph = nx.DiGraph()
    for obj in gateways + routes + policies:
        graph.add_node(object_node_id(obj), kind=obj.kind, obj=obj)

    for route in routes:
        for gateway_key in route.parent_gateway_keys():
            if ("Gateway", gateway_key) not in index:
                logger.debug(f"Route {route.key} references unknown gateway {gateway_key}")
                continue
            graph.add_edge(
                object_node_id(route), node_id("Gateway", gateway_key), kind=PARENT_REF
            )

    errors: Dict[str, PolicyError] = {}
    for policy in policies:
        ref = policy.target_ref
        if ref.kind not in TARGETABLE_KINDS:
            logger.warning(f"{policy.locator} targets unsupported kind {ref.kind}")
            errors[policy.locator] = MalformedTargetKind(policy.kind, ref.kind)
            continue
        target = index.get((ref.kind, policy.target_key()))
        if target is None or target.group != ref.group:
            logger.debug(f"{policy.locator} target {ref.kind} {policy.target_key()} not found")
            continue
        graph.add_edge(object_node_id(policy), object_node_id(target), kind=TARGET_REF)

    logger.debug(
        f"Built topology: {len(gateways)} gateways, {len(routes)} routes, "
        f"{len(policies)} policies, {graph.number_of_edges()} edges"
    )
    return Topology(graph, errors)
