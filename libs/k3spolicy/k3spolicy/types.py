"""
Type definitions for Gateway API objects.

These dataclasses represent the subset of Gateway and HTTPRoute fields
consumed by the policy topology and the route-match condition compiler.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


GATEWAY_API_GROUP = "gateway.networking.k8s.io"


class PathMatchType(str, Enum):
    """HTTPRoute path match types."""
    EXACT = "Exact"
    PATH_PREFIX = "PathPrefix"
    REGULAR_EXPRESSION = "RegularExpression"


class MatchType(str, Enum):
    """HTTPRoute header and query parameter match types."""
    EXACT = "Exact"
    REGULAR_EXPRESSION = "RegularExpression"


@dataclass(frozen=True, order=True)
class ObjectKey:
    """Namespaced name of a Kubernetes object."""
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> "ObjectKey":
        """Parse 'namespace/name'; a bare name lands in the default namespace."""
        if "/" in value:
            namespace, name = value.split("/", 1)
            return cls(namespace=namespace, name=name)
        return cls(namespace="default", name=value)


@dataclass
class ObjectMeta:
    """Metadata shared by every object read from the API."""
    name: str
    namespace: str = "default"
    uid: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    creation_timestamp: str = ""
    deletion_timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "ObjectMeta":
        data = data or {}
        namespace = data.get("namespace", "default")
        name = data["name"]
        return cls(
            name=name,
            namespace=namespace,
            uid=data.get("uid") or f"{namespace}/{name}",
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            creation_timestamp=str(data.get("creationTimestamp") or ""),
            deletion_timestamp=data.get("deletionTimestamp"),
        )


@dataclass
class Listener:
    """A Gateway listener."""
    name: str
    port: int = 80
    protocol: str = "HTTP"
    hostname: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "Listener":
        return cls(
            name=data.get("name", ""),
            port=data.get("port", 80),
            protocol=data.get("protocol", "HTTP"),
            hostname=data.get("hostname"),
        )


@dataclass
class Gateway:
    """A Gateway API Gateway."""
    metadata: ObjectMeta
    gateway_class_name: str = ""
    listeners: List[Listener] = field(default_factory=list)
    addresses: List[str] = field(default_factory=list)

    kind = "Gateway"
    group = GATEWAY_API_GROUP

    @classmethod
    def from_dict(cls, data: Dict) -> "Gateway":
        spec = data.get("spec") or {}
        status = data.get("status") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            gateway_class_name=spec.get("gatewayClassName", ""),
            listeners=[Listener.from_dict(listener) for listener in spec.get("listeners") or []],
            addresses=[a.get("value", "") for a in status.get("addresses") or []],
        )

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def hostnames(self) -> List[str]:
        """Listener hostnames, skipping listeners without one."""
        return [listener.hostname for listener in self.listeners if listener.hostname]


@dataclass
class ParentRef:
    """Reference from an HTTPRoute to its parent Gateway."""
    name: str
    namespace: Optional[str] = None
    group: str = GATEWAY_API_GROUP
    kind: str = "Gateway"
    section_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "ParentRef":
        return cls(
            name=data["name"],
            namespace=data.get("namespace"),
            group=data.get("group", GATEWAY_API_GROUP),
            kind=data.get("kind", "Gateway"),
            section_name=data.get("sectionName"),
        )


@dataclass
class HTTPPathMatch:
    """Path criterion of a route match. Type defaults to PathPrefix, value to '/'."""
    type: PathMatchType = PathMatchType.PATH_PREFIX
    value: str = "/"

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> Optional["HTTPPathMatch"]:
        if data is None:
            return None
        return cls(
            type=PathMatchType(data.get("type") or "PathPrefix"),
            value=data.get("value") or "/",
        )


@dataclass
class HTTPHeaderMatch:
    """Header criterion of a route match."""
    name: str
    value: str
    type: MatchType = MatchType.EXACT

    @classmethod
    def from_dict(cls, data: Dict) -> "HTTPHeaderMatch":
        return cls(
            name=data["name"],
            value=data["value"],
            type=MatchType(data.get("type") or "Exact"),
        )


@dataclass
class HTTPQueryParamMatch:
    """Query parameter criterion of a route match."""
    name: str
    value: str
    type: MatchType = MatchType.EXACT

    @classmethod
    def from_dict(cls, data: Dict) -> "HTTPQueryParamMatch":
        return cls(
            name=data["name"],
            value=data["value"],
            type=MatchType(data.get("type") or "Exact"),
        )


@dataclass
class HTTPRouteMatch:
    """A single match of an HTTPRoute rule. All criteria are optional."""
    path: Optional[HTTPPathMatch] = None
    method: Optional[str] = None
    headers: List[HTTPHeaderMatch] = field(default_factory=list)
    query_params: List[HTTPQueryParamMatch] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "HTTPRouteMatch":
        data = data or {}
        return cls(
            path=HTTPPathMatch.from_dict(data.get("path")),
            method=data.get("method"),
            headers=[HTTPHeaderMatch.from_dict(h) for h in data.get("headers") or []],
            query_params=[
                HTTPQueryParamMatch.from_dict(q) for q in data.get("queryParams") or []
            ],
        )


@dataclass
class HTTPRouteRule:
    """An HTTPRoute rule. A rule without matches is a catch-all."""
    matches: List[HTTPRouteMatch] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "HTTPRouteRule":
        data = data or {}
        return cls(matches=[HTTPRouteMatch.from_dict(m) for m in data.get("matches") or []])


@dataclass
class HTTPRoute:
    """A Gateway API HTTPRoute."""
    metadata: ObjectMeta
    parent_refs: List[ParentRef] = field(default_factory=list)
    hostnames: List[str] = field(default_factory=list)
    rules: List[HTTPRouteRule] = field(default_factory=list)

    kind = "HTTPRoute"
    group = GATEWAY_API_GROUP

    @classmethod
    def from_dict(cls, data: Dict) -> "HTTPRoute":
        spec = data.get("spec") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            parent_refs=[ParentRef.from_dict(p) for p in spec.get("parentRefs") or []],
            hostnames=list(spec.get("hostnames") or []),
            rules=[HTTPRouteRule.from_dict(r) for r in spec.get("rules") or []],
        )

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def parent_gateway_keys(self) -> List[ObjectKey]:
        """Keys of the Gateways this route attaches to, namespace defaulting to the route's."""
        return [
            ObjectKey(ref.namespace or self.namespace, ref.name)
            for ref in self.parent_refs
            if ref.kind == "Gateway" and ref.group == GATEWAY_API_GROUP
        ]
