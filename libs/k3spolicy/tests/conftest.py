"""Shared builders for Gateway API objects and policies."""

from typing import Dict, List, Optional

import pytest

from k3spolicy.policies import Policy, policy_from_dict
from k3spolicy.types import GATEWAY_API_GROUP, Gateway, HTTPRoute


def gateway_doc(
    name: str = "gw",
    namespace: str = "default",
    hostnames: Optional[List[str]] = None,
    annotations: Optional[Dict[str, str]] = None,
    labels: Optional[Dict[str, str]] = None,
) -> Dict:
    listeners = [
        {"name": f"listener-{i}", "port": 80, "protocol": "HTTP", "hostname": h}
        for i, h in enumerate(hostnames or [])
    ] or [{"name": "http", "port": 80, "protocol": "HTTP"}]
    return {
        "apiVersion": "gateway.networking.k8s.io/v1",
        "kind": "Gateway",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "annotations": dict(annotations or {}),
            "labels": dict(labels or {"istio.io/gateway-name": name}),
        },
        "spec": {"gatewayClassName": "istio", "listeners": listeners},
    }


def route_doc(
    name: str = "toystore",
    namespace: str = "default",
    gateways: Optional[List] = None,
    hostnames: Optional[List[str]] = None,
    rules: Optional[List[Dict]] = None,
) -> Dict:
    parent_refs = []
    for gw in gateways if gateways is not None else ["gw"]:
        if isinstance(gw, dict):
            parent_refs.append(gw)
        else:
            parent_refs.append({"name": gw})
    return {
        "apiVersion": "gateway.networking.k8s.io/v1",
        "kind": "HTTPRoute",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "parentRefs": parent_refs,
            "hostnames": list(hostnames or []),
            "rules": rules if rules is not None else [
                {"matches": [{"path": {"type": "PathPrefix", "value": "/toy"}}]}
            ],
        },
    }


def policy_doc(
    kind: str,
    name: str,
    target_kind: str = "HTTPRoute",
    target_name: str = "toystore",
    namespace: str = "default",
    created: str = "2024-01-01T00:00:00Z",
    spec: Optional[Dict] = None,
    overrides: bool = False,
    group: str = GATEWAY_API_GROUP,
) -> Dict:
    body = dict(spec or {})
    policy_spec: Dict = {
        "targetRef": {"group": group, "kind": target_kind, "name": target_name},
    }
    if overrides:
        policy_spec["overrides"] = body
    else:
        policy_spec.update(body)
    return {
        "apiVersion": "kuadrant.io/v1beta2",
        "kind": kind,
        "metadata": {"name": name, "namespace": namespace, "creationTimestamp": created},
        "spec": policy_spec,
    }


@pytest.fixture
def make_gateway():
    """Factory for Gateway objects."""
    def _make(*args, **kwargs) -> Gateway:
        return Gateway.from_dict(gateway_doc(*args, **kwargs))
    return _make


@pytest.fixture
def make_route():
    """Factory for HTTPRoute objects."""
    def _make(*args, **kwargs) -> HTTPRoute:
        return HTTPRoute.from_dict(route_doc(*args, **kwargs))
    return _make


@pytest.fixture
def make_policy():
    """Factory for policies of any kind."""
    def _make(*args, **kwargs) -> Policy:
        return policy_from_dict(policy_doc(*args, **kwargs))
    return _make


@pytest.fixture
def doc_builders():
    """Raw manifest builders, for tests that go through YAML."""
    return {"gateway": gateway_doc, "route": route_doc, "policy": policy_doc}
