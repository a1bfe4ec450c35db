"""
Kubernetes manifest generators for policy enforcement.

Generates Authorino AuthConfigs, Istio AuthorizationPolicies, Istio
WasmPlugins and the Limitador limits from a policy topology.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .config import Settings
from .dialects import authorino_conditions, authorization_policy_rules, selected_rules, wasm_conditions
from .diff import compute_gateway_diff
from .errors import RouteRulesNotMatched
from .hostnames import filter_valid_subdomains
from .overrides import ReconcileResult, Resolution, resolve, validate_targets
from .policies import AuthPolicy, Policy, RateLimitPolicy, RouteSelector, route_selectors_from
from .ratelimit import (
    EffectiveLimits,
    IndexKey,
    build_index,
    limit_identifier,
    limitador_limits,
    limits_namespace,
    policies_for_gateway,
)
from .topology import Topology
from .types import Gateway, HTTPRoute

logger = logging.getLogger(__name__)

DELETE_TAG_ANNOTATION = "kuadrant.io/delete"
AUTH_RULE_SECTIONS = ("authentication", "metadata", "authorization", "callbacks")


def tag_object_to_delete(manifest: Dict[str, Any]) -> Dict[str, Any]:
    """Mark a desired object for removal by the apply step."""
    manifest["metadata"].setdefault("annotations", {})[DELETE_TAG_ANNOTATION] = "true"
    return manifest


def is_tagged_to_delete(manifest: Dict[str, Any]) -> bool:
    annotations = manifest.get("metadata", {}).get("annotations") or {}
    return annotations.get(DELETE_TAG_ANNOTATION) == "true"


def auth_config_name(policy: AuthPolicy) -> str:
    return f"ap-{policy.namespace}-{policy.name}"


def check_route_selectors(policy: Policy, route: HTTPRoute,
                          selectors: List[RouteSelector]) -> None:
    """Raise RouteRulesNotMatched when selectors pick none of the route's rules."""
    if selectors and not selected_rules(route, selectors):
        raise RouteRulesNotMatched(policy.kind)


def _scoped_configs(policy: AuthPolicy, route: HTTPRoute,
                    configs: Dict[str, Any]) -> Dict[str, Any]:
    """Auth rule configs with their route selectors turned into 'when' conditions."""
    scoped = {}
    for name, config in configs.items():
        config = dict(config or {})
        selectors = route_selectors_from(config)
        config.pop("routeSelectors", None)
        check_route_selectors(policy, route, selectors)
        conditions = authorino_conditions(route, selectors) if selectors else []
        if conditions:
            config["when"] = list(config.get("when") or []) + conditions
        scoped[name] = config
    return scoped


def _auth_config_spec(policy: AuthPolicy, route: HTTPRoute, hostnames: List[str]) -> Dict[str, Any]:
    spec: Dict[str, Any] = {"hosts": list(hostnames)}

    patterns = policy.patterns()
    if patterns:
        spec["patterns"] = patterns

    selectors = policy.route_selectors()
    check_route_selectors(policy, route, selectors)
    conditions = policy.conditions() + authorino_conditions(route, selectors)
    if conditions:
        spec["when"] = conditions

    scheme = policy.auth_scheme()
    for section in AUTH_RULE_SECTIONS:
        if scheme.get(section):
            spec[section] = _scoped_configs(policy, route, scheme[section])

    response = scheme.get("response")
    if response:
        success = response.get("success") or {}
        spec["response"] = {
            k: v for k, v in response.items() if k != "success"
        }
        if success:
            spec["response"]["success"] = {
                k: _scoped_configs(policy, route, v or {}) for k, v in success.items()
            }
    return spec


def generate_auth_config(resolution: Resolution,
                         result: Optional[ReconcileResult] = None) -> Dict[str, Any]:
    """
    Generate the Authorino AuthConfig for a resolved AuthPolicy.

    Args:
        resolution: Outcome of resolving the policy against the topology
        result: Per-run result object receiving route selector errors

    Returns:
        AuthConfig manifest as dict, tagged for deletion when the policy
        currently contributes nothing
    """
    result = result or ReconcileResult()
    policy = resolution.policy
    auth_config: Dict[str, Any] = {
        "apiVersion": "authorino.kuadrant.io/v1beta2",
        "kind": "AuthConfig",
        "metadata": {
            "name": auth_config_name(policy),
            "namespace": policy.namespace,
            "labels": {
                "kuadrant.io/authpolicy": policy.name,
            },
        },
        "spec": {},
    }
    if resolution.deleted or resolution.route is None:
        return tag_object_to_delete(auth_config)

    try:
        auth_config["spec"] = _auth_config_spec(policy, resolution.route, resolution.hostnames)
    except RouteRulesNotMatched as error:
        logger.warning(f"{policy.locator}: {error}")
        result.record_error(policy, error)
        return tag_object_to_delete(auth_config)
    return auth_config


def authorization_policy_name(gateway: Gateway, policy: AuthPolicy) -> str:
    if policy.targets_gateway():
        return f"on-{gateway.name}"
    return f"on-{gateway.name}-using-{policy.target_ref.name}"


def generate_authorization_policy(
    resolution: Resolution,
    gateway: Gateway,
    settings: Settings,
    result: Optional[ReconcileResult] = None,
) -> Dict[str, Any]:
    """
    Generate the Istio AuthorizationPolicy delegating a gateway's requests to Authorino.

    Args:
        resolution: Outcome of resolving the AuthPolicy
        gateway: Gateway the AuthorizationPolicy is installed on
        settings: Runtime settings (extension provider name)
        result: Per-run result object receiving route selector errors

    Returns:
        AuthorizationPolicy manifest as dict
    """
    result = result or ReconcileResult()
    policy = resolution.policy
    manifest: Dict[str, Any] = {
        "apiVersion": "security.istio.io/v1beta1",
        "kind": "AuthorizationPolicy",
        "metadata": {
            "name": authorization_policy_name(gateway, policy),
            "namespace": gateway.namespace,
            "labels": {
                AuthPolicy.back_reference_annotation: policy.name,
                f"{AuthPolicy.back_reference_annotation}-namespace": policy.namespace,
                "gateway-namespace": gateway.namespace,
                "gateway": gateway.name,
            },
        },
        "spec": {
            "action": "CUSTOM",
            "selector": {"matchLabels": dict(gateway.metadata.labels)},
            "provider": {"name": settings.auth_provider},
        },
    }
    if resolution.deleted or resolution.route is None:
        return tag_object_to_delete(manifest)

    gateway_hostnames = gateway.hostnames() or ["*"]
    route = resolution.route
    if isinstance(resolution.target, HTTPRoute) and route.hostnames:
        hostnames = filter_valid_subdomains(gateway_hostnames, route.hostnames)
    else:
        hostnames = gateway_hostnames

    selectors = policy.route_selectors()
    try:
        check_route_selectors(policy, route, selectors)
    except RouteRulesNotMatched as error:
        result.record_error(policy, error)
        return tag_object_to_delete(manifest)

    rules = authorization_policy_rules(route, hostnames, selectors)
    if rules:
        manifest["spec"]["rules"] = rules
    return manifest


def _effective_route(entry: EffectiveLimits, topology: Topology,
                     result: ReconcileResult) -> Optional[HTTPRoute]:
    policy = entry.policy
    if not policy.targets_gateway():
        return topology.target_of(policy)
    resolution = resolve(topology, policy, result)
    return None if resolution.deleted else resolution.route


def wasm_rules(policy: RateLimitPolicy, route: HTTPRoute,
               result: Optional[ReconcileResult] = None) -> List[Dict[str, Any]]:
    """
    One WASM rule per limit, sorted by limit name.

    A limit whose route selectors pick no rule of the route is left out and
    recorded as an error of the policy.
    """
    result = result or ReconcileResult()
    all_route_conditions = wasm_conditions(route)
    rules = []
    for name, limit in sorted(policy.limits().items()):
        try:
            check_route_selectors(policy, route, limit.route_selectors)
        except RouteRulesNotMatched as error:
            logger.warning(f"{policy.locator} limit {name}: {error}")
            result.record_error(policy, error)
            continue
        if limit.route_selectors:
            route_conditions = wasm_conditions(route, limit.route_selectors)
        else:
            route_conditions = all_route_conditions
        when = [
            {"selector": w["selector"], "operator": w["operator"], "value": w["value"]}
            for w in limit.when
        ]
        if route_conditions:
            conditions = [{"allOf": c["allOf"] + when} for c in route_conditions]
        else:
            conditions = [{"allOf": [w]} for w in when]
        rule: Dict[str, Any] = {
            "data": [{"static": {"key": limit_identifier(name), "value": "1"}}]
            + [{"selector": {"selector": counter}} for counter in limit.counters],
        }
        if conditions:
            rule["conditions"] = conditions
        rules.append(rule)
    return rules


def generate_wasm_plugin(
    gateway: Gateway,
    topology: Topology,
    index: Dict[IndexKey, EffectiveLimits],
    settings: Settings,
    result: Optional[ReconcileResult] = None,
) -> Optional[Dict[str, Any]]:
    """
    Generate the Istio WasmPlugin configuring rate limiting on a gateway.

    Args:
        gateway: Gateway to configure
        topology: Topology snapshot
        index: Rate limit index
        settings: Runtime settings
        result: Per-run result object

    Returns:
        WasmPlugin manifest as dict, or None when no policy applies
    """
    result = result or ReconcileResult()
    gateway_hostnames = gateway.hostnames() or ["*"]
    policies: List[Dict[str, Any]] = []

    for entry in policies_for_gateway(index, gateway):
        route = _effective_route(entry, topology, result)
        if route is None:
            logger.debug(f"{entry.policy.locator} has no effective route on gateway {gateway.key}")
            continue
        hostnames = filter_valid_subdomains(gateway_hostnames, route.hostnames) or gateway_hostnames
        scoped = HTTPRoute(metadata=route.metadata, hostnames=hostnames, rules=route.rules)
        rules = wasm_rules(entry.policy, scoped, result)
        if not rules:
            continue
        policies.append({
            "name": str(entry.policy.key),
            "domain": limits_namespace(entry.policy),
            "service": settings.rate_limit_cluster,
            "hostnames": hostnames,
            "rules": rules,
        })

    if not policies:
        return None

    return {
        "apiVersion": "extensions.istio.io/v1alpha1",
        "kind": "WasmPlugin",
        "metadata": {
            "name": f"kuadrant-{gateway.name}",
            "namespace": gateway.namespace,
        },
        "spec": {
            "targetRef": {
                "group": gateway.group,
                "kind": "Gateway",
                "name": gateway.name,
            },
            "url": settings.wasm_url,
            "phase": "STATS",
            "pluginConfig": {
                "failureMode": settings.failure_mode,
                "rateLimitPolicies": policies,
            },
        },
    }


def generate_limitador(index: Dict[IndexKey, EffectiveLimits], settings: Settings) -> Dict[str, Any]:
    """Generate the Limitador CR holding the limits of every indexed policy."""
    seen = {}
    for entry in index.values():
        seen.setdefault(entry.policy.key, entry.policy)
    limits: List[Dict[str, Any]] = []
    for key in sorted(seen):
        limits.extend(limitador_limits(seen[key]))
    return {
        "apiVersion": "limitador.kuadrant.io/v1alpha1",
        "kind": "Limitador",
        "metadata": {
            "name": settings.limitador_name,
            "namespace": settings.limitador_namespace,
        },
        "spec": {
            "limits": limits,
        },
    }


def generate_manifests(topology: Topology, settings: Settings,
                       result: ReconcileResult) -> List[Dict[str, Any]]:
    """Desired objects for every policy and gateway in the topology."""
    manifests: List[Dict[str, Any]] = []

    for policy in topology.policies(lambda p: p.kind == AuthPolicy.kind):
        resolution = resolve(topology, policy, result)
        manifests.append(generate_auth_config(resolution, result))
        diff = compute_gateway_diff(topology, policy)
        for gateway in diff.gateways_to_configure():
            manifests.append(generate_authorization_policy(resolution, gateway, settings, result))
        for gateway in diff.invalid_refs:
            stale = Resolution(policy=policy, deleted=True)
            manifests.append(generate_authorization_policy(stale, gateway, settings))

    for policy in topology.policies(lambda p: p.kind == RateLimitPolicy.kind):
        resolve(topology, policy, result)

    index = build_index(topology, result)
    for gateway in topology.gateways():
        plugin = generate_wasm_plugin(gateway, topology, index, settings, result)
        if plugin is not None:
            manifests.append(plugin)
    if index:
        manifests.append(generate_limitador(index, settings))
    return manifests


def generate_all_manifests(
    topology: Topology,
    output_dir: str,
    settings: Optional[Settings] = None,
) -> ReconcileResult:
    """
    Generate all enforcement manifests and write them to the output directory.

    Args:
        topology: Topology snapshot
        output_dir: Output directory for manifests
        settings: Runtime settings (defaults to the environment)

    Returns:
        ReconcileResult with policy errors and affected policies
    """
    settings = settings or Settings.from_env()
    result = ReconcileResult()
    validate_targets(topology, result)

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    all_manifests = generate_manifests(topology, settings, result)
    deleted = sum(1 for m in all_manifests if is_tagged_to_delete(m))
    print(f"Generated {len(all_manifests)} manifests ({deleted} tagged for deletion)")

    if all_manifests:
        manifest_content = yaml.dump_all(all_manifests, default_flow_style=False)
        (output_path / "policy-manifests.yaml").write_text(manifest_content)
        print(f"Wrote manifests to {output_path / 'policy-manifests.yaml'}")
    else:
        print("No policies to generate")
    return result
