"""Tests for the gateway reference diff."""

import json

import pytest

from k3spolicy.diff import GatewayWrapper, compute_gateway_diff, reconcile_gateway_refs
from k3spolicy.policies import AuthPolicy
from k3spolicy.topology import build_topology
from k3spolicy.types import ObjectKey

ANNOTATION = "kuadrant.io/authpolicies"


def refs(*names, namespace="default"):
    return {ANNOTATION: json.dumps([{"Namespace": namespace, "Name": n} for n in names])}


def names(gateways):
    return [g.name for g in gateways]


class TestGatewayWrapper:
    def test_reads_policy_refs(self, make_gateway):
        gateway = make_gateway("gw", annotations=refs("ap", "other"))

        wrapper = GatewayWrapper(gateway, ANNOTATION)

        assert wrapper.policy_refs() == [ObjectKey("default", "ap"), ObjectKey("default", "other")]
        assert wrapper.contains_policy(ObjectKey("default", "ap"))

    def test_malformed_annotation_is_ignored(self, make_gateway):
        gateway = make_gateway("gw", annotations={ANNOTATION: "not-json"})

        assert GatewayWrapper(gateway, ANNOTATION).policy_refs() == []

    @pytest.mark.parametrize("raw", [
        '{"Namespace": "default", "Name": "ap"}',
        '["default/ap"]',
        '"default/ap"',
    ])
    def test_wrongly_shaped_annotation_is_ignored(self, make_gateway, make_policy, raw):
        gateway = make_gateway("gw", annotations={ANNOTATION: raw})
        policy = make_policy("AuthPolicy", "ap", target_kind="Gateway", target_name="gw")
        topology = build_topology([gateway], [], [policy])

        assert GatewayWrapper(gateway, ANNOTATION).policy_refs() == []
        assert names(compute_gateway_diff(topology, policy).missing_refs) == ["gw"]

    def test_non_object_entries_are_skipped(self, make_gateway):
        gateway = make_gateway("gw", annotations={
            ANNOTATION: '["default/other", {"Namespace": "default", "Name": "ap"}]',
        })

        assert GatewayWrapper(gateway, ANNOTATION).policy_refs() == [ObjectKey("default", "ap")]

    def test_add_and_delete(self, make_gateway):
        gateway = make_gateway("gw")
        wrapper = GatewayWrapper(gateway, ANNOTATION)
        key = ObjectKey("default", "ap")

        assert wrapper.add_policy(key) is True
        assert wrapper.add_policy(key) is False
        assert json.loads(gateway.metadata.annotations[ANNOTATION]) == [
            {"Namespace": "default", "Name": "ap"}
        ]

        assert wrapper.delete_policy(key) is True
        assert wrapper.delete_policy(key) is False
        assert ANNOTATION not in gateway.metadata.annotations


class TestComputeGatewayDiff:
    """Tests for the valid/missing/invalid partition."""

    def test_gateway_target(self, make_gateway, make_policy):
        policy = make_policy("AuthPolicy", "ap", target_kind="Gateway", target_name="gw-a")
        topology = build_topology(
            [
                make_gateway("gw-a", annotations=refs("ap")),
                make_gateway("gw-b", annotations=refs("ap")),
                make_gateway("gw-c"),
            ],
            [],
            [policy],
        )

        diff = compute_gateway_diff(topology, policy)

        assert names(diff.valid_refs) == ["gw-a"]
        assert names(diff.missing_refs) == []
        assert names(diff.invalid_refs) == ["gw-b"]

    def test_route_target_references_parent_gateways(self, make_gateway, make_route, make_policy):
        policy = make_policy("AuthPolicy", "ap")
        topology = build_topology(
            [make_gateway("gw-a", annotations=refs("ap")), make_gateway("gw-b")],
            [make_route("toystore", gateways=["gw-a", "gw-b"])],
            [policy],
        )

        diff = compute_gateway_diff(topology, policy)

        assert names(diff.valid_refs) == ["gw-a"]
        assert names(diff.missing_refs) == ["gw-b"]
        assert names(diff.gateways_to_configure()) == ["gw-a", "gw-b"]

    def test_other_kind_annotation_is_ignored(self, make_gateway, make_policy):
        policy = make_policy("RateLimitPolicy", "ap", target_kind="Gateway", target_name="gw")
        topology = build_topology([make_gateway("gw", annotations=refs("ap"))], [], [policy])

        diff = compute_gateway_diff(topology, policy)

        assert names(diff.missing_refs) == ["gw"]
        assert diff.valid_refs == []

    def test_deleted_policy_should_reference_nothing(self, make_gateway, make_route, doc_builders):
        doc = doc_builders["policy"]("AuthPolicy", "ap")
        doc["metadata"]["deletionTimestamp"] = "2024-02-01T00:00:00Z"
        policy = AuthPolicy.from_dict(doc)
        topology = build_topology([make_gateway("gw", annotations=refs("ap"))], [make_route()], [policy])

        diff = compute_gateway_diff(topology, policy)

        assert names(diff.invalid_refs) == ["gw"]
        assert diff.valid_refs == [] and diff.missing_refs == []

    def test_missing_target(self, make_gateway, make_policy):
        policy = make_policy("AuthPolicy", "ap", target_name="missing")
        topology = build_topology([make_gateway("gw", annotations=refs("ap"))], [], [policy])

        diff = compute_gateway_diff(topology, policy)

        assert names(diff.invalid_refs) == ["gw"]

    @pytest.mark.parametrize("annotated", [[], ["gw-a"], ["gw-b"], ["gw-a", "gw-b", "gw-c"]])
    def test_partition_is_complete(self, make_gateway, make_route, make_policy, annotated):
        policy = make_policy("AuthPolicy", "ap")
        gateways = [
            make_gateway(n, annotations=refs("ap") if n in annotated else None)
            for n in ("gw-a", "gw-b", "gw-c")
        ]
        topology = build_topology(gateways, [make_route(gateways=["gw-a", "gw-b"])], [policy])

        diff = compute_gateway_diff(topology, policy)

        should = {"gw-a", "gw-b"}
        does = set(annotated)
        valid, missing, invalid = (set(names(d)) for d in (diff.valid_refs, diff.missing_refs, diff.invalid_refs))
        assert valid | missing == should
        assert valid | invalid == does
        assert not (valid & missing) and not (valid & invalid) and not (missing & invalid)


class TestReconcileGatewayRefs:
    def test_applies_diff(self, make_gateway, make_policy):
        policy = make_policy("AuthPolicy", "ap", target_kind="Gateway", target_name="gw-a")
        gw_a = make_gateway("gw-a")
        gw_b = make_gateway("gw-b", annotations=refs("ap"))
        topology = build_topology([gw_a, gw_b], [], [policy])

        updated = reconcile_gateway_refs(compute_gateway_diff(topology, policy), policy)

        assert names(updated) == ["gw-a", "gw-b"]
        assert GatewayWrapper(gw_a, ANNOTATION).contains_policy(policy.key)
        assert not GatewayWrapper(gw_b, ANNOTATION).contains_policy(policy.key)
        assert names(compute_gateway_diff(topology, policy).valid_refs) == ["gw-a"]
