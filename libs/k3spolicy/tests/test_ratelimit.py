"""Tests for the rate limit index and Limitador limits."""

import re

import pytest

from k3spolicy.ratelimit import (
    build_index,
    limit_identifier,
    limitador_limits,
    policy_sort_key,
    rate_seconds,
)
from k3spolicy.topology import build_topology
from k3spolicy.types import ObjectKey

LIMITS = {
    "limits": {
        "toys": {
            "rates": [{"limit": 50, "duration": 1, "unit": "minute"}],
            "counters": ["auth.identity.username"],
        },
    },
}


def key(name, namespace="default"):
    return ObjectKey(namespace, name)


class TestBuildIndex:
    """Tests for merging gateway and route rate limit policies."""

    def test_gateway_policy_without_free_routes_contributes_nothing(
        self, make_gateway, make_route, make_policy
    ):
        topology = build_topology(
            [make_gateway("gw")],
            [make_route("toystore")],
            [
                make_policy("RateLimitPolicy", "gw-rlp", target_kind="Gateway", target_name="gw", spec=LIMITS),
                make_policy("RateLimitPolicy", "route-rlp", spec=LIMITS),
            ],
        )

        index = build_index(topology)

        assert list(index) == [(key("route-rlp"), key("gw"))]

    def test_gateway_without_routes_contributes_nothing(self, make_gateway, make_policy):
        topology = build_topology(
            [make_gateway("gw")],
            [],
            [make_policy("RateLimitPolicy", "gw-rlp", target_kind="Gateway", target_name="gw", spec=LIMITS)],
        )

        assert build_index(topology) == {}

    def test_inherited_policy_is_indexed_once(self, make_gateway, make_route, make_policy):
        topology = build_topology(
            [make_gateway("gw")],
            [make_route("a"), make_route("b")],
            [make_policy("RateLimitPolicy", "gw-rlp", target_kind="Gateway", target_name="gw", spec=LIMITS)],
        )

        index = build_index(topology)

        assert list(index) == [(key("gw-rlp"), key("gw"))]
        entry = index[(key("gw-rlp"), key("gw"))]
        assert [r.name for r in entry.routes] == ["a", "b"]
        assert entry.limits["toys"].rates[0].limit == 50

    def test_route_policy_on_two_gateways(self, make_gateway, make_route, make_policy):
        topology = build_topology(
            [make_gateway("gw-a"), make_gateway("gw-b")],
            [make_route("toystore", gateways=["gw-a", "gw-b"])],
            [make_policy("RateLimitPolicy", "rlp", spec=LIMITS)],
        )

        assert sorted(build_index(topology)) == [
            (key("rlp"), key("gw-a")),
            (key("rlp"), key("gw-b")),
        ]

    def test_atomic_override_supersedes_route_policies(self, make_gateway, make_route, make_policy):
        topology = build_topology(
            [make_gateway("gw")],
            [make_route("a"), make_route("b")],
            [
                make_policy("RateLimitPolicy", "gw-rlp", target_kind="Gateway", target_name="gw",
                            spec=LIMITS, overrides=True),
                make_policy("RateLimitPolicy", "a-rlp", target_name="a", spec=LIMITS),
            ],
        )

        index = build_index(topology)

        assert list(index) == [(key("gw-rlp"), key("gw"))]
        assert index[(key("gw-rlp"), key("gw"))].limits["toys"].counters == ["auth.identity.username"]

    def test_defaults_section_is_used(self, make_gateway, make_route, make_policy):
        topology = build_topology(
            [make_gateway("gw")],
            [make_route("a")],
            [make_policy("RateLimitPolicy", "gw-rlp", target_kind="Gateway", target_name="gw",
                         spec={"defaults": LIMITS})],
        )

        entry = build_index(topology)[(key("gw-rlp"), key("gw"))]

        assert list(entry.limits) == ["toys"]


class TestLimitIdentifier:
    def test_format(self):
        assert re.fullmatch(r"limit\.my_limit__[0-9a-f]{8}", limit_identifier("my-limit"))

    def test_sanitized_names_stay_unique(self):
        assert limit_identifier("a-b") != limit_identifier("a_b")
        assert limit_identifier("a-b").startswith("limit.a_b__")

    def test_stable(self):
        assert limit_identifier("toys") == limit_identifier("toys")


class TestLimitadorLimits:
    def test_one_limit_per_rate(self, make_policy):
        policy = make_policy("RateLimitPolicy", "rlp", spec={
            "limits": {
                "toys": {
                    "rates": [
                        {"limit": 5, "duration": 10, "unit": "second"},
                        {"limit": 100, "duration": 1, "unit": "minute"},
                    ],
                    "counters": ["auth.identity.username"],
                },
            },
        })

        limits = limitador_limits(policy)

        identifier = limit_identifier("toys")
        assert limits == [
            {
                "namespace": "default/rlp",
                "maxValue": 5,
                "seconds": 10,
                "conditions": [f'{identifier} == "1"'],
                "variables": ["auth.identity.username"],
            },
            {
                "namespace": "default/rlp",
                "maxValue": 100,
                "seconds": 60,
                "conditions": [f'{identifier} == "1"'],
                "variables": ["auth.identity.username"],
            },
        ]

    @pytest.mark.parametrize("duration,unit,expected", [
        (1, "second", 1),
        (2, "minute", 120),
        (1, "hour", 3600),
        (3, "day", 259200),
        (-5, "minute", 0),
    ])
    def test_rate_seconds(self, duration, unit, expected):
        assert rate_seconds(duration, unit) == expected


class TestPolicySortKey:
    def test_gateway_policies_first_then_oldest(self, make_policy):
        route_old = make_policy("RateLimitPolicy", "route-old", created="2023-01-01T00:00:00Z")
        gateway_new = make_policy("RateLimitPolicy", "gw-new", target_kind="Gateway",
                                  target_name="gw", created="2024-06-01T00:00:00Z")
        route_new = make_policy("RateLimitPolicy", "route-new", created="2024-01-01T00:00:00Z")

        ordered = sorted([route_new, route_old, gateway_new], key=policy_sort_key)

        assert [p.name for p in ordered] == ["gw-new", "route-old", "route-new"]
