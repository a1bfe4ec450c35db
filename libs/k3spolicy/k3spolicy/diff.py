"""
Gateway reference diff.

Partitions gateways into those that already reference a policy, those that
should but do not yet, and those that do but no longer should. Gateways
record the policies they were last configured for in a back-reference
annotation holding a JSON list of {"Namespace", "Name"} objects.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import List, Set

from .policies import Policy
from .topology import Topology
from .types import Gateway, HTTPRoute, ObjectKey

logger = logging.getLogger(__name__)


class GatewayWrapper:
    """Reads and edits the back-reference annotation of a Gateway for one policy kind."""

    def __init__(self, gateway: Gateway, annotation: str):
        self.gateway = gateway
        self.annotation = annotation

    def policy_refs(self) -> List[ObjectKey]:
        raw = self.gateway.metadata.annotations.get(self.annotation)
        if not raw:
            return []
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError:
            entries = None
        if not isinstance(entries, list):
            logger.warning(
                f"Ignoring malformed {self.annotation} annotation on gateway {self.gateway.key}"
            )
            return []
        return [
            ObjectKey(str(e.get("Namespace", "")), str(e.get("Name", "")))
            for e in entries
            if isinstance(e, dict)
        ]

    def contains_policy(self, key: ObjectKey) -> bool:
        return key in self.policy_refs()

    def _write(self, refs: List[ObjectKey]) -> None:
        annotations = self.gateway.metadata.annotations
        if not refs:
            annotations.pop(self.annotation, None)
            return
        annotations[self.annotation] = json.dumps(
            [{"Namespace": r.namespace, "Name": r.name} for r in refs]
        )

    def add_policy(self, key: ObjectKey) -> bool:
        """Add the policy key; returns False when it was already present."""
        refs = self.policy_refs()
        if key in refs:
            return False
        self._write(refs + [key])
        return True

    def delete_policy(self, key: ObjectKey) -> bool:
        """Remove the policy key; returns False when it was not present."""
        refs = self.policy_refs()
        if key not in refs:
            return False
        self._write([r for r in refs if r != key])
        return True


@dataclass
class GatewayDiff:
    """Three-way partition of gateways for one policy."""
    valid_refs: List[Gateway] = field(default_factory=list)
    missing_refs: List[Gateway] = field(default_factory=list)
    invalid_refs: List[Gateway] = field(default_factory=list)

    def gateways_to_configure(self) -> List[Gateway]:
        return sorted(self.valid_refs + self.missing_refs, key=lambda g: g.key)


def should_reference(topology: Topology, policy: Policy) -> Set[ObjectKey]:
    """Keys of the gateways the policy should be referenced by."""
    if policy.is_deleting:
        return set()
    target = topology.target_of(policy)
    if isinstance(target, Gateway):
        return {target.key}
    if isinstance(target, HTTPRoute):
        return {g.key for g in topology.gateways_of(target)}
    return set()


def compute_gateway_diff(topology: Topology, policy: Policy) -> GatewayDiff:
    """
    Compute the gateway reference diff of a policy.

    Args:
        topology: Topology snapshot
        policy: Policy to diff

    Returns:
        GatewayDiff with each list ordered by gateway key
    """
    should = should_reference(topology, policy)
    diff = GatewayDiff()
    for gateway in topology.gateways():
        does = GatewayWrapper(gateway, policy.back_reference_annotation).contains_policy(policy.key)
        wanted = gateway.key in should
        if wanted and does:
            diff.valid_refs.append(gateway)
        elif wanted:
            diff.missing_refs.append(gateway)
        elif does:
            diff.invalid_refs.append(gateway)
    logger.debug(
        f"{policy.locator} gateway diff: valid={len(diff.valid_refs)} "
        f"missing={len(diff.missing_refs)} invalid={len(diff.invalid_refs)}"
    )
    return diff


def reconcile_gateway_refs(diff: GatewayDiff, policy: Policy) -> List[Gateway]:
    """
    Bring back-reference annotations in line with the diff.

    Returns:
        Gateways whose annotation changed
    """
    updated = []
    for gateway in diff.missing_refs:
        if GatewayWrapper(gateway, policy.back_reference_annotation).add_policy(policy.key):
            updated.append(gateway)
    for gateway in diff.invalid_refs:
        if GatewayWrapper(gateway, policy.back_reference_annotation).delete_policy(policy.key):
            updated.append(gateway)
    return updated
