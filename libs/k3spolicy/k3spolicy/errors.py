"""
Policy errors surfaced through status conditions.

None of these abort a run: they are recorded against the policy's locator in
a ReconcileResult and rendered by the status helpers.
"""

from typing import List, Optional


class PolicyError(Exception):
    """Base class for errors reported on a policy's status."""

    reason = "Unknown"

    def __init__(self, kind: str, message: str):
        self.kind = kind
        super().__init__(message)


class TargetNotFound(PolicyError):
    reason = "TargetNotFound"

    def __init__(self, kind: str, target_name: str, detail: Optional[str] = None):
        self.target_name = target_name
        message = f"{kind} target {target_name} was not found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(kind, message)


class MalformedTargetKind(PolicyError):
    reason = "Invalid"

    def __init__(self, kind: str, target_kind: str):
        self.target_kind = target_kind
        super().__init__(
            kind,
            f"{kind} target is invalid: kind {target_kind!r} is neither Gateway nor HTTPRoute",
        )


class OverrideConflict(PolicyError):
    reason = "Conflicted"

    def __init__(self, kind: str, winner: str, gateway: str):
        self.winner = winner
        self.gateway = gateway
        super().__init__(
            kind,
            f"{kind} is conflicted by {winner}: only one atomic override "
            f"is allowed per gateway {gateway}",
        )


class PolicyOverridden(PolicyError):
    reason = "Overridden"

    def __init__(self, kind: str, overriding_policies: List[str]):
        self.overriding_policies = list(overriding_policies)
        super().__init__(kind, f"{kind} is overridden by {self.overriding_policies}")


class UnknownPolicyError(PolicyError):
    reason = "Unknown"

    def __init__(self, kind: str, error: Exception):
        super().__init__(kind, f"{kind} has encountered some issues: {error}")


class RouteRulesNotMatched(PolicyError):
    reason = "Unknown"

    def __init__(self, kind: str):
        super().__init__(
            kind,
            f"{kind} cannot match any route rules, check for invalid route selectors in the policy",
        )
