"""
Policy status conditions.
"""

from typing import Any, Dict, List, Optional

from .errors import PolicyError, PolicyOverridden, UnknownPolicyError
from .overrides import ReconcileResult
from .policies import Policy

ACCEPTED = "Accepted"
ENFORCED = "Enforced"


def accepted_condition(policy: Policy, error: Optional[Exception] = None) -> Dict[str, Any]:
    """Accepted condition; errors that are not PolicyErrors are reported as Unknown."""
    if error is None:
        return {
            "type": ACCEPTED,
            "status": "True",
            "reason": "Accepted",
            "message": f"{policy.kind} has been accepted",
        }
    if not isinstance(error, PolicyError):
        error = UnknownPolicyError(policy.kind, error)
    return {
        "type": ACCEPTED,
        "status": "False",
        "reason": error.reason,
        "message": str(error),
    }


def enforced_condition(policy: Policy, error: Optional[PolicyError] = None) -> Dict[str, Any]:
    if error is not None:
        return {
            "type": ENFORCED,
            "status": "False",
            "reason": error.reason,
            "message": str(error),
        }
    return {
        "type": ENFORCED,
        "status": "True",
        "reason": "Enforced",
        "message": f"{policy.kind} has been successfully enforced",
    }


def policy_status(policy: Policy, result: ReconcileResult) -> List[Dict[str, Any]]:
    """
    Status conditions of a policy after a run, sorted by type.

    Enforced is left out while the policy is not accepted.
    """
    error = result.error_for(policy)
    conditions = [accepted_condition(policy, error)]
    if error is None:
        if result.is_overridden(policy):
            overriding = [str(k) for k in result.affected_by(policy)]
            conditions.append(enforced_condition(policy, PolicyOverridden(policy.kind, overriding)))
        elif result.is_affected(policy):
            conditions.append({
                "type": ENFORCED,
                "status": "False",
                "reason": "Unknown",
                "message": f"{policy.kind} is not in the path to any existing routes",
            })
        else:
            conditions.append(enforced_condition(policy))
    return sorted(conditions, key=lambda c: c["type"])
