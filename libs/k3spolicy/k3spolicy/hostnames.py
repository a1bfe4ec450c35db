"""Hostname wildcard matching."""

from typing import List


def subset_of(name: str, superset: str) -> bool:
    """
    Check whether hostname ``name`` is covered by hostname ``superset``.

    A bare "*" covers everything. A wildcard such as "*.example.com" covers
    any subdomain (including nested wildcards) but not "example.com" itself.
    """
    if superset == "*":
        return True
    if name == "*":
        return False
    if superset.startswith("*."):
        suffix = superset[1:]
        if name.startswith("*."):
            return name[1:].endswith(suffix)
        return name.endswith(suffix) and len(name) > len(suffix)
    return name == superset


def filter_valid_subdomains(domains: List[str], subdomains: List[str]) -> List[str]:
    """Return the subdomains covered by at least one of the domains, order kept."""
    return [s for s in subdomains if any(subset_of(s, d) for d in domains)]
