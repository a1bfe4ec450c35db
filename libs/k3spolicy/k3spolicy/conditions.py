"""
Route-match condition compiler.

Turns an HTTPRoute rule plus hostnames into a dialect-free predicate tree.
The tree is rendered into each downstream rule language by ``dialects``.
Field order within a match is fixed: host, method, path, headers, query
params.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from .types import (
    HTTPHeaderMatch,
    HTTPPathMatch,
    HTTPQueryParamMatch,
    HTTPRouteMatch,
    HTTPRouteRule,
    MatchType,
    PathMatchType,
)

# Criteria carried by predicate leaves
HOST = "host"
METHOD = "method"
PATH = "path"
HEADER = "header"
QUERY = "query"

EQ = "eq"
MATCHES = "matches"


@dataclass(frozen=True)
class Predicate:
    """Leaf condition. ``regex`` marks a user-supplied regular expression."""
    selector: str
    operator: str
    value: str
    criterion: str
    regex: bool = False
    name: str = ""
    raw: str = ""


@dataclass(frozen=True)
class AllOf:
    items: Tuple["Expression", ...]


@dataclass(frozen=True)
class AnyOf:
    items: Tuple["Expression", ...]


Expression = Union[Predicate, AllOf, AnyOf]


def strip_catch_all(hostnames: List[str]) -> List[str]:
    return [h for h in hostnames if h != "*"]


def hostnames_to_regex(hostnames: List[str]) -> str:
    return "|".join(h.replace(".", "\\.").replace("*", ".*") for h in hostnames)


def host_predicate(hostnames: List[str]) -> Optional[Predicate]:
    hosts = strip_catch_all(hostnames)
    if not hosts:
        return None
    return Predicate("request.host", MATCHES, hostnames_to_regex(hosts), HOST)


def method_predicate(method: str) -> Predicate:
    return Predicate("request.method", EQ, method, METHOD)


def path_predicate(path: HTTPPathMatch) -> Predicate:
    value = path.value or "/"
    if path.type == PathMatchType.EXACT:
        return Predicate("request.url_path", EQ, value, PATH, raw=value)
    if path.type == PathMatchType.REGULAR_EXPRESSION:
        return Predicate("request.url_path", MATCHES, value, PATH, regex=True, raw=value)
    return Predicate("request.url_path", MATCHES, value + ".*", PATH, raw=value)


def header_predicate(header: HTTPHeaderMatch) -> Predicate:
    regex = header.type == MatchType.REGULAR_EXPRESSION
    return Predicate(
        f"request.headers.{header.name.lower()}",
        MATCHES if regex else EQ,
        header.value,
        HEADER,
        regex=regex,
        name=header.name,
    )


def query_param_predicate(param: HTTPQueryParamMatch) -> AnyOf:
    """
    Match a query parameter appearing first (?name=) or later (&name=).

    The path is opaque to the selector language, so the value is extracted
    from the raw request path up to the next '&'.
    """
    regex = param.type == MatchType.REGULAR_EXPRESSION
    operator = MATCHES if regex else EQ
    return AnyOf(tuple(
        Predicate(
            f'request.path.@extract:{{"sep":"{sep}{param.name}=","pos":1}}|@extract:{{"sep":"&"}}',
            operator,
            param.value,
            QUERY,
            regex=regex,
            name=param.name,
        )
        for sep in ("?", "&")
    ))


def _first_by_name(entries, key):
    """Keep the first entry of every name; later duplicates are ignored by the route."""
    seen = set()
    kept = []
    for entry in entries:
        name = key(entry)
        if name in seen:
            continue
        seen.add(name)
        kept.append(entry)
    return kept


def compile_match(match: HTTPRouteMatch, host: Optional[Predicate]) -> AllOf:
    items: List[Expression] = []
    if host is not None:
        items.append(host)
    if match.method:
        items.append(method_predicate(match.method))
    if match.path is not None:
        items.append(path_predicate(match.path))
    # header names are case-insensitive, query param names are not
    headers = _first_by_name(match.headers, lambda h: h.name.lower())
    params = _first_by_name(match.query_params, lambda q: q.name)
    items.extend(header_predicate(h) for h in headers)
    items.extend(query_param_predicate(q) for q in params)
    return AllOf(tuple(items))


def compile_rule(rule: HTTPRouteRule, hostnames: List[str]) -> Optional[Expression]:
    """
    Compile a route rule into a predicate tree.

    Args:
        rule: HTTPRoute rule
        hostnames: Hostnames the rule applies to; "*" entries are ignored

    Returns:
        AnyOf with one AllOf arm per match; the bare host predicate for a
        rule without matches; None when nothing restricts the rule
    """
    host = host_predicate(hostnames)
    if not rule.matches:
        return host
    arms = tuple(
        arm for arm in (compile_match(m, host) for m in rule.matches) if arm.items
    )
    if not arms:
        return None
    return AnyOf(arms)

