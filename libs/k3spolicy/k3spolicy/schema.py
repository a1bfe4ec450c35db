"""
Loading and validation of object listings.

A listing is a multi-document YAML file holding Gateways, HTTPRoutes and
policies, as produced by ``kubectl get -o yaml`` per object.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import jsonschema
import yaml

from .policies import POLICY_KINDS, Policy, policy_from_dict
from .types import Gateway, HTTPRoute

logger = logging.getLogger(__name__)


@dataclass
class ObjectListing:
    """Objects read from a listing, grouped by role."""
    gateways: List[Gateway] = field(default_factory=list)
    routes: List[HTTPRoute] = field(default_factory=list)
    policies: List[Policy] = field(default_factory=list)


def get_schema_path() -> Path:
    """Get path to the bundled JSON schema."""
    return Path(__file__).parent / "schemas" / "objects-schema.json"


def load_schema() -> Dict[str, Any]:
    with open(get_schema_path()) as f:
        return json.load(f)


def validate_object(data: Dict[str, Any]) -> List[str]:
    """
    Validate one object against the JSON schema.

    Returns list of validation errors (empty if valid).
    """
    validator = jsonschema.Draft7Validator(load_schema())
    errors = []
    for error in validator.iter_errors(data):
        path = ".".join(str(p) for p in error.absolute_path)
        errors.append(f"{path}: {error.message}" if path else error.message)
    return errors


def parse_objects(documents: List[Any], validate: bool = True) -> ObjectListing:
    """
    Sort parsed documents into gateways, routes and policies.

    ``List`` documents are flattened. Unknown kinds are skipped.

    Raises:
        ValueError: If a document fails validation
    """
    listing = ObjectListing()
    queue = [d for d in documents if d]
    while queue:
        doc = queue.pop(0)
        if not isinstance(doc, dict):
            raise ValueError(f"Expected a mapping, got {type(doc).__name__}")
        kind = str(doc.get("kind") or "")
        if kind.endswith("List") and "items" in doc:
            queue = list(doc.get("items") or []) + queue
            continue

        if validate:
            errors = validate_object(doc)
            if errors:
                name = (doc.get("metadata") or {}).get("name", "<unnamed>")
                error_msg = "\n".join(f"  - {e}" for e in errors)
                raise ValueError(f"Invalid {kind} {name}:\n{error_msg}")

        if kind == "Gateway":
            listing.gateways.append(Gateway.from_dict(doc))
        elif kind == "HTTPRoute":
            listing.routes.append(HTTPRoute.from_dict(doc))
        elif kind in POLICY_KINDS:
            listing.policies.append(policy_from_dict(doc))
        else:
            logger.warning(f"Skipping unsupported kind {kind}")
    return listing


def load_objects(path: str, validate: bool = True) -> ObjectListing:
    """
    Load an object listing from a YAML file.

    Args:
        path: Path to a multi-document YAML file
        validate: Whether to validate every document against the schema

    Returns:
        Parsed ObjectListing

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If a document fails validation
    """
    listing_path = Path(path)
    if not listing_path.exists():
        raise FileNotFoundError(f"Object listing not found: {path}")

    with open(listing_path) as f:
        documents = list(yaml.safe_load_all(f))
    return parse_objects(documents, validate=validate)
