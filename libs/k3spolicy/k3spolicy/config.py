"""
Runtime settings for manifest generation.
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional


DEFAULT_AUTH_PROVIDER = "kuadrant-authorization"
DEFAULT_RATE_LIMIT_CLUSTER = "kuadrant-rate-limiting-service"
DEFAULT_WASM_URL = "oci://quay.io/kuadrant/wasm-shim:latest"


@dataclass
class Settings:
    """Names of the enforcement components the generated objects point at."""
    auth_provider: str = DEFAULT_AUTH_PROVIDER
    rate_limit_cluster: str = DEFAULT_RATE_LIMIT_CLUSTER
    failure_mode: str = "deny"
    limitador_name: str = "limitador"
    limitador_namespace: str = "kuadrant-system"
    wasm_url: str = DEFAULT_WASM_URL

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "Settings":
        if not data:
            return cls()
        failure_mode = data.get("failure_mode", "deny")
        if failure_mode not in ("deny", "allow"):
            raise ValueError(f"Invalid failure_mode: {failure_mode}. Must be 'deny' or 'allow'")
        return cls(
            auth_provider=data.get("auth_provider", DEFAULT_AUTH_PROVIDER),
            rate_limit_cluster=data.get("rate_limit_cluster", DEFAULT_RATE_LIMIT_CLUSTER),
            failure_mode=failure_mode,
            limitador_name=data.get("limitador_name", "limitador"),
            limitador_namespace=data.get("limitador_namespace", "kuadrant-system"),
            wasm_url=data.get("wasm_url", DEFAULT_WASM_URL),
        )

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the environment, falling back to defaults."""
        return cls.from_dict({
            "auth_provider": os.environ.get("AUTH_PROVIDER", DEFAULT_AUTH_PROVIDER),
            "rate_limit_cluster": os.environ.get("KUADRANT_RATELIMIT_CLUSTER", DEFAULT_RATE_LIMIT_CLUSTER),
            "failure_mode": os.environ.get("KUADRANT_FAILURE_MODE", "deny"),
            "limitador_name": os.environ.get("LIMITADOR_NAME", "limitador"),
            "limitador_namespace": os.environ.get("LIMITADOR_NAMESPACE", "kuadrant-system"),
            "wasm_url": os.environ.get("RELATED_IMAGE_WASMSHIM", DEFAULT_WASM_URL),
        })
