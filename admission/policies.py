from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import yaml

from .config import SecurityConfig
from .errors import ConfigurationError
from .facade import EndpointPolicy


DEFAULT_POLICIES: Dict[str, EndpointPolicy] = {
    "default": EndpointPolicy(name="default", purpose="short"),
    "register": EndpointPolicy(name="register", purpose="medium"),
    "login": EndpointPolicy(name="login", purpose="login", authenticates=True),
    "refresh": EndpointPolicy(name="refresh", purpose="refresh"),
}

_ALLOWED_KEYS = {"purpose", "authenticates", "skip_ip_check"}


def _parse_entry(name: str, item) -> EndpointPolicy:
    if not isinstance(item, dict):
        raise ConfigurationError(f"Endpoint policy {name!r} must be a mapping")
    unknown = set(item) - _ALLOWED_KEYS
    if unknown:
        raise ConfigurationError(f"Endpoint policy {name!r} has unknown keys: {sorted(unknown)}")
    return EndpointPolicy(
        name=name,
        purpose=str(item.get("purpose", "short")),
        authenticates=bool(item.get("authenticates", False)),
        skip_ip_check=bool(item.get("skip_ip_check", False)),
    )


def load_endpoint_policies(
    config: SecurityConfig,
    path: Optional[str] = None,
) -> Dict[str, EndpointPolicy]:
    """
    Return the default endpoint policies, overlaid with entries from a
    YAML file when ``path`` is set:

        endpoints:
          export:
            purpose: medium
          login:
            purpose: login
            authenticates: true

    Every purpose must have a throttle policy in ``config``.
    """
    policies = dict(DEFAULT_POLICIES)
    if path:
        p = Path(path)
        if not p.exists():
            raise ConfigurationError(f"Endpoint policy file not found: {path}")
        with p.open("r", encoding="utf-8") as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Endpoint policy file is not valid YAML: {exc}") from exc
        endpoints = raw.get("endpoints", {}) if isinstance(raw, dict) else None
        if not isinstance(endpoints, dict):
            raise ConfigurationError("Endpoint policy file needs an 'endpoints' mapping")
        for name, item in endpoints.items():
            policies[name] = _parse_entry(name, item)

    for policy in policies.values():
        config.throttle(policy.purpose)
    return policies
