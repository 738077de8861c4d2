"""
Tenant identifier resolution.

Picks a tenant slug candidate from the request signals in strict priority
order: path parameter, header, then host subdomain. Never touches the store.
"""
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from starlette.requests import Request

from app.core import config


@dataclass(frozen=True)
class TenantSignals:
    """The parts of a request that may name a tenant."""
    path_params: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    host: Optional[str] = None

    @classmethod
    def build(
        cls,
        path_params: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        host: Optional[str] = None,
    ) -> "TenantSignals":
        # Header names are case-insensitive
        lowered = {name.lower(): value for name, value in (headers or {}).items()}
        return cls(path_params=dict(path_params or {}), headers=lowered, host=host)

    @classmethod
    def from_request(cls, request: Request) -> "TenantSignals":
        return cls.build(
            path_params=request.path_params,
            headers=dict(request.headers),
            host=request.headers.get("host"),
        )


def extract_subdomain(host: Optional[str]) -> Optional[str]:
    """
    Leftmost label of a host with at least three labels.

    >>> extract_subdomain("acme.example.com:8443")
    'acme'
    >>> extract_subdomain("example.com") is None
    True
    """
    if not host:
        return None
    hostname = host.strip().lower().split(":", 1)[0]
    labels = hostname.split(".")
    if len(labels) >= 3 and labels[0]:
        return labels[0]
    return None


def _first_present(values: Mapping[str, str], names: Iterable[str]) -> Optional[str]:
    for name in names:
        value = values.get(name)
        if value and value.strip():
            return value.strip()
    return None


def resolve_tenant_slug(
    signals: TenantSignals,
    path_params: Iterable[str] = config.TENANT_PATH_PARAMS,
    header_names: Iterable[str] = config.TENANT_HEADERS,
    reserved_subdomains: Iterable[str] = config.TENANT_RESERVED_SUBDOMAINS,
) -> Optional[str]:
    """
    Return the tenant slug named by the request, or None.

    Priority:
        1. path parameter (first configured name present)
        2. header (first configured name present)
        3. host subdomain, unless reserved (www, api)
    """
    slug = _first_present(signals.path_params, path_params)
    if slug:
        return slug

    slug = _first_present(signals.headers, [name.lower() for name in header_names])
    if slug:
        return slug

    subdomain = extract_subdomain(signals.host)
    if subdomain and subdomain not in set(reserved_subdomains):
        return subdomain

    return None
