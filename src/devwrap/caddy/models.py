"""Typed control-plane structures.

Route and TLS policy lists coming from the admin API are parsed into
typed values here; merge logic never walks raw JSON. Entries we do not
own are carried as ForeignEntry and written back exactly as received.

Wire shapes:
    Route:
        {"@id": "devwrap-api",
         "match": [{"host": ["api.localhost"]}],
         "handle": [{"handler": "reverse_proxy",
                     "upstreams": [{"dial": "127.0.0.1:11000"}]}]}
    TLSPolicy:
        {"@id": "devwrap-internal-policy",
         "subjects": ["*.localhost"],
         "issuers": [{"module": "internal"}]}
"""

from __future__ import annotations

__all__ = [
    "ForeignEntry",
    "Route",
    "RouteEntry",
    "TLSPolicy",
    "TLSPolicyEntry",
    "entry_to_wire",
    "parse_policies",
    "parse_routes",
]

from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel, ConfigDict

from devwrap.constants import (
    INTERNAL_ISSUER_MODULE,
    LOOPBACK_HOST,
    OWNED_ROUTE_PREFIX,
    OWNED_TLS_POLICY_ID,
)
from devwrap.models import AppLease


@dataclass(frozen=True)
class ForeignEntry:
    """An entry this tool does not own, preserved verbatim."""

    raw: Any


class Route(BaseModel):
    """An owned reverse-proxy route.

    Attributes:
        id: Ownership marker, "devwrap-<app name>".
        match_hosts: Hosts matched by the route.
        upstream: Dial address of the single upstream.
    """

    id: str
    match_hosts: tuple[str, ...]
    upstream: str

    model_config = ConfigDict(frozen=True)

    @classmethod
    def for_app(cls, app: AppLease) -> "Route":
        """Build the owned route forwarding app.host to the app port."""
        return cls(
            id=f"{OWNED_ROUTE_PREFIX}{app.name}",
            match_hosts=(app.host,),
            upstream=f"{LOOPBACK_HOST}:{app.port}",
        )

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> "Route":
        """Parse an owned route; unknown shapes yield empty hosts/upstream."""
        hosts: list[str] = []
        for matcher in raw.get("match") or []:
            if isinstance(matcher, dict):
                hosts.extend(h for h in matcher.get("host") or [] if isinstance(h, str))
        upstream = ""
        for handler in raw.get("handle") or []:
            if not isinstance(handler, dict):
                continue
            for target in handler.get("upstreams") or []:
                if isinstance(target, dict) and isinstance(target.get("dial"), str):
                    upstream = target["dial"]
                    break
            if upstream:
                break
        return cls(id=raw["@id"], match_hosts=tuple(hosts), upstream=upstream)

    @property
    def app_name(self) -> str:
        return self.id.removeprefix(OWNED_ROUTE_PREFIX)

    def to_wire(self) -> dict[str, Any]:
        return {
            "@id": self.id,
            "match": [{"host": list(self.match_hosts)}],
            "handle": [
                {
                    "handler": "reverse_proxy",
                    "upstreams": [{"dial": self.upstream}],
                }
            ],
        }


class TLSPolicy(BaseModel):
    """An owned TLS automation policy.

    Attributes:
        id: Ownership marker.
        subjects: Certificate subjects covered.
        issuer: Issuer module name.
    """

    id: str = OWNED_TLS_POLICY_ID
    subjects: tuple[str, ...]
    issuer: str = INTERNAL_ISSUER_MODULE

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> "TLSPolicy":
        subjects = tuple(s for s in raw.get("subjects") or [] if isinstance(s, str))
        issuer = INTERNAL_ISSUER_MODULE
        for entry in raw.get("issuers") or []:
            if isinstance(entry, dict) and isinstance(entry.get("module"), str):
                issuer = entry["module"]
                break
        return cls(id=raw["@id"], subjects=subjects, issuer=issuer)

    def to_wire(self) -> dict[str, Any]:
        return {
            "@id": self.id,
            "subjects": list(self.subjects),
            "issuers": [{"module": self.issuer}],
        }


RouteEntry = Union[Route, ForeignEntry]
TLSPolicyEntry = Union[TLSPolicy, ForeignEntry]


def _marker(raw: Any) -> str | None:
    if isinstance(raw, dict) and isinstance(raw.get("@id"), str):
        return raw["@id"]
    return None


def parse_routes(raw_routes: Any) -> list[RouteEntry]:
    """Classify a live route list into owned routes and foreign entries.

    Args:
        raw_routes: The "routes" value of a server (list, or None if unset).

    Returns:
        Entries in their original order.
    """
    if not isinstance(raw_routes, list):
        return []
    entries: list[RouteEntry] = []
    for raw in raw_routes:
        marker = _marker(raw)
        if marker is not None and marker.startswith(OWNED_ROUTE_PREFIX):
            entries.append(Route.from_wire(raw))
        else:
            entries.append(ForeignEntry(raw))
    return entries


def parse_policies(raw_policies: Any) -> list[TLSPolicyEntry]:
    """Classify a live automation policy list.

    Only the policy carrying OWNED_TLS_POLICY_ID is parsed; everything
    else is foreign.
    """
    if not isinstance(raw_policies, list):
        return []
    entries: list[TLSPolicyEntry] = []
    for raw in raw_policies:
        if _marker(raw) == OWNED_TLS_POLICY_ID:
            entries.append(TLSPolicy.from_wire(raw))
        else:
            entries.append(ForeignEntry(raw))
    return entries


def entry_to_wire(entry: Route | TLSPolicy | ForeignEntry) -> Any:
    """Serialize an entry for the admin API."""
    if isinstance(entry, ForeignEntry):
        return entry.raw
    return entry.to_wire()
