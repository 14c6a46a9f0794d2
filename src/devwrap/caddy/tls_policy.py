"""TLS automation policy synchronization.

The internal issuer is scoped to exactly the subjects of the live apps
through one owned automation policy:

    {"@id": "devwrap-internal-policy",
     "subjects": ["*.dev.test", "*.localhost"],
     "issuers": [{"module": "internal"}]}

The owned policy is placed first so it wins over catch-all policies that
follow it. Foreign policies are kept in their original order.
"""

from __future__ import annotations

__all__ = [
    "AUTOMATION_PATH",
    "POLICIES_PATH",
    "TLS_APP_PATH",
    "TLSPolicySynchronizer",
    "compute_subjects",
    "merge_policies",
]

import logging
from collections.abc import Mapping
from typing import Any

from devwrap.caddy.admin_client import AdminClient
from devwrap.caddy.models import (
    ForeignEntry,
    TLSPolicy,
    TLSPolicyEntry,
    entry_to_wire,
    parse_policies,
)
from devwrap.constants import APP_NAME
from devwrap.exceptions import AdminRequestFailed, TLSPolicyWriteRejected
from devwrap.host import tls_subject_for_host
from devwrap.models import AppLease, DevwrapEvent
from devwrap.utils.logging.log_config import log_event

_logger = logging.getLogger(f"{APP_NAME}.caddy")

TLS_APP_PATH = "/config/apps/tls"
AUTOMATION_PATH = f"{TLS_APP_PATH}/automation"
POLICIES_PATH = f"{AUTOMATION_PATH}/policies"


def compute_subjects(apps: Mapping[str, AppLease]) -> list[str]:
    """Deduplicated, sorted wildcard subjects for the apps' hosts."""
    return sorted({tls_subject_for_host(app.host) for app in apps.values()})


def merge_policies(existing: list[TLSPolicyEntry], subjects: list[str]) -> list[TLSPolicyEntry]:
    """Replace the owned policy in a policy list.

    Args:
        existing: Parsed live policy list.
        subjects: Subjects the owned policy must cover.

    Returns:
        The owned policy (omitted when subjects is empty) followed by all
        foreign policies in original order.
    """
    merged: list[TLSPolicyEntry] = []
    if subjects:
        merged.append(TLSPolicy(subjects=tuple(subjects)))
    merged.extend(entry for entry in existing if isinstance(entry, ForeignEntry))
    return merged


class TLSPolicySynchronizer:
    """Keeps the owned TLS automation policy in step with the live apps."""

    def __init__(self, client: AdminClient) -> None:
        self.client = client

    def fetch_policies(self) -> tuple[list[TLSPolicyEntry], bool]:
        """Read the automation policy list.

        Returns:
            (parsed policies, found). found is False when the path does
            not exist.

        Raises:
            ControlPlaneUnreachable: On transport failure.
            AdminRequestFailed: On any error status other than 404.
        """
        response = self.client.request("GET", POLICIES_PATH)
        if response.status_code == 404:
            return [], False
        if response.status_code >= 300:
            raise AdminRequestFailed(
                "caddy TLS policy query", POLICIES_PATH, response.status_code, response.text.strip()
            )
        raw = response.json() if response.content else None
        return parse_policies(raw), True

    def sync(self, apps: Mapping[str, AppLease]) -> None:
        """Write the owned policy for the current apps.

        Raises:
            ControlPlaneUnreachable: On transport failure.
            AdminRequestFailed: If the policy list cannot be read.
            TLSPolicyWriteRejected: If the write is rejected.
        """
        subjects = compute_subjects(apps)
        existing, found = self.fetch_policies()
        merged = merge_policies(existing, subjects)
        payload: list[Any] = [entry_to_wire(entry) for entry in merged]

        if found:
            self.client.write_with_fallback(POLICIES_PATH, payload, TLSPolicyWriteRejected)
        elif not subjects:
            return
        else:
            self._create(payload)

        log_event(
            _logger,
            logging.DEBUG,
            DevwrapEvent(
                event="tls_policy_synced",
                message=f"TLS policy covers {len(subjects)} subject(s)",
                path=POLICIES_PATH,
                details={"subjects": subjects, "created": not found},
            ),
        )

    def _create(self, payload: list[Any]) -> None:
        """Create the policy list when it does not exist yet.

        Creates the TLS app; if a TLS app without automation already
        exists, creates only the automation object.
        """
        response = self.client.send_json("PUT", TLS_APP_PATH, {"automation": {"policies": payload}})
        if response.status_code < 300:
            return
        fallback = self.client.send_json("PUT", AUTOMATION_PATH, {"policies": payload})
        if fallback.status_code >= 300:
            raise TLSPolicyWriteRejected(AUTOMATION_PATH, fallback.status_code, fallback.text.strip())
