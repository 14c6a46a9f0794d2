"""Local CA trust checks and installation.

The proxy's internal issuer signs certificates with the "local" CA. A
browser accepts them only once that CA's root certificate is in the
system trust store.

Checking trust never fails an operation: any error is logged as
trust_check_failed and reported as "not trusted". Installing trust is
delegated to `caddy trust`, which knows every platform's store.
"""

from __future__ import annotations

__all__ = [
    "fetch_root_certificate",
    "is_cert_trusted",
    "is_certificate_trusted",
    "trust_local_ca",
]

import logging
import ssl
import subprocess
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from devwrap.caddy.admin_client import AdminClient
from devwrap.config import DevwrapConfig
from devwrap.constants import APP_NAME, DEFAULT_CA_ID
from devwrap.exceptions import DevwrapError, TrustUnavailable
from devwrap.models import DevwrapEvent
from devwrap.utils.logging.log_config import log_event

_logger = logging.getLogger(f"{APP_NAME}.caddy")


def fetch_root_certificate(client: AdminClient, ca_id: str = DEFAULT_CA_ID) -> x509.Certificate:
    """Fetch and parse the root certificate of a CA.

    Raises:
        ControlPlaneUnreachable: On transport failure.
        AdminRequestFailed: If the CA is unknown.
        TrustUnavailable: If the PEM cannot be parsed.
    """
    pem = client.root_certificate(ca_id)
    try:
        return x509.load_pem_x509_certificate(pem.encode("utf-8"))
    except ValueError as e:
        raise TrustUnavailable(f"invalid root certificate for CA '{ca_id}': {e}") from e


def _bundle_certificates(path: Path) -> list[x509.Certificate]:
    try:
        return x509.load_pem_x509_certificates(path.read_bytes())
    except (OSError, ValueError):
        return []


def _system_trusted_ders() -> set[bytes]:
    """DER encodings of every certificate in the default trust store."""
    context = ssl.create_default_context()
    ders = {bytes(der) for der in context.get_ca_certs(binary_form=True)}

    paths = ssl.get_default_verify_paths()
    if paths.cafile:
        ders.update(c.public_bytes(Encoding.DER) for c in _bundle_certificates(Path(paths.cafile)))
    if paths.capath and Path(paths.capath).is_dir():
        for entry in Path(paths.capath).iterdir():
            if entry.is_file():
                ders.update(c.public_bytes(Encoding.DER) for c in _bundle_certificates(entry))
    return ders


def is_certificate_trusted(cert: x509.Certificate) -> bool:
    """Whether the exact certificate is in the system trust store."""
    return cert.public_bytes(Encoding.DER) in _system_trusted_ders()


def is_cert_trusted(client: AdminClient, ca_id: str = DEFAULT_CA_ID) -> bool:
    """Check trust of the local CA without ever raising.

    Returns:
        True if the root certificate could be fetched and is trusted.
    """
    try:
        return is_certificate_trusted(fetch_root_certificate(client, ca_id))
    except DevwrapError as e:
        log_event(
            _logger,
            logging.DEBUG,
            DevwrapEvent(
                event="trust_check_failed",
                message=f"Could not verify local CA trust: {e}",
                error_type=type(e).__name__,
                error_message=str(e),
            ),
        )
        return False


def trust_local_ca(client: AdminClient, config: DevwrapConfig) -> bool:
    """Install the local CA into the system trust store.

    Args:
        client: Admin client of the running proxy.
        config: Supplies the caddy executable and admin address.

    Returns:
        False if the CA was already trusted, True if it was installed.

    Raises:
        TrustUnavailable: If the CA cannot be fetched or installed.
    """
    try:
        cert = fetch_root_certificate(client)
    except DevwrapError as e:
        raise TrustUnavailable(f"failed to fetch caddy local CA from admin API: {e}") from e
    if is_certificate_trusted(cert):
        return False

    cmd = [config.caddy_bin, "trust", "--address", config.admin_listen]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as e:
        raise TrustUnavailable(f"trust install failed: cannot run {config.caddy_bin}: {e}") from e
    if result.returncode != 0:
        detail = (result.stderr or result.stdout).strip()
        raise TrustUnavailable(f"trust install failed: {detail or f'exit code {result.returncode}'}")

    log_event(
        _logger,
        logging.INFO,
        DevwrapEvent(
            event="trust_installed",
            message="Installed caddy local CA into the system trust store",
        ),
    )
    return True
