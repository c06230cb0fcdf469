"""
Authentication module — certificate (app-only), delegated device code, or pre-acquired token.
Uses MSAL for token acquisition against the Microsoft identity platform.
"""

from __future__ import annotations

import base64
import getpass
import logging
import os

import msal
from cryptography.hazmat.primitives.hashes import SHA1
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, pkcs12

from ..config import ENV_CERT_PASSWORD, REQUIRED_PERMISSIONS, AuthConfig

logger = logging.getLogger("cap_coverage.auth")

APP_SCOPES = ["https://graph.microsoft.com/.default"]


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


def load_pfx_credential(cert_path: str, password: str) -> dict:
    """
    Read a base64-encoded PFX and return an MSAL client_credential dict
    ({"thumbprint", "private_key"}).
    """
    try:
        with open(cert_path, "r", encoding="utf-8") as f:
            cert_bytes = base64.b64decode(f.read().strip())
    except FileNotFoundError:
        raise AuthenticationError(f"Certificate file not found: {cert_path}")

    try:
        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            cert_bytes, password.encode("utf-8") if password else None
        )
    except ValueError as e:
        raise AuthenticationError(f"Failed to load certificate: {e}")

    if private_key is None or certificate is None:
        raise AuthenticationError(f"PFX at {cert_path} has no private key or certificate")

    thumbprint = certificate.fingerprint(SHA1()).hex()
    logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")
    return {
        "thumbprint": thumbprint,
        "private_key": private_key.private_bytes(
            Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
        ).decode("utf-8"),
    }


class Authenticator:
    """
    Handles token acquisition for Microsoft Graph.
    Supports:
      - Certificate-based app-only authentication
      - Delegated authentication (device code flow)
      - A bearer token handed in through an environment variable
    """

    def __init__(self, config: AuthConfig):
        self.config = config

    async def acquire_token(self) -> str:
        if self.config.mode == "certificate":
            return self._acquire_certificate_token()
        elif self.config.mode == "delegated":
            return self._acquire_delegated_token()
        elif self.config.mode == "token":
            return self._acquire_env_token()
        raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

    def _acquire_certificate_token(self) -> str:
        cert_config = self.config.certificate
        if not cert_config:
            raise AuthenticationError("Certificate auth config not provided.")

        logger.info("Authenticating with certificate-based app credentials...")
        password = (
            cert_config.certificate_password
            or os.environ.get(ENV_CERT_PASSWORD, "")
            or getpass.getpass("Enter the certificate password: ")
        )
        credential = load_pfx_credential(cert_config.certificate_path, password)

        app = msal.ConfidentialClientApplication(
            client_id=cert_config.client_id,
            authority=f"https://login.microsoftonline.com/{cert_config.tenant_id}",
            client_credential=credential,
        )
        return self._accept(app.acquire_token_for_client(scopes=APP_SCOPES), "Certificate")

    def _acquire_delegated_token(self) -> str:
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        logger.info("Initiating device code authentication flow...")
        app = msal.PublicClientApplication(
            client_id=deleg_config.client_id,
            authority=f"https://login.microsoftonline.com/{deleg_config.tenant_id}",
        )

        flow = app.initiate_device_flow(scopes=deleg_config.scopes)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'=' * 60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'=' * 60}\n")

        return self._accept(app.acquire_token_by_device_flow(flow), "Delegated")

    def _acquire_env_token(self) -> str:
        token = os.environ.get(self.config.token_env_var, "").strip()
        if not token:
            raise AuthenticationError(
                f"Token mode selected but {self.config.token_env_var} is empty."
            )
        return token

    def _accept(self, result: dict, label: str) -> str:
        if "access_token" in result:
            logger.info(f"{label} authentication successful.")
            return result["access_token"]
        error = result.get("error_description", result.get("error", "Unknown"))
        raise AuthenticationError(f"{label} auth failed: {error}")

    @staticmethod
    def list_required_permissions() -> dict[str, str]:
        return REQUIRED_PERMISSIONS
