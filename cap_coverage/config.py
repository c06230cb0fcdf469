"""
Configuration module for the CAP coverage audit.
Defines authentication modes, collection switches, output layout and Graph settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


# ─── Tenant Authentication ───────────────────────────────────────────────────

ENV_CERT_PASSWORD = "CAP_COVERAGE_CERT_PASSWORD"
ENV_ACCESS_TOKEN = "CAP_COVERAGE_ACCESS_TOKEN"

AUTH_MODES = ("certificate", "delegated", "token")


@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Falls back to env var, then prompt


@dataclass
class DelegatedAuth:
    """Delegated (device code) authentication configuration."""
    tenant_id: str
    client_id: str
    scopes: list[str] = field(default_factory=lambda: [
        "https://graph.microsoft.com/RoleManagement.Read.Directory",
        "https://graph.microsoft.com/Policy.Read.All",
        "https://graph.microsoft.com/Directory.Read.All",
    ])


@dataclass
class AuthConfig:
    """Authentication configuration. `token` mode reads a pre-acquired bearer token."""
    mode: str = "certificate"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None
    token_env_var: str = ENV_ACCESS_TOKEN


# ─── Graph API Settings ─────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"

MAX_RETRIES = 5
INITIAL_BACKOFF_SECONDS = 2.0
MAX_BACKOFF_SECONDS = 120.0
BACKOFF_MULTIPLIER = 2.0

DEFAULT_PAGE_SIZE = 999
MAX_PAGES_PER_ENDPOINT = 10000


# ─── Collection Settings ────────────────────────────────────────────────────

POLICY_FILTER_ENABLED = "enabled"
POLICY_FILTER_ALL = "all"
POLICY_FILTERS = (POLICY_FILTER_ENABLED, POLICY_FILTER_ALL)


@dataclass
class CollectionConfig:
    """Controls for collection and reconciliation behavior."""
    include_eligible: bool = True           # Also enumerate PIM eligibility schedules
    policy_filter: str = POLICY_FILTER_ENABLED
    mfa_only: bool = False                  # Count only CAPs that demand MFA / auth strength
    page_size: int = DEFAULT_PAGE_SIZE
    max_pages: int = MAX_PAGES_PER_ENDPOINT


# ─── Output Configuration ───────────────────────────────────────────────────

OUTPUT_FORMATS = ("csv", "json")


@dataclass
class OutputConfig:
    """Output directory and format settings."""
    base_dir: str = ""
    timestamp: str = ""
    formats: list[str] = field(default_factory=lambda: list(OUTPUT_FORMATS))

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(os.getcwd(), f"cap_coverage_{self.timestamp}")

    @property
    def scan_dir(self) -> Path:
        return Path(self.base_dir)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class EngineConfig:
    """Top-level configuration for a coverage run."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str | Path) -> "EngineConfig":
        """Load configuration from a JSON file. Unknown keys are ignored."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if config.auth.mode not in AUTH_MODES:
                raise ValueError(f"Unknown auth mode in {path}: {config.auth.mode}")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
                if d.get("scopes"):
                    config.auth.delegated.scopes = list(d["scopes"])
            if "token_env_var" in auth_data:
                config.auth.token_env_var = auth_data["token_env_var"]
        if "collection" in data:
            for k, v in data["collection"].items():
                if hasattr(config.collection, k):
                    setattr(config.collection, k, v)
            if config.collection.policy_filter not in POLICY_FILTERS:
                raise ValueError(
                    f"policy_filter must be one of {POLICY_FILTERS}, "
                    f"got {config.collection.policy_filter!r}"
                )
        if "output" in data:
            for k, v in data["output"].items():
                if hasattr(config.output, k):
                    setattr(config.output, k, v)
        config.verbose = data.get("verbose", False)
        return config


# ─── Required Graph API Permissions (Read-Only) ─────────────────────────────

REQUIRED_PERMISSIONS = {
    "RoleManagement.Read.Directory": "Read role definitions, assignments and PIM schedules",
    "Policy.Read.All": "Read Conditional Access policies",
    "Directory.Read.All": "Resolve users, groups, service principals and devices",
}
