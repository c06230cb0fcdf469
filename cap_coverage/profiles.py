"""
Tenant Profile Manager — named tenant profiles for repeat audits.

Profiles are stored in:
    ~/.cap_coverage/profiles.json   (directory overridable with CAP_COVERAGE_HOME)

Each profile holds tenant_id, client_id, the auth mode and certificate path,
and the policy filter to apply by default for that tenant.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from .config import POLICY_FILTER_ENABLED

logger = logging.getLogger("cap_coverage.profiles")

ENV_HOME = "CAP_COVERAGE_HOME"


def profiles_path() -> Path:
    home = os.environ.get(ENV_HOME)
    base = Path(home).expanduser() if home else Path.home() / ".cap_coverage"
    return base / "profiles.json"


@dataclass
class TenantProfile:
    """A single named tenant profile."""
    name: str
    tenant_id: str
    client_id: str
    auth_mode: str = "certificate"
    cert_path: str = "./base64.txt"
    display_name: str = ""
    policy_filter: str = POLICY_FILTER_ENABLED

    def resolve_cert_path(self) -> str:
        """Return absolute cert path, resolving ~ and relative paths."""
        p = Path(self.cert_path).expanduser()
        if not p.is_absolute():
            p = Path.cwd() / p
        return str(p)


@dataclass
class ProfileStore:
    """The set of profiles on disk plus which one is the default."""
    path: Path = field(default_factory=profiles_path)
    profiles: dict[str, TenantProfile] = field(default_factory=dict)
    default_profile: str = ""

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ProfileStore":
        """Load profiles from disk. Missing or unreadable file yields an empty store."""
        store = cls(path=path or profiles_path())
        if not store.path.exists():
            return store
        try:
            data = json.loads(store.path.read_text(encoding="utf-8"))
            for name, pdata in data.get("profiles", {}).items():
                pdata = {k: v for k, v in pdata.items() if k in TenantProfile.__dataclass_fields__}
                pdata["name"] = name
                store.profiles[name] = TenantProfile(**pdata)
            store.default_profile = data.get("default_profile", "")
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Ignoring unreadable profile file {store.path}: {e}")
            store.profiles.clear()
        return store

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "default_profile": self.default_profile,
            "profiles": {
                name: {k: v for k, v in asdict(p).items() if k != "name"}
                for name, p in self.profiles.items()
            },
        }
        self.path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")

    def add(self, profile: TenantProfile, set_default: bool = False) -> None:
        self.profiles[profile.name] = profile
        if set_default or not self.default_profile:
            self.default_profile = profile.name
        self.save()

    def remove(self, name: str) -> bool:
        """Remove a profile by name. Returns True if it existed."""
        if name not in self.profiles:
            return False
        del self.profiles[name]
        if self.default_profile == name:
            self.default_profile = next(iter(self.profiles), "")
        self.save()
        return True

    def get(self, name: str) -> Optional[TenantProfile]:
        """Case-insensitive lookup."""
        key = name.lower()
        for pname, profile in self.profiles.items():
            if pname.lower() == key:
                return profile
        return None

    def get_default(self) -> Optional[TenantProfile]:
        if self.default_profile in self.profiles:
            return self.profiles[self.default_profile]
        return next(iter(self.profiles.values()), None)

    def set_default(self, name: str) -> bool:
        if name not in self.profiles:
            return False
        self.default_profile = name
        self.save()
        return True

    def list_profiles(self) -> list[TenantProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.name)


def resolve_profile(profile_name: Optional[str] = None) -> Optional[TenantProfile]:
    """Named profile if given, else the default; None when nothing is configured."""
    store = ProfileStore.load()
    if profile_name:
        return store.get(profile_name)
    return store.get_default()
