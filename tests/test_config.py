"""Tests for configuration loading, tenant profiles and CLI flag resolution."""

import json

import pytest

from cap_coverage.__main__ import build_config, parse_args
from cap_coverage.config import EngineConfig
from cap_coverage.profiles import ENV_HOME, ProfileStore, TenantProfile, resolve_profile


@pytest.fixture
def profile_home(tmp_path, monkeypatch):
    monkeypatch.setenv(ENV_HOME, str(tmp_path / "home"))
    return tmp_path / "home"


class TestEngineConfig:

    def test_defaults(self):
        config = EngineConfig()
        assert config.auth.mode == "certificate"
        assert config.collection.policy_filter == "enabled"
        assert config.collection.include_eligible is True
        assert config.output.formats == ["csv", "json"]
        assert config.output.base_dir.endswith(f"cap_coverage_{config.output.timestamp}")

    def test_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "auth": {
                "mode": "certificate",
                "certificate": {"tenant_id": "t1", "client_id": "c1", "certificate_path": "cert.b64"},
            },
            "collection": {"policy_filter": "all", "mfa_only": True, "not_a_setting": 1},
            "output": {"base_dir": str(tmp_path / "out"), "formats": ["csv"]},
            "verbose": True,
        }))

        config = EngineConfig.from_file(path)

        assert config.auth.certificate.tenant_id == "t1"
        assert config.auth.certificate.certificate_path == "cert.b64"
        assert config.collection.policy_filter == "all"
        assert config.collection.mfa_only is True
        assert not hasattr(config.collection, "not_a_setting")
        assert config.output.formats == ["csv"]
        assert config.verbose is True

    def test_from_file_rejects_unknown_filter(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"collection": {"policy_filter": "reportOnly"}}))
        with pytest.raises(ValueError):
            EngineConfig.from_file(path)

    def test_from_file_rejects_unknown_auth_mode(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"auth": {"mode": "password"}}))
        with pytest.raises(ValueError):
            EngineConfig.from_file(path)


class TestProfileStore:

    def test_round_trip(self, profile_home):
        store = ProfileStore.load()
        store.add(TenantProfile("contoso", "tenant-1", "client-1", policy_filter="all"))
        store.add(TenantProfile("fabrikam", "tenant-2", "client-2", auth_mode="delegated"))

        reloaded = ProfileStore.load()

        assert (profile_home / "profiles.json").exists()
        assert [p.name for p in reloaded.list_profiles()] == ["contoso", "fabrikam"]
        assert reloaded.default_profile == "contoso"
        assert reloaded.get("CONTOSO").policy_filter == "all"
        assert resolve_profile().name == "contoso"
        assert resolve_profile("fabrikam").auth_mode == "delegated"

    def test_remove_moves_default(self, profile_home):
        store = ProfileStore.load()
        store.add(TenantProfile("a", "t", "c"))
        store.add(TenantProfile("b", "t", "c"))

        assert store.remove("a") is True
        assert store.remove("a") is False
        assert ProfileStore.load().default_profile == "b"

    def test_set_default(self, profile_home):
        store = ProfileStore.load()
        store.add(TenantProfile("a", "t", "c"))
        store.add(TenantProfile("b", "t", "c"))

        assert store.set_default("b") is True
        assert store.set_default("missing") is False
        assert ProfileStore.load().get_default().name == "b"

    def test_unreadable_file_gives_empty_store(self, profile_home):
        profile_home.mkdir(parents=True)
        (profile_home / "profiles.json").write_text("{not json")
        assert ProfileStore.load().profiles == {}


class TestBuildConfig:

    def test_ad_hoc_certificate(self, profile_home, tmp_path):
        args = parse_args([
            "--tenant-id", "t1", "--client-id", "c1", "--cert-path", "cert.b64",
            "--policy-filter", "all", "--mfa-only", "--skip-eligible",
            "--output-dir", str(tmp_path / "out"), "--formats", "csv",
        ])

        config = build_config(args)

        assert config.auth.mode == "certificate"
        assert config.auth.certificate.tenant_id == "t1"
        assert config.auth.certificate.certificate_path == "cert.b64"
        assert config.collection.policy_filter == "all"
        assert config.collection.mfa_only is True
        assert config.collection.include_eligible is False
        assert config.output.scan_dir == tmp_path / "out"
        assert config.output.formats == ["csv"]

    def test_token_mode_needs_no_tenant(self, profile_home):
        config = build_config(parse_args(["--token"]))
        assert config.auth.mode == "token"
        assert config.auth.certificate is None

    def test_profile_supplies_tenant_and_filter(self, profile_home):
        ProfileStore.load().add(
            TenantProfile("contoso", "tenant-1", "client-1", auth_mode="delegated", policy_filter="all")
        )

        config = build_config(parse_args(["--profile", "contoso"]))

        assert config.auth.mode == "delegated"
        assert config.auth.delegated.tenant_id == "tenant-1"
        assert config.collection.policy_filter == "all"

    def test_cli_filter_beats_profile(self, profile_home):
        ProfileStore.load().add(TenantProfile("contoso", "tenant-1", "client-1", policy_filter="all"))
        config = build_config(parse_args(["--profile", "contoso", "--policy-filter", "enabled"]))
        assert config.collection.policy_filter == "enabled"

    def test_missing_credentials_exit(self, profile_home):
        with pytest.raises(SystemExit):
            build_config(parse_args([]))

    def test_unknown_profile_exits(self, profile_home):
        with pytest.raises(SystemExit):
            build_config(parse_args(["--profile", "nope"]))

    def test_invalid_filter_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            parse_args(["--policy-filter", "reportOnly"])
