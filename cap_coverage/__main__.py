"""
CAP Coverage Audit — Main Orchestrator

Usage:
    python -m cap_coverage                                  # default profile
    python -m cap_coverage --profile contoso-prod           # named profile
    python -m cap_coverage --config config.json             # JSON config file
    python -m cap_coverage --delegated --tenant-id X --client-id Y
    python -m cap_coverage --token                          # bearer token from CAP_COVERAGE_ACCESS_TOKEN
    python -m cap_coverage --policy-filter all --mfa-only

Profile management:
    python -m cap_coverage profile add <name> --tenant-id ... --client-id ...
    python -m cap_coverage profile list
    python -m cap_coverage profile remove <name>
    python -m cap_coverage profile set-default <name>

This tool is STRICTLY READ-ONLY.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from . import __version__
from .analyzers import CoverageReconciler, CoverageReport
from .auth.authenticator import AuthenticationError, Authenticator
from .collectors import ALL_COLLECTORS
from .config import (
    OUTPUT_FORMATS,
    POLICY_FILTERS,
    CertificateAuth,
    DelegatedAuth,
    EngineConfig,
)
from .graph.client import GraphClient
from .profiles import ProfileStore, TenantProfile, resolve_profile
from .reporting import export_csv, export_json
from .safety.guardian import SafetyGuardian

logger = logging.getLogger("cap_coverage")

# Collectors that must complete without gaps before reconciling
RECONCILE_INPUTS = ("role_templates", "conditional_access")


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    action = args.profile_action

    if action == "list":
        profiles = store.list_profiles()
        if not profiles:
            print("No profiles configured. Add one with:\n")
            print("  python -m cap_coverage profile add <name> --tenant-id <GUID> --client-id <GUID>")
            return 0
        print(f"\n  {'Name':<20s} {'Tenant ID':<38s} {'Mode':<12s} {'Filter':<8s} Default")
        for p in profiles:
            marker = "  *" if p.name == store.default_profile else ""
            print(f"  {p.name:<20s} {p.tenant_id:<38s} {p.auth_mode:<12s} {p.policy_filter:<8s}{marker}")
        print()
        return 0

    if action == "add":
        if store.get(args.profile_name):
            print(f"  Profile '{args.profile_name}' already exists. It will be overwritten.")
        store.add(
            TenantProfile(
                name=args.profile_name,
                tenant_id=args.tenant_id,
                client_id=args.client_id,
                auth_mode="delegated" if args.delegated else "certificate",
                cert_path=args.cert_path or "./base64.txt",
                display_name=args.display_name or "",
                policy_filter=args.policy_filter,
            ),
            set_default=args.set_default,
        )
        print(f"  Profile '{args.profile_name}' saved.")
        return 0

    if action == "remove":
        if store.remove(args.profile_name):
            print(f"  Profile '{args.profile_name}' removed.")
            return 0
        print(f"  Profile '{args.profile_name}' not found.")
        return 1

    if action == "set-default":
        if store.set_default(args.profile_name):
            print(f"  Default profile set to '{args.profile_name}'.")
            return 0
        print(f"  Profile '{args.profile_name}' not found.")
        return 1

    print("Usage: python -m cap_coverage profile {add|list|remove|set-default}")
    return 0


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cap_coverage",
        description="Directory role assignments vs Conditional Access coverage (READ-ONLY)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Management commands")
    prof_parser = subparsers.add_parser("profile", help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--cert-path", default="./base64.txt", help="Base64-encoded PFX path")
    add_p.add_argument("--delegated", action="store_true", help="Use device-code auth for this tenant")
    add_p.add_argument("--display-name", help="Friendly tenant name")
    add_p.add_argument("--policy-filter", choices=POLICY_FILTERS, default=POLICY_FILTERS[0])
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List configured profiles")
    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name")
    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name")

    parser.add_argument("--profile", "-p", default=None, help="Tenant profile name")
    parser.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    parser.add_argument("--delegated", action="store_true", help="Device-code authentication")
    parser.add_argument("--token", action="store_true",
                        help="Use a bearer token from CAP_COVERAGE_ACCESS_TOKEN")
    parser.add_argument("--cert-path", type=Path, help="Base64-encoded PFX (overrides profile)")
    parser.add_argument("--tenant-id", default=None, help="Tenant ID (overrides profile)")
    parser.add_argument("--client-id", default=None, help="Client ID (overrides profile)")
    parser.add_argument("--output-dir", "-o", type=Path, default=None,
                        help="Output directory (default: ./cap_coverage_<timestamp>)")
    parser.add_argument("--policy-filter", choices=POLICY_FILTERS, default=None,
                        help="Count only enabled CAPs, or all CAPs regardless of state")
    parser.add_argument("--mfa-only", action="store_true",
                        help="Count only CAPs whose grant controls require MFA")
    parser.add_argument("--skip-eligible", action="store_true",
                        help="Skip PIM eligible assignments")
    parser.add_argument("--formats", nargs="+", choices=OUTPUT_FORMATS, default=None)
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> EngineConfig:
    """Build run configuration from config file, profile and CLI flags (CLI wins)."""
    if args.config:
        if not args.config.exists():
            print(f"\n  Config file not found: {args.config}")
            sys.exit(1)
        config = EngineConfig.from_file(args.config)
    else:
        config = EngineConfig()

    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            print(f"\n  Profile '{args.profile}' not found. Use 'profile list' to see available profiles.")
            sys.exit(1)
    elif not args.config and not args.tenant_id and not args.token:
        profile = resolve_profile()

    if args.token:
        config.auth.mode = "token"
    elif args.delegated or (profile and profile.auth_mode == "delegated"):
        config.auth.mode = "delegated"

    if config.auth.mode != "token":
        if profile:
            tenant_id = args.tenant_id or profile.tenant_id
            client_id = args.client_id or profile.client_id
            cert_path = str(args.cert_path) if args.cert_path else profile.resolve_cert_path()
        elif args.tenant_id and args.client_id:
            tenant_id, client_id = args.tenant_id, args.client_id
            cert_path = str(args.cert_path) if args.cert_path else "./base64.txt"
        elif config.auth.certificate or config.auth.delegated:
            source = config.auth.certificate or config.auth.delegated
            tenant_id, client_id = source.tenant_id, source.client_id
            cert_path = (
                config.auth.certificate.certificate_path if config.auth.certificate else ""
            )
        else:
            print("\n  No tenant credentials found. Use one of:")
            print("   --profile <name>             (saved profile)")
            print("   --tenant-id X --client-id Y  (ad-hoc)")
            print("   --config config.json         (JSON config file)")
            print("   --token                      (token in CAP_COVERAGE_ACCESS_TOKEN)")
            sys.exit(1)

        if config.auth.mode == "delegated":
            if not config.auth.delegated or config.auth.delegated.tenant_id != tenant_id:
                config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)
        else:
            password = config.auth.certificate.certificate_password if config.auth.certificate else ""
            config.auth.certificate = CertificateAuth(
                tenant_id=tenant_id,
                client_id=client_id,
                certificate_path=cert_path,
                certificate_password=password,
            )

    if args.policy_filter:
        config.collection.policy_filter = args.policy_filter
    elif profile:
        config.collection.policy_filter = profile.policy_filter
    if args.mfa_only:
        config.collection.mfa_only = True
    if args.skip_eligible:
        config.collection.include_eligible = False
    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    if args.formats:
        config.output.formats = list(args.formats)
    if args.verbose:
        config.verbose = True
    return config


async def run_collection(client: GraphClient, config: EngineConfig) -> dict[str, Any]:
    """Run each collector in turn. Returns collector name -> CollectorResult."""
    results = {}
    for cls in ALL_COLLECTORS:
        collector = cls(graph=client, config=config.collection)
        result = await collector.execute()
        display_name = cls.__name__
        if result.ok:
            print(f"  [ok]   {display_name}: {result.metadata['items_collected']} items "
                  f"({result.metadata['duration_seconds']}s)")
        else:
            print(f"  [fail] {display_name}: {'; '.join(result.metadata['errors'])}")
        for w in result.metadata["warnings"]:
            print(f"         ! {w}")
        results[collector.name] = result
    return results


def run_reconciliation(collector_results: dict[str, Any], config: EngineConfig) -> CoverageReport:
    templates = collector_results["role_templates"].data.get("role_templates", {})
    assignments = collector_results["role_assignments"].data.get("role_assignments", [])
    policies = collector_results["conditional_access"].data.get("policies", [])

    reconciler = CoverageReconciler(
        template_catalog=templates.keys(),
        policy_filter=config.collection.policy_filter,
        mfa_only=config.collection.mfa_only,
    )
    return reconciler.reconcile(assignments, policies)


def generate_reports(
    report: CoverageReport,
    collector_results: dict[str, Any],
    config: EngineConfig,
    run_id: str,
    safety_record: dict,
) -> list[Path]:
    output_dir = config.output.scan_dir
    assignments = collector_results["role_assignments"].data.get("role_assignments", [])
    created = []

    if "csv" in config.output.formats:
        for p in export_csv(assignments, report, output_dir, run_id):
            created.append(p)
            print(f"  CSV:  {p}")

    if "json" in config.output.formats:
        path = export_json(report, assignments, collector_results, output_dir, run_id, safety_record)
        created.append(path)
        print(f"  JSON: {path}")

    return created


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger("cap_coverage").setLevel(level)


async def main_async(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    if args.command == "profile":
        setup_logging(args.verbose)
        return _cmd_profile(args)

    guardian = SafetyGuardian()
    guardian.print_banner()

    config = build_config(args)
    setup_logging(config.verbose)
    run_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]
    print(f"\n  Run ID:        {run_id}")
    print(f"  Output:        {config.output.scan_dir.resolve()}")
    print(f"  Policy filter: {config.collection.policy_filter}"
          f"{' (MFA-enforcing only)' if config.collection.mfa_only else ''}")

    print("\n  Authenticating...")
    try:
        token = await Authenticator(config.auth).acquire_token()
    except AuthenticationError as e:
        print(f"  Authentication failed: {e}")
        return 1

    print("\n  Collecting...")
    async with GraphClient(
        access_token=token,
        guardian=guardian,
        page_size=config.collection.page_size,
        max_pages=config.collection.max_pages,
    ) as client:
        collector_results = await run_collection(client, config)
        stats = client.get_stats()

    if not collector_results["role_assignments"].ok:
        print("\n  Role assignment collection failed. Cannot reconcile.")
        return 1

    incomplete = [
        name for name in RECONCILE_INPUTS
        if not collector_results[name].ok or collector_results[name].metadata["permission_gaps"]
    ]
    if incomplete:
        print(f"\n  Could not fully read: {', '.join(incomplete)}. Cannot reconcile.")
        print("  Required application permissions:")
        for perm, purpose in Authenticator.list_required_permissions().items():
            print(f"    {perm:<32s} {purpose}")
        return 1

    print("\n  Reconciling...")
    report = run_reconciliation(collector_results, config)
    print(f"  Qualifying policies: {len(report.qualifying_policies)}")
    print(f"  Protected roles:     {len(report.protected_role_ids)}")
    print(f"  Protected:           {len(report.protected)}")
    print(f"  Unprotected:         {len(report.unprotected)}")

    print("\n  Writing reports...")
    safety_record = {**guardian.get_audit_record(), **stats}
    created = generate_reports(report, collector_results, config, run_id, safety_record)
    print(f"\n  Done: {len(created)} file(s), {stats['total_requests']} Graph requests.\n")
    return 0


def main():
    """Synchronous entry point for `python -m cap_coverage` and `cap-coverage`."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
