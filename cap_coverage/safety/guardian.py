"""
Safety Guardian — Keeps every Graph call read-only.
Only GET/HEAD requests are allowed; anything else is recorded and refused.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

logger = logging.getLogger("cap_coverage.safety")

READ_METHODS = {"GET", "HEAD"}


class SafetyViolation(Exception):
    """Raised when a non-read request is attempted."""
    pass


class SafetyGuardian:
    """
    Validates every outbound request before the Graph client sends it.
    Keeps a count of checks and a log of refused requests for the run summary.
    """

    def __init__(self):
        self.violations: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = datetime.now(timezone.utc).isoformat()

    def validate_request(self, method: str, url: str) -> bool:
        """Return True for read requests; raise SafetyViolation otherwise."""
        self.checks_performed += 1
        method_upper = method.upper()
        if method_upper in READ_METHODS:
            return True

        self.violations.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method_upper,
            "url": url,
        })
        logger.critical(f"SAFETY VIOLATION: {method_upper} {url} refused")
        raise SafetyViolation(f"Write method blocked: {method_upper} {url}")

    def get_audit_record(self) -> dict:
        return {
            "mode": "READ-ONLY",
            "started_at": self.started_at,
            "checks_performed": self.checks_performed,
            "violations_detected": len(self.violations),
            "violations": self.violations,
            "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
        }

    @staticmethod
    def print_banner():
        print("=" * 70)
        print("  READ-ONLY AUDIT -- role assignments vs Conditional Access coverage")
        print("  * Only GET requests are sent to Microsoft Graph")
        print("  * No roles, policies or principals will be modified")
        print("=" * 70)
