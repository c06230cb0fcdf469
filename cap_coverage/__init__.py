"""
CAP Coverage Audit
==================
Read-only audit of Microsoft Entra ID directory role assignments against
Conditional Access policies. Exports every assignment, and the assignments
whose role no qualifying policy targets, as CSV.

WARNING: This tool operates in STRICT READ-ONLY mode.
"""

__version__ = "1.0.0"
__mode__ = "READ-ONLY"
