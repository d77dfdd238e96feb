"""Diagnostics helpers for the realtime client."""

from diagnostics.models import DiagnosticResult, DiagnosticStatus, any_failed
from diagnostics.runner import format_results, run_diagnostics

__all__ = [
    "DiagnosticResult",
    "DiagnosticStatus",
    "any_failed",
    "format_results",
    "run_diagnostics",
]
