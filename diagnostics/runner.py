"""Run diagnostics probes and report their results."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from core.logging import logger
from diagnostics.models import DiagnosticResult, DiagnosticStatus

Probe = Callable[[], DiagnosticResult]


def format_results(results: Iterable[DiagnosticResult]) -> str:
    """Render results as an aligned plain-text table."""

    results = list(results)
    width = max((len(result.name) for result in results), default=0)
    rule = "-" * 60
    body = [
        f"[{result.status.value:<4}] {result.name:<{width}} : {result.details}"
        for result in results
    ]
    return "\n".join(["Diagnostics report", rule, *body, rule])


def run_diagnostics(probes: Iterable[Probe]) -> list[DiagnosticResult]:
    """Call each probe in turn; a probe that raises is reported as FAIL."""

    results: list[DiagnosticResult] = []
    for probe in probes:
        probe_name = getattr(probe, "__name__", "unknown_probe")
        try:
            results.append(probe())
        except Exception as exc:  # noqa: BLE001 - diagnostics must keep running
            logger.exception("Probe %s failed", probe_name)
            results.append(
                DiagnosticResult(
                    name=probe_name,
                    status=DiagnosticStatus.FAIL,
                    details=f"Probe raised exception: {exc}",
                )
            )
    return results
