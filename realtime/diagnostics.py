"""Environment checks for the realtime client."""

from __future__ import annotations

import importlib.metadata
import importlib.util
import os
from urllib.parse import urlparse

from diagnostics.models import DiagnosticResult, DiagnosticStatus
from realtime.api import DEFAULT_URL

MIN_WEBSOCKETS_MAJOR = 14


def _websockets_problem() -> str | None:
    if importlib.util.find_spec("websockets") is None:
        return "Missing websockets dependency"
    version = importlib.metadata.version("websockets")
    major = version.split(".", 1)[0]
    if major.isdigit() and int(major) < MIN_WEBSOCKETS_MAJOR:
        return f"websockets>={MIN_WEBSOCKETS_MAJOR} required, found {version}"
    return None


def probe(
    api_key: str | None = None,
    url: str | None = None,
    require_websockets: bool = True,
) -> DiagnosticResult:
    """Check that the client could open a realtime session.

    Args:
        api_key: API key override; falls back to ``OPENAI_API_KEY``.
        url: Server url override; defaults to the public endpoint.
        require_websockets: Whether to check the websockets install.

    Returns:
        FAIL for a bad url, a missing key on the public endpoint, a missing
        numpy, or an unusable websockets install. WARN for a missing key on a custom url.
    """

    name = "realtime"
    url = url or DEFAULT_URL
    if urlparse(url).scheme not in ("ws", "wss"):
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Realtime url must use ws:// or wss://, got {url}",
        )

    if require_websockets:
        problem = _websockets_problem()
        if problem:
            return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details=problem)

    if importlib.util.find_spec("numpy") is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details="Missing numpy dependency for audio buffers",
        )

    if not (api_key or os.getenv("OPENAI_API_KEY")):
        if url == DEFAULT_URL:
            return DiagnosticResult(
                name=name,
                status=DiagnosticStatus.FAIL,
                details="Missing OPENAI_API_KEY",
            )
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"No API key set, connecting to {url} without Authorization",
        )

    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"Ready to connect to {url}",
    )
