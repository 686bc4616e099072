# src/olink/sync/probe.py
from __future__ import annotations

import logging
import urllib.error
import urllib.request
from typing import Protocol

from olink.structured_logging import log_event

log = logging.getLogger("olink.sync")


class ConnectivityProbe(Protocol):
    def is_reachable(self) -> bool: ...


class StaticProbe:
    """Probe with a fixed answer (offline-only deployments, tests)."""

    def __init__(self, reachable: bool = False) -> None:
        self.reachable = bool(reachable)

    def is_reachable(self) -> bool:
        return self.reachable


class HttpConnectivityProbe:
    """Best-effort reachability check against the ledger health endpoint.

    Fail-closed: empty URL, timeouts, DNS/TLS/socket errors and non-2xx all
    count as unreachable. Never blocks longer than timeout_s per call.
    """

    def __init__(self, *, base_url: str, timeout_s: float = 3.0, path: str = "/v1/health") -> None:
        self.base_url = str(base_url or "").strip().rstrip("/")
        self.timeout_s = max(0.1, float(timeout_s))
        self.path = path

    def is_reachable(self) -> bool:
        if not self.base_url:
            return False

        try:
            req = urllib.request.Request(url=f"{self.base_url}{self.path}", method="GET")
            req.add_header("Accept", "application/json")
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                status = int(getattr(resp, "status", 200))
                return 200 <= status < 300
        except urllib.error.HTTPError as e:
            log_event(log, "probe_http_error", url=self.base_url, status=int(getattr(e, "code", 0) or 0))
            return False
        except Exception as e:
            # URLError, socket.timeout, ssl errors, malformed URLs: all unreachable.
            log_event(log, "probe_unreachable", url=self.base_url, error=f"{type(e).__name__}:{e}")
            return False
