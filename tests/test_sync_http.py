from __future__ import annotations

import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Iterator, List

import pytest

from olink.sync.ledger_client import HttpLedgerClient
from olink.sync.probe import HttpConnectivityProbe, StaticProbe
from olink.transfer.factory import TransactionFactory


class _LedgerStub(ThreadingHTTPServer):
    status: int = 200
    received: List[Dict[str, Any]]


class _Handler(BaseHTTPRequestHandler):
    server: _LedgerStub

    def log_message(self, format: str, *args: Any) -> None:
        return None

    def _reply(self, status: int, body: Dict[str, Any]) -> None:
        raw = json.dumps(body).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def do_GET(self) -> None:
        if self.path == "/v1/health":
            self._reply(self.server.status, {"ok": self.server.status == 200})
        else:
            self._reply(404, {"ok": False})

    def do_POST(self) -> None:
        n = int(self.headers.get("Content-Length") or 0)
        self.server.received.append(json.loads(self.rfile.read(n)))
        self._reply(self.server.status, {"ok": self.server.status == 200})


@pytest.fixture(autouse=True)
def _no_proxy(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("http_proxy", "HTTP_PROXY", "https_proxy", "HTTPS_PROXY", "all_proxy", "ALL_PROXY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def ledger_stub() -> Iterator[_LedgerStub]:
    srv = _LedgerStub(("127.0.0.1", 0), _Handler)
    srv.received = []
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    try:
        yield srv
    finally:
        srv.shutdown()
        srv.server_close()


def _url(srv: _LedgerStub) -> str:
    host, port = srv.server_address[:2]
    return f"http://{host}:{port}"


def _closed_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def test_static_probe() -> None:
    assert StaticProbe().is_reachable() is False
    assert StaticProbe(reachable=True).is_reachable() is True


def test_probe_reachable_on_2xx(ledger_stub: _LedgerStub) -> None:
    assert HttpConnectivityProbe(base_url=_url(ledger_stub) + "/", timeout_s=2.0).is_reachable() is True


def test_probe_unreachable_on_5xx(ledger_stub: _LedgerStub) -> None:
    ledger_stub.status = 503
    assert HttpConnectivityProbe(base_url=_url(ledger_stub), timeout_s=2.0).is_reachable() is False


@pytest.mark.parametrize("base_url", ["", "   ", "not a url", "ftp//missing-scheme"])
def test_probe_fails_closed_on_bad_urls(base_url: str) -> None:
    assert HttpConnectivityProbe(base_url=base_url, timeout_s=0.5).is_reachable() is False


def test_probe_fails_closed_on_refused_connection() -> None:
    probe = HttpConnectivityProbe(base_url=f"http://127.0.0.1:{_closed_port()}", timeout_s=0.5)
    assert probe.is_reachable() is False


def test_push_posts_payload(ledger_stub: _LedgerStub, alice_keys) -> None:
    sk, pk = alice_keys
    rec = TransactionFactory().create(amount="25.00", recipient="bob", creator="alice", signing_key=sk)

    res = HttpLedgerClient(base_url=_url(ledger_stub), timeout_s=2.0).push(rec, pk)

    assert res.ok is True
    assert res.status_code == 200
    assert len(ledger_stub.received) == 1
    body = ledger_stub.received[0]
    assert body["publicKey"] == pk
    assert body["record"]["id"] == rec.id
    assert body["record"]["amount"] == 25


def test_push_reports_http_errors(ledger_stub: _LedgerStub, alice_keys) -> None:
    sk, pk = alice_keys
    ledger_stub.status = 409
    rec = TransactionFactory().create(amount=3, recipient="bob", creator="alice", signing_key=sk)

    res = HttpLedgerClient(base_url=_url(ledger_stub), timeout_s=2.0).push(rec, pk)

    assert res.ok is False
    assert res.status_code == 409
    assert res.error


def test_push_without_url_is_not_configured(alice_keys) -> None:
    sk, pk = alice_keys
    rec = TransactionFactory().create(amount=3, recipient="bob", creator="alice", signing_key=sk)
    res = HttpLedgerClient(base_url="").push(rec, pk)
    assert res.ok is False
    assert res.error == "ledger_url_not_configured"


def test_push_to_closed_port_fails(alice_keys) -> None:
    sk, pk = alice_keys
    rec = TransactionFactory().create(amount=3, recipient="bob", creator="alice", signing_key=sk)
    res = HttpLedgerClient(base_url=f"http://127.0.0.1:{_closed_port()}", timeout_s=0.5).push(rec, pk)
    assert res.ok is False
    assert res.status_code == 0


@pytest.mark.parametrize("base_url", ["not a url", "ftp//missing-scheme"])
def test_push_with_malformed_url_fails_without_raising(base_url: str, alice_keys) -> None:
    sk, pk = alice_keys
    rec = TransactionFactory().create(amount=3, recipient="bob", creator="alice", signing_key=sk)
    res = HttpLedgerClient(base_url=base_url, timeout_s=0.5).push(rec, pk)
    assert res.ok is False
    assert res.error.startswith("ValueError:")
    assert res.rejected is False
