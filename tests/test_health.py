"""
tests/test_health.py -- Health endpoint and error-envelope plumbing.
"""

from __future__ import annotations


def test_health_returns_200(client) -> None:
    """GET /api/v1/health needs no auth and reports the database as reachable."""
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["statusCode"] == 200
    assert body["data"]["status"] == "healthy"
    assert body["data"]["components"] == {"database": "ok"}
    assert body["data"]["version"]


def test_unknown_route_uses_error_envelope(client) -> None:
    resp = client.get("/api/v1/does-not-exist")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "statusCode": 404, "message": "Not Found", "errors": []}


def test_untrusted_host_rejected(client) -> None:
    resp = client.get("/api/v1/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400
