"""
tests/test_health.py -- Integration tests for GET /api/health.

Covers:
  - 200 response with status, version, and components fields
  - components report app, database and mail status
  - a dropped users table shows up as database: error with a 503
  - an unready mailer degrades the status but keeps 200
  - not rate limited, no authentication required
"""

from __future__ import annotations

from sqlalchemy import text


def test_health_returns_200_with_components(api):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api.client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == "0.1.0"
    assert data["components"] == {"app": "ok", "database": "ok", "mail": "ok"}


def test_health_reports_database_failure(api):
    with api.store.engine.begin() as conn:
        conn.execute(text("DROP TABLE users"))
    resp = api.client.get("/api/health")
    assert resp.status_code == 503
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"


def test_health_mail_outage_is_degraded_but_up(api):
    api.mailer.ready = False
    resp = api.client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"
    assert resp.json()["components"]["mail"] == "error"


def test_health_not_rate_limited(api):
    for _ in range(10):
        assert api.client.get("/api/health").status_code == 200
