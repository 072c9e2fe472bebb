"""
Tests for the request middleware (security.py): redirects, headers, rate limits.
Run from backend/:  python -m pytest test/test_security.py
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from flask import Flask, jsonify

from security import content_security_policy, pick_limiter, register_security, tier_limit


def build_app(**config):
    """A bare app with the middleware and a few routes, so limiter state starts empty."""
    test_app = Flask(__name__)
    test_app.config.update(FORCE_HTTPS=True, RATE_LIMIT_MULTIPLE=1)
    test_app.config.update(config)
    register_security(test_app)

    @test_app.route("/ping")
    def ping():
        return jsonify({"ok": True})

    @test_app.route("/verify")
    def verify():
        return jsonify({"ok": True})

    @test_app.route("/login", methods=["POST"])
    def login():
        return jsonify({"ok": True})

    @test_app.route("/api/echo", methods=["POST"])
    def echo():
        return jsonify({"ok": True})

    return test_app


@pytest.fixture
def app():
    return build_app()


def test_http_behind_proxy_redirects_to_https(app):
    with app.test_client() as client:
        r = client.get(
            "/ping?x=1",
            headers={"X-Forwarded-Proto": "http", "X-Forwarded-Host": "example.com"},
        )
        assert r.status_code == 302
        assert r.headers["Location"] == "https://example.com/ping?x=1"


def test_https_request_passes_through(app):
    with app.test_client() as client:
        r = client.get("/ping", headers={"X-Forwarded-Proto": "https"})
        assert r.status_code == 200


def test_https_redirect_can_be_disabled(app):
    app.config["FORCE_HTTPS"] = False
    with app.test_client() as client:
        r = client.get("/ping", headers={"X-Forwarded-Proto": "http"})
        assert r.status_code == 200


def test_trailing_slash_redirect_keeps_query(app):
    with app.test_client() as client:
        r = client.get("/ping/?a=b")
        assert r.status_code == 301
        assert r.headers["Location"].endswith("/ping?a=b")


def test_trailing_slash_collapses_repeated_slashes(app):
    with app.test_client() as client:
        r = client.get("/api//calls/")
        assert r.status_code == 301
        assert r.headers["Location"].endswith("/api/calls")


def test_root_is_not_redirected(app):
    with app.test_client() as client:
        r = client.get("/")
        assert r.status_code == 404


def test_security_headers(app):
    with app.test_client() as client:
        r = client.get("/ping")
        csp = r.headers["Content-Security-Policy-Report-Only"]
        assert "connect-src 'self'" in csp
        assert "img-src * data:" in csp
        assert "'strict-dynamic'" in csp
        assert "'nonce-" in csp
        assert r.headers["Referrer-Policy"] == "same-origin"
        assert r.headers["X-Content-Type-Options"] == "nosniff"
        assert "X-Powered-By" not in r.headers


def test_csp_nonce_changes_per_request(app):
    with app.test_client() as client:
        first = client.get("/ping").headers["Content-Security-Policy-Report-Only"]
        second = client.get("/ping").headers["Content-Security-Policy-Report-Only"]
        assert first != second


def test_content_security_policy_uses_nonce_twice():
    csp = content_security_policy("abc123")
    assert csp.count("'nonce-abc123'") == 2


def test_strongest_limit_on_sensitive_post(app):
    with app.test_client() as client:
        for _ in range(10):
            assert client.post("/login").status_code == 200
        r = client.post("/login")
        assert r.status_code == 429
        assert r.get_json()["error"] == "Too many requests. Please try again later."
        assert int(r.headers["Retry-After"]) >= 1

        # Other buckets are unaffected
        assert client.get("/ping").status_code == 200


@pytest.mark.parametrize(
    "method, path, bucket",
    [
        ("POST", "/login", "strongest"),
        ("POST", "/resources/verify", "strongest"),
        ("POST", "/api/anything", "strong"),
        ("GET", "/verify?token=1", "strongest"),
        ("GET", "/sse/ev1", "general"),
        ("HEAD", "/", "general"),
    ],
)
def test_pick_limiter(method, path, bucket):
    assert pick_limiter(method, path) == bucket


def test_tier_limit_strings():
    assert tier_limit("strongest") == "10 per minute"
    assert tier_limit("strong", 3) == "300 per minute"
    assert tier_limit("general") == "1000 per minute"


def test_strong_limit_on_other_writes(app):
    with app.test_client() as client:
        for _ in range(100):
            assert client.post("/api/echo").status_code == 200
        r = client.post("/api/echo")
        assert r.status_code == 429
        assert r.headers["Retry-After"] == "60"

        # The strongest tier keeps its own counter
        assert client.post("/login").status_code == 200


def test_get_verify_uses_strongest_limit(app):
    with app.test_client() as client:
        for _ in range(10):
            assert client.get("/verify?token=abc").status_code == 200
        assert client.get("/verify?token=abc").status_code == 429
        assert client.get("/ping").status_code == 200


def test_limits_scale_with_multiple():
    app = build_app(RATE_LIMIT_MULTIPLE=2)
    with app.test_client() as client:
        for _ in range(20):
            assert client.post("/login").status_code == 200
        assert client.post("/login").status_code == 429


def test_clients_are_limited_separately(app):
    with app.test_client() as client:
        for _ in range(10):
            client.post("/login")
        assert client.post("/login").status_code == 429

        other = client.post("/login", environ_base={"REMOTE_ADDR": "10.0.0.2"})
        assert other.status_code == 200


def test_rejected_request_still_gets_security_headers(app):
    with app.test_client() as client:
        for _ in range(10):
            client.post("/login")
        r = client.post("/login")
        assert r.status_code == 429
        assert r.headers["X-Content-Type-Options"] == "nosniff"
        assert "'nonce-" in r.headers["Content-Security-Policy-Report-Only"]
