from __future__ import annotations

from flask import Flask, request

from utils import SimpleRateLimiter

_limiter = SimpleRateLimiter()


def client_ip() -> str:
    ip = request.headers.get("X-Forwarded-For", request.remote_addr or "")
    if ip and "," in ip:
        ip = ip.split(",", 1)[0].strip()
    return ip


def init_rate_limiting(app: Flask) -> None:
    cfg = app.config["CFG"]

    @app.before_request
    def _rate_limit():
        path = request.path or ""
        if path in {"/health", "/version"} or request.method == "OPTIONS":
            return None

        ip = client_ip()
        if path == "/api" or path.startswith("/api/v1/") or path.startswith("/files/"):
            # Generous global limit plus a per-endpoint limit so normal UI polling is not blocked.
            _limiter.check(f"{ip}:GLOBAL", cfg.RATE_LIMIT_GLOBAL)
            _limiter.check(f"{ip}:PATH:{request.method}:{request.url_rule.rule if request.url_rule else path}", cfg.RATE_LIMIT_DEFAULT)
        return None
