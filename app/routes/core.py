from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from actions.audit import recent_audit_failures
from db import ping_db
from utils import iso_utc_now

core_bp = Blueprint("core", __name__)


@core_bp.get("/health")
def health():
    ok = ping_db()
    cfg = current_app.config["CFG"]
    status = 200 if ok else 503
    return (
        jsonify(
            {
                "status": "ok" if ok else "degraded",
                "time": iso_utc_now(),
                "version": cfg.APP_VERSION,
                "db": "ok" if ok else "error",
                "auditFailures": len(recent_audit_failures()),
            }
        ),
        status,
    )


@core_bp.get("/version")
def version():
    cfg = current_app.config["CFG"]
    return jsonify({"version": cfg.APP_VERSION, "env": cfg.APP_ENV, "time": iso_utc_now()})
