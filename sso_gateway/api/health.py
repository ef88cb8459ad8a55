"""Health check endpoints."""
from flask import Blueprint, current_app, jsonify

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Liveness probe."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Readiness probe; the directory is optional, so it never gates readiness."""
    cfg = current_app.config["APP_CONFIG"]
    return jsonify({
        "status": "ready",
        "provider": cfg.sso_provider,
        "directory_configured": cfg.directory_configured,
        "require_directory_account": cfg.require_directory_account,
    })
