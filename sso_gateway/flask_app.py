"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with the login gateway, blueprints, middleware,
and configuration.
"""
from __future__ import annotations
import ipaddress
import os
from datetime import timedelta
from tempfile import gettempdir

from cachelib.file import FileSystemCache
from flask import Flask, abort, request
from flask_session import Session
from werkzeug.middleware.proxy_fix import ProxyFix

from sso_gateway.config import AppConfig, load_settings
from sso_gateway.core.audit import AuditLogger
from sso_gateway.core.directory import build_directory_service
from sso_gateway.core.gateway import AuthGateway
from sso_gateway.core.reconciliation import ReconciliationEngine
from sso_gateway.core.session import SessionManager
from sso_gateway.core.store import InMemoryUserStore


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(cfg: AppConfig | None = None, store=None, directory=None, audit=None) -> Flask:
    """Create and configure Flask application.

    Args:
        cfg: Settings (loaded from the environment when omitted)
        store: Local user store (in-memory store when omitted)
        directory: Directory service (built from cfg when omitted)
        audit: Audit logger (file-backed under cfg.audit_log_dir when omitted)
    """
    cfg = cfg or load_settings()

    app = Flask(__name__)

    # Store config for easy access in routes
    app.config["APP_CONFIG"] = cfg

    # Session configuration
    app.config["SECRET_KEY"] = cfg.secret_key
    if cfg.secret_key_fallbacks:
        app.config["SECRET_KEY_FALLBACKS"] = cfg.secret_key_fallbacks

    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_COOKIE_SECURE"] = cfg.session_cookie_secure
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(seconds=cfg.session_max_age)

    if cfg.session_backend == "filesystem":
        session_dir = cfg.session_dir or os.path.join(gettempdir(), "sso_gateway_flask_session")
        os.makedirs(session_dir, exist_ok=True)
        app.config["SESSION_TYPE"] = "cachelib"
        app.config["SESSION_CACHELIB"] = FileSystemCache(cache_dir=session_dir, threshold=500)
        app.config["SESSION_PERMANENT"] = True
        Session(app)

    # Trust X-Forwarded-* headers from proxy (nginx)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    trusted_proxy_networks = _parse_trusted_networks(cfg.trusted_proxy_ips)
    app.config["TRUSTED_PROXY_NETWORKS"] = trusted_proxy_networks

    # Login gateway wiring
    app.extensions["auth_gateway"] = build_gateway(cfg, store=store, directory=directory, audit=audit)

    # OAuth provider
    from sso_gateway.api import auth
    auth.init_oauth(app, cfg)

    # Register blueprints
    from sso_gateway.api import health, errors

    app.register_blueprint(auth.bp)
    app.register_blueprint(health.bp)

    # Register error handlers
    errors.register_error_handlers(app)

    # Register middleware/before_request handlers
    _register_middleware(app, trusted_proxy_networks)

    mode_label = "DEMO" if cfg.demo_mode else cfg.app_env.upper()
    print(f"[flask_app] Mode={mode_label}")
    print(f"[flask_app] Session backend={cfg.session_backend}, max_age={cfg.session_max_age}s")

    if cfg.demo_mode:
        print("[flask_app] WARNING: Demo mode active - do not deploy with demo credentials")

    return app


def build_gateway(cfg: AppConfig, store=None, directory=None, audit=None) -> AuthGateway:
    """Assemble store, directory, engine, and session manager into a gateway."""
    store = store if store is not None else InMemoryUserStore()
    directory = directory if directory is not None else build_directory_service(cfg)
    audit = audit if audit is not None else AuditLogger(cfg.audit_log_dir, cfg.audit_log_signing_key)

    engine = ReconciliationEngine(
        store,
        directory,
        require_directory_account=cfg.require_directory_account,
        audit=audit,
    )
    return AuthGateway(
        engine,
        SessionManager(store),
        directory,
        audit=audit,
        home_url=cfg.home_url,
        login_url=cfg.login_url,
    )


def _register_middleware(app: Flask, trusted_proxy_networks: list):
    """Register before_request middleware."""

    @app.before_request
    def enforce_proxy_headers() -> None:
        """Validate proxy headers from trusted sources only."""
        original_remote = request.environ.get("werkzeug.proxy_fix.orig_remote_addr")
        if original_remote:
            try:
                address = ipaddress.ip_address(original_remote)
                if not any(address in network for network in trusted_proxy_networks):
                    abort(400, description="Untrusted proxy")
            except ValueError:
                abort(400, description="Invalid proxy address")

        cfg = app.config["APP_CONFIG"]
        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if cfg.session_cookie_secure and forwarded_proto and forwarded_proto != "https":
            abort(400, description="Invalid forwarded protocol")

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for and "," in forwarded_for:
            abort(400, description="Multiple forwarded clients not permitted")


# ─────────────────────────────────────────────────────────────────────────────
# Helper Functions
# ─────────────────────────────────────────────────────────────────────────────
def _parse_trusted_networks(raw: str) -> list:
    """Parse a comma-separated list of CIDRs, skipping invalid entries."""
    networks = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            continue
    return networks


# ─────────────────────────────────────────────────────────────────────────────
# Application Instance (for Gunicorn)
# ─────────────────────────────────────────────────────────────────────────────
app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
