"""Authentication routes: provider handshake, callback, logout, session info.

The OAuth handshake is delegated to authlib; everything after a verified
profile is handled by the AuthGateway stored on ``app.extensions``.

Legacy aliases (``/api/auth/*``) are kept for the existing front end.
"""
from __future__ import annotations

import requests
from authlib.integrations.base_client import OAuthError
from authlib.integrations.flask_client import OAuth
from flask import Blueprint, current_app, g, jsonify, redirect, request, session

from sso_gateway.api.decorators import login_required
from sso_gateway.core.exceptions import ProviderAuthError
from sso_gateway.core.gateway import AuthGateway
from sso_gateway.core.models import IdentityProfile

bp = Blueprint("auth", __name__)

OAUTH_EXTENSION_KEY = "sso_oauth"
GATEWAY_EXTENSION_KEY = "auth_gateway"


def init_oauth(app, cfg) -> OAuth:
    """Register the identity provider with authlib for this app."""
    oauth = OAuth(app)
    oauth.register(
        name=cfg.sso_provider,
        server_metadata_url=cfg.provider_metadata_url,
        client_id=cfg.google_client_id,
        client_secret=cfg.google_client_secret or None,
        client_kwargs={"scope": "openid email profile"},
    )
    app.extensions[OAUTH_EXTENSION_KEY] = oauth

    if not cfg.google_client_id or not cfg.google_client_secret:
        app.logger.warning("Missing OAuth credentials; set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET")
    app.logger.info("OAuth provider=%s client_id=%s callback=%s", cfg.sso_provider, cfg.masked_client_id, cfg.callback_url)
    return oauth


def get_oauth_client():
    """Get the authlib client for the configured provider."""
    cfg = current_app.config["APP_CONFIG"]
    oauth = current_app.extensions.get(OAUTH_EXTENSION_KEY)
    if oauth is None:
        raise RuntimeError("OAuth not initialized. Call init_oauth first.")
    client = oauth.create_client(cfg.sso_provider)
    if client is None:
        raise RuntimeError(f"No OAuth client registered for provider {cfg.sso_provider}")
    return client


def get_gateway() -> AuthGateway:
    gateway = current_app.extensions.get(GATEWAY_EXTENSION_KEY)
    if gateway is None:
        raise RuntimeError("AuthGateway not initialized; build the app with create_app()")
    return gateway


def rotate_session_id() -> None:
    """Issue a new server-side session id for the freshly bound session.

    Server-side interfaces (Flask-Session) keep the sid across ``clear()``;
    signed-cookie sessions have no id to rotate.
    """
    regenerate = getattr(current_app.session_interface, "regenerate", None)
    if regenerate is not None:
        regenerate(session)


def fetch_profile(client, provider: str) -> IdentityProfile:
    """Exchange the authorization code and read the verified profile.

    Raises:
        ProviderAuthError: Token exchange or userinfo retrieval failed
    """
    try:
        token = client.authorize_access_token()
        userinfo = token.get("userinfo") or client.userinfo(token=token)
    except OAuthError as exc:
        raise ProviderAuthError(exc.error or "oauth_error") from exc
    except (requests.RequestException, ValueError) as exc:
        raise ProviderAuthError(f"userinfo unavailable: {exc}") from exc
    return IdentityProfile.from_userinfo(dict(userinfo or {}), dict(token or {}), provider=provider)


# ─────────────────────────────────────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/login/start")
@bp.route("/api/auth/google")
def login_start():
    """Redirect to the identity provider consent screen."""
    cfg = current_app.config["APP_CONFIG"]
    client = get_oauth_client()
    return client.authorize_redirect(cfg.callback_url)


@bp.route("/login/callback")
@bp.route("/api/auth/google/callback")
def callback():
    """Finish the login: reconcile the profile, bind the session, redirect."""
    cfg = current_app.config["APP_CONFIG"]
    gateway = get_gateway()
    current_app.logger.info("Received callback at: %s", request.path)

    provider_error = request.args.get("error")
    if provider_error:
        attempt = gateway.complete_login(session, None, provider_error=provider_error)
        return redirect(attempt.location)

    try:
        profile = fetch_profile(get_oauth_client(), cfg.sso_provider)
    except ProviderAuthError as exc:
        attempt = gateway.complete_login(session, None, provider_error=exc.reason)
        return redirect(attempt.location)

    attempt = gateway.complete_login(session, profile)
    if attempt.succeeded:
        rotate_session_id()
    return redirect(attempt.location)


@bp.route("/logout")
@bp.route("/api/auth/logout")
def logout():
    """Clear the session and go home."""
    return redirect(get_gateway().logout(session))


@bp.route("/session/whoami")
def whoami():
    """Current user info (never fails; unauthenticated on any problem)."""
    return jsonify(get_gateway().whoami(session))


@bp.route("/api/auth/user")
def legacy_user():
    """whoami for the legacy front end, which reads ``user.sso_type``."""
    return jsonify(get_gateway().whoami(session, legacy=True))


@bp.route("/session/validate")
@bp.route("/api/auth/validate-user")
@login_required
def validate_user():
    """Re-check the current user against the remote directory."""
    status, body = get_gateway().validate_user(g.current_user)
    return jsonify(body), status
