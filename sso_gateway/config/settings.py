"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool
    app_env: str

    # Session
    secret_key: str
    secret_key_fallbacks: list[str] = field(default_factory=list)
    session_max_age: int = 24 * 60 * 60
    session_cookie_secure: bool = True
    session_backend: str = "filesystem"
    session_dir: str = ""
    trusted_proxy_ips: str = "127.0.0.1/32,::1/128"

    # Identity provider (OAuth)
    sso_provider: str = "google"
    google_client_id: str = ""
    google_client_secret: str = ""
    callback_url: str = ""
    provider_metadata_url: str = "https://accounts.google.com/.well-known/openid-configuration"

    # Remote identity directory
    directory_url: str = ""
    directory_admin_secret: str = ""
    directory_timeout: float = 5.0
    require_directory_account: bool = False

    # Redirect targets
    home_url: str = "/"
    login_url: str = "/login"

    # Audit
    audit_log_dir: str = ".runtime/audit"
    audit_log_signing_key: str = ""

    @property
    def directory_configured(self) -> bool:
        return bool(self.directory_url)

    @property
    def masked_client_id(self) -> str:
        """Client id safe for log output."""
        if not self.google_client_id:
            return "missing"
        return f"{self.google_client_id[:10]}..."


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default/generate."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        print(f"[demo-mode] Using default for {var_name}")
        os.environ[var_name] = demo_default
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def _env_flag(var_name: str, default: bool = False) -> bool:
    raw = os.environ.get(var_name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _positive_number(var_name: str, default: float) -> float:
    """Parse a positive number from the environment."""
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be a number (got {raw!r}).")
    if value <= 0:
        raise RuntimeError(f"Environment variable {var_name} must be positive (got {raw!r}).")
    return value


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = _env_flag("DEMO_MODE")
    is_production = os.environ.get("APP_ENV", "development").strip().lower() == "production"

    # ─────────────────────────────────────────────────────────────────────────
    # Secrets: /run/secrets > environment variables > demo generation
    # ─────────────────────────────────────────────────────────────────────────
    secret_key = _load_secret_from_file("session_secret", "SESSION_SECRET")
    if not secret_key:
        if demo_mode:
            secret_key = secrets.token_urlsafe(48)
            os.environ["SESSION_SECRET"] = secret_key
            print("[demo-mode] Generated temporary SESSION_SECRET")
        else:
            raise RuntimeError("SESSION_SECRET not found in /run/secrets or environment")

    secret_key_fallbacks = [
        key.strip()
        for key in os.environ.get("SESSION_SECRET_FALLBACKS", "").split(",")
        if key.strip()
    ]

    google_client_secret = _load_secret_from_file("google_client_secret", "GOOGLE_CLIENT_SECRET") or ""
    directory_admin_secret = _load_secret_from_file("directory_admin_secret", "DIRECTORY_ADMIN_SECRET") or ""

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY")
    if not audit_log_signing_key and demo_mode:
        audit_log_signing_key = os.environ.get(
            "AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production"
        )
        print(f"[demo-mode] Using demo AUDIT_LOG_SIGNING_KEY: {audit_log_signing_key[:20]}...")

    # Provider
    google_client_id = _get_or_generate("GOOGLE_CLIENT_ID", demo_default="demo-client-id", demo_mode=demo_mode)
    if not google_client_secret:
        if demo_mode:
            google_client_secret = "demo-client-secret"
        else:
            raise RuntimeError("GOOGLE_CLIENT_SECRET not found in /run/secrets or environment")
    callback_url = _get_or_generate(
        "CALLBACK_URL",
        demo_default="http://localhost:5000/login/callback",
        demo_mode=demo_mode,
    )
    provider_metadata_url = os.environ.get(
        "PROVIDER_METADATA_URL",
        "https://accounts.google.com/.well-known/openid-configuration",
    )
    sso_provider = os.environ.get("SSO_PROVIDER", "google").strip().lower() or "google"

    # Session cookie: Secure only over the production transport unless overridden
    session_secure_str = os.environ.get("SESSION_COOKIE_SECURE")
    if session_secure_str is None or not session_secure_str.strip():
        session_cookie_secure = is_production
    else:
        session_cookie_secure = session_secure_str.strip().lower() == "true"

    session_max_age = int(_positive_number("SESSION_MAX_AGE", 24 * 60 * 60))
    session_backend = os.environ.get("SESSION_BACKEND", "filesystem").strip().lower()
    if session_backend not in ("filesystem", "cookie"):
        raise RuntimeError(f"SESSION_BACKEND must be 'filesystem' or 'cookie' (got {session_backend!r}).")
    session_dir = os.environ.get("SESSION_DIR", "")

    # Trusted proxies
    trusted_proxy_ips = os.environ.get("TRUSTED_PROXY_IPS")
    if not trusted_proxy_ips:
        is_testing = os.environ.get("PYTEST_CURRENT_TEST") is not None
        if demo_mode or is_testing or not is_production:
            trusted_proxy_ips = "127.0.0.1/32,::1/128"
        else:
            raise RuntimeError("TRUSTED_PROXY_IPS is required in production.")

    # Directory
    directory_url = _get_or_generate(
        "DIRECTORY_URL",
        demo_default="",
        required=False,
        demo_mode=demo_mode,
    )
    directory_timeout = _positive_number("DIRECTORY_TIMEOUT", 5.0)
    require_directory_account = _env_flag("DIRECTORY_REQUIRE_ACCOUNT")
    if require_directory_account and not directory_url:
        raise RuntimeError("DIRECTORY_REQUIRE_ACCOUNT=true requires DIRECTORY_URL.")

    audit_log_dir = os.environ.get("AUDIT_LOG_DIR", ".runtime/audit")

    mode_label = "DEMO" if demo_mode else ("PRODUCTION" if is_production else "DEVELOPMENT")
    print(f"[settings] Mode={mode_label}; provider={sso_provider}; client_id={google_client_id[:10]}...")
    print(f"[settings] Callback URL: {callback_url}")
    print(f"[settings] Directory: {directory_url or 'not configured'} (timeout={directory_timeout}s)")

    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.")

    return AppConfig(
        demo_mode=demo_mode,
        app_env="production" if is_production else "development",
        secret_key=secret_key,
        secret_key_fallbacks=secret_key_fallbacks,
        session_max_age=session_max_age,
        session_cookie_secure=session_cookie_secure,
        session_backend=session_backend,
        session_dir=session_dir,
        trusted_proxy_ips=trusted_proxy_ips,
        sso_provider=sso_provider,
        google_client_id=google_client_id,
        google_client_secret=google_client_secret,
        callback_url=callback_url,
        provider_metadata_url=provider_metadata_url,
        directory_url=directory_url,
        directory_admin_secret=directory_admin_secret,
        directory_timeout=directory_timeout,
        require_directory_account=require_directory_account,
        audit_log_dir=audit_log_dir,
        audit_log_signing_key=audit_log_signing_key or "",
    )
