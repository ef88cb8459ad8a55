"""Audit logging for federated login events."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
import threading
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

AUDIT_LOG_FILENAME = "auth-events.jsonl"

EventType = Literal[
    "login_success", "login_failure", "logout",
    "user_created", "provider_mismatch",
]


class AuditLogger:
    """Append-only JSONL audit trail with HMAC-SHA256 signed events."""

    def __init__(self, log_dir: str | Path, signing_key: str = ""):
        self.log_dir = Path(log_dir)
        self.log_file = self.log_dir / AUDIT_LOG_FILENAME
        self._signing_key = signing_key.strip().encode("utf-8")
        self._write_lock = threading.Lock()

    def _ensure_audit_dir(self) -> None:
        """Create audit directory with restricted permissions."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.chmod(0o700)

    def _sign_event(self, event: dict[str, Any]) -> str:
        """Generate HMAC-SHA256 signature for audit event."""
        if not self._signing_key:
            return ""
        # Canonical JSON representation for signing
        canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
        return hmac.new(self._signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()

    def log_event(
        self,
        event_type: EventType,
        email: str,
        *,
        provider: str = "google",
        user_id: int | None = None,
        details: dict[str, Any] | None = None,
        success: bool = True,
    ) -> None:
        """Log a login event to the audit trail with timestamp and signature.

        Args:
            event_type: Kind of event (login_success, user_created, ...)
            email: Email the event concerns (may be empty for failed logins)
            provider: Identity provider tag
            user_id: Local user id when one is known
            details: Additional context (error code, previous provider, ...)
            success: Whether the operation succeeded
        """
        event = {
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "event_type": event_type,
            "provider": provider,
            "email": email,
            "user_id": user_id,
            "success": success,
            "details": details or {},
        }

        signature = self._sign_event(event)
        if signature:
            event["signature"] = signature

        with self._write_lock:
            self._ensure_audit_dir()
            with self.log_file.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event, ensure_ascii=False) + "\n")
            self.log_file.chmod(0o600)

    def safe_log_event(self, event_type: EventType, email: str, **kwargs: Any) -> bool:
        """Log an event without ever raising.

        Audit failures must not break a login; they are reported through the
        application log instead.

        Returns:
            True if event was logged successfully, False if logging failed
        """
        try:
            self.log_event(event_type, email, **kwargs)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to log %s audit event for %s: %s", event_type, email, e)
            return False

    def verify(self) -> tuple[int, int]:
        """Verify all signatures in the audit log.

        Returns:
            Tuple of (total_events, valid_signatures)
        """
        if not self.log_file.exists():
            return 0, 0

        total = 0
        valid = 0

        with self.log_file.open("r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                total += 1
                try:
                    event = json.loads(line)
                    stored_sig = event.pop("signature", "")
                    if not stored_sig:
                        continue
                    computed_sig = self._sign_event(event)
                    if computed_sig and hmac.compare_digest(stored_sig, computed_sig):
                        valid += 1
                except (json.JSONDecodeError, AttributeError):
                    continue

        return total, valid


class NullAuditLogger:
    """Audit sink that drops events (library use without an audit trail)."""

    def safe_log_event(self, event_type: EventType, email: str, **kwargs: Any) -> bool:
        return True
