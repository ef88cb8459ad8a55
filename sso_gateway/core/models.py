"""Data carried through a federated login."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class IdentityProfile:
    """Verified attributes returned by the identity provider for one login attempt."""
    email: str
    display_name: str = ""
    provider_subject_id: str = ""
    photo_url: Optional[str] = None
    access_token: str = ""
    refresh_token: Optional[str] = None
    provider: str = "google"

    @classmethod
    def from_userinfo(cls, userinfo: dict, token: dict, provider: str = "google") -> "IdentityProfile":
        """Build a profile from OIDC userinfo claims and the token response."""
        userinfo = userinfo or {}
        token = token or {}
        email = userinfo.get("email") or ""
        return cls(
            email=str(email).strip(),
            display_name=str(userinfo.get("name") or ""),
            provider_subject_id=str(userinfo.get("sub") or ""),
            photo_url=userinfo.get("picture") or None,
            access_token=str(token.get("access_token") or ""),
            refresh_token=token.get("refresh_token") or None,
            provider=provider,
        )

    def directory_metadata(self) -> dict[str, Any]:
        """Provider metadata registered alongside a new directory record."""
        return {
            "profile_id": self.provider_subject_id,
            "name": self.display_name,
            "photo_url": self.photo_url,
        }


@dataclass(frozen=True)
class DirectoryRecord:
    """Remote directory view of a user."""
    id: str
    email: str
    username: str

    @classmethod
    def from_payload(cls, payload: dict) -> "DirectoryRecord":
        """Parse one GraphQL user object; raises ValueError on a bad shape."""
        if not isinstance(payload, dict):
            raise ValueError("directory user must be an object")
        user_id = payload.get("id")
        email = payload.get("email")
        if user_id is None or not email:
            raise ValueError("directory user is missing id or email")
        return cls(id=str(user_id), email=str(email), username=str(payload.get("username") or email))

    def as_dict(self) -> dict[str, str]:
        return {"id": self.id, "email": self.email, "username": self.username}


@dataclass
class LocalUser:
    """Account record owned by the local user store."""
    id: int
    username: str
    email: str
    sso_type: str
    sso_credentials: dict[str, Any] = field(default_factory=dict)

    @property
    def directory_user_id(self) -> Optional[str]:
        return self.sso_credentials.get("directory_user_id")

    def public_dict(self) -> dict[str, Any]:
        """User fields safe to return to the browser (no tokens)."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "ssoType": self.sso_type,
        }

    def legacy_dict(self) -> dict[str, Any]:
        """``public_dict`` with the snake_case keys the legacy front end reads."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "sso_type": self.sso_type,
        }
