"""
Request authentication and role-based access checks.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from quotes_backend.errors import Forbidden, InvalidToken, ProviderError, Unauthenticated
from quotes_backend.identity import IdentityProvider

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    ADMIN = "admin"
    PM = "pm"
    USER = "user"

    @classmethod
    def parse(cls, value: object) -> Optional["Role"]:
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                return None
        return None


ROLE_VALUES = tuple(role.value for role in Role)


@dataclass
class AuthenticatedUser:
    uid: str
    email: Optional[str]
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def as_dict(self) -> dict:
        return {"uid": self.uid, "email": self.email, "role": self.role.value}


def parse_admin_emails(raw: str | Iterable[str] | None) -> frozenset[str]:
    if not raw:
        return frozenset()
    items = raw.split(",") if isinstance(raw, str) else raw
    return frozenset(item.strip().lower() for item in items if item and item.strip())


def resolve_role(
    role_claim: object, email: Optional[str], admin_emails: frozenset[str]
) -> Role:
    """
    Stored claim first, then admin allow-list membership, then ``user``.

    Claims that are not one of the known roles are ignored.
    """
    claimed = Role.parse(role_claim)
    if claimed is not None:
        return claimed
    if email and email.strip().lower() in admin_emails:
        return Role.ADMIN
    return Role.USER


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer ") :].strip()
    return token or None


def authenticate(
    authorization: Optional[str],
    provider: IdentityProvider,
    admin_emails: frozenset[str],
) -> AuthenticatedUser:
    token = extract_bearer_token(authorization)
    if not token:
        raise Unauthenticated()
    try:
        verified = provider.verify_token(token)
    except (InvalidToken, ProviderError) as exc:
        logger.warning("Failed to verify Firebase token: %s", exc)
        raise Unauthenticated() from exc
    role = resolve_role(verified.role_claim, verified.email, admin_emails)
    return AuthenticatedUser(uid=verified.subject_id, email=verified.email, role=role)


def require_admin(user: AuthenticatedUser) -> AuthenticatedUser:
    if not user.is_admin:
        raise Forbidden()
    return user
