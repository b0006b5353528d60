"""
User directory operations proxied to the identity provider.

Every mutating call re-reads the record afterwards and returns what the
provider actually stored, not the request payload.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from quotes_backend.auth import ROLE_VALUES, Role
from quotes_backend.errors import NotFound, ProviderError, ValidationError
from quotes_backend.identity import IdentityProvider, IdentityRecord

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
DEFAULT_PAGE_SIZE = 1000


@dataclass
class ManagedUser:
    uid: str
    email: str
    display_name: str
    phone_number: str
    role: str
    disabled: bool
    created_at: Optional[datetime]
    last_login: Optional[datetime]

    def as_dict(self) -> dict:
        return {
            "uid": self.uid,
            "email": self.email,
            "displayName": self.display_name,
            "phoneNumber": self.phone_number,
            "role": self.role,
            "disabled": self.disabled,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "lastLogin": self.last_login.isoformat() if self.last_login else None,
        }


def to_managed_user(record: IdentityRecord) -> ManagedUser:
    role = Role.parse(record.claims.get("role")) or Role.USER
    return ManagedUser(
        uid=record.subject_id,
        email=record.email or "",
        display_name=record.display_name or "",
        phone_number=record.phone_number or "",
        role=role.value,
        disabled=record.disabled,
        created_at=record.created_at,
        last_login=record.last_login,
    )


def validate_role(role: object) -> Role:
    parsed = Role.parse(role)
    if parsed is None:
        raise ValidationError(
            "role", f"Role must be {', '.join(ROLE_VALUES[:-1])}, or {ROLE_VALUES[-1]}"
        )
    return parsed


class DirectoryService:
    def __init__(
        self,
        provider: IdentityProvider,
        allowed_email_domain: str = "ilovesalt.com",
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.provider = provider
        self.allowed_email_domain = allowed_email_domain
        self.page_size = page_size
        self._email_pattern = re.compile(
            rf"[^\s@]+@{re.escape(allowed_email_domain)}", re.IGNORECASE
        )

    def list_users(self) -> list[ManagedUser]:
        users: list[ManagedUser] = []
        page_token: Optional[str] = None
        try:
            while True:
                page = self.provider.list_users(self.page_size, page_token)
                users.extend(to_managed_user(record) for record in page.records)
                page_token = page.next_page_token
                if not page_token:
                    break
        except ProviderError as exc:
            logger.exception("Failed to list Firebase users after %d records", len(users))
            raise ProviderError("Failed to load users") from exc
        return users

    def validate_new_user(self, email: object, password: object, role: object) -> Role:
        if not email or not password:
            field = "email" if not email else "password"
            raise ValidationError(field, "Email and password are required")
        if not isinstance(email, str) or not self._email_pattern.fullmatch(email):
            raise ValidationError(
                "email",
                f"Email must be a valid @{self.allowed_email_domain} address",
            )
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                "password",
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            )
        return validate_role(role)

    def create_user(
        self,
        email: str,
        password: str,
        display_name: Optional[str] = None,
        role: str = Role.USER.value,
        phone_number: Optional[str] = None,
    ) -> ManagedUser:
        """
        Create the identity, then attach its role claim.

        The two provider calls are not atomic. If the claim cannot be set the
        identity stays behind without a role (it reads as ``user``) and the
        caller is expected to retry with ``update_role``.
        """
        parsed_role = self.validate_new_user(email, password, role)
        try:
            record = self.provider.create_user(
                email=email,
                password=password,
                display_name=display_name,
                phone_number=phone_number,
            )
        except ProviderError:
            logger.exception("Failed to create Firebase user %s", email)
            raise ProviderError("Failed to create user")
        try:
            self.provider.set_role_claim(record.subject_id, {"role": parsed_role.value})
        except (ProviderError, NotFound):
            logger.exception(
                "Created user %s but failed to attach role %s",
                record.subject_id,
                parsed_role.value,
            )
            raise ProviderError("User created but role could not be assigned")
        return to_managed_user(self._reload(record.subject_id, "Failed to create user"))

    def update_role(self, subject_id: str, role: str) -> ManagedUser:
        if not subject_id:
            raise ValidationError("uid", "uid and role are required")
        parsed_role = validate_role(role)
        existing = self.provider.get_user(subject_id)
        claims = {**existing.claims, "role": parsed_role.value}
        try:
            self.provider.set_role_claim(subject_id, claims)
        except ProviderError:
            logger.exception("Failed to update Firebase user role for %s", subject_id)
            raise ProviderError("Failed to update role")
        return to_managed_user(self._reload(subject_id, "Failed to update role"))

    def set_role(self, subject_id: str, role: str) -> dict:
        """Replace the whole claim set with a single role claim."""
        if not subject_id:
            raise ValidationError("uid", "uid and role are required")
        parsed_role = validate_role(role)
        try:
            self.provider.set_role_claim(subject_id, {"role": parsed_role.value})
        except ProviderError:
            logger.exception("Failed to set role for %s", subject_id)
            raise ProviderError("Failed to set role")
        return {"ok": True, "uid": subject_id, "role": parsed_role.value}

    def delete_user(self, subject_id: str) -> None:
        if not subject_id:
            raise ValidationError("uid", "uid is required")
        try:
            self.provider.delete_user(subject_id)
        except NotFound:
            logger.info("Firebase user %s already absent, nothing to delete", subject_id)
        except ProviderError:
            logger.exception("Failed to delete Firebase user %s", subject_id)
            raise ProviderError("Failed to delete user")

    def _reload(self, subject_id: str, failure_message: str) -> IdentityRecord:
        try:
            return self.provider.get_user(subject_id)
        except ProviderError:
            logger.exception("Failed to re-read Firebase user %s", subject_id)
            raise ProviderError(failure_message)
