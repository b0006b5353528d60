"""
Dependency wiring for the FastAPI app.

Clients are process-wide singletons created on first use. Nothing here
opens a connection at import time.
"""

from __future__ import annotations

import threading
from typing import Optional

from fastapi import Depends, Header

from quotes_backend.auth import AuthenticatedUser, authenticate, parse_admin_emails, require_admin
from quotes_backend.config import Settings, get_settings
from quotes_backend.db import DbClient, InMemoryDbClient, PostgresDbClient, build_database_url
from quotes_backend.directory import DirectoryService
from quotes_backend.identity import (
    FirebaseIdentityProvider,
    IdentityProvider,
    InMemoryIdentityProvider,
)
from quotes_backend.quotes import QuoteRepository
from quotes_backend.storage import StorageService

_lock = threading.Lock()
_db_client: DbClient | None = None
_identity_provider: IdentityProvider | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so quotes persist across requests.
    """
    global _db_client
    if _db_client:
        return _db_client
    with _lock:
        if _db_client:
            return _db_client
        settings = get_settings()
        database_url = build_database_url(settings)
        if settings.use_in_memory_backends or not database_url:
            _db_client = InMemoryDbClient()
        else:
            _db_client = PostgresDbClient(database_url)
    return _db_client


def get_identity_provider() -> IdentityProvider:
    global _identity_provider
    if _identity_provider:
        return _identity_provider
    with _lock:
        if _identity_provider:
            return _identity_provider
        settings = get_settings()
        if settings.use_in_memory_backends:
            _identity_provider = InMemoryIdentityProvider()
        else:
            _identity_provider = FirebaseIdentityProvider(
                project_id=settings.fb_project_id,
                client_email=settings.fb_client_email,
                private_key=settings.fb_private_key,
            )
    return _identity_provider


def get_quote_repository(db: DbClient = Depends(get_db_client)) -> QuoteRepository:
    return QuoteRepository(db)


def get_storage_service(
    repository: QuoteRepository = Depends(get_quote_repository),
    db: DbClient = Depends(get_db_client),
) -> StorageService:
    return StorageService(repository, db)


def get_directory_service(
    provider: IdentityProvider = Depends(get_identity_provider),
    settings: Settings = Depends(get_settings),
) -> DirectoryService:
    return DirectoryService(
        provider,
        allowed_email_domain=settings.allowed_email_domain,
        page_size=settings.list_users_page_size,
    )


def get_current_user(
    authorization: Optional[str] = Header(None),
    provider: IdentityProvider = Depends(get_identity_provider),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    return authenticate(
        authorization, provider, parse_admin_emails(settings.admin_emails)
    )


def get_admin_user(
    user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    return require_admin(user)
