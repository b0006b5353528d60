"""
HTTP routes for the quotes backend API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Path

from quotes_backend.auth import AuthenticatedUser
from quotes_backend.dependencies import (
    get_admin_user,
    get_current_user,
    get_directory_service,
    get_quote_repository,
    get_storage_service,
)
from quotes_backend.directory import DirectoryService, ManagedUser
from quotes_backend.quotes import QuoteRepository
from quotes_backend.schemas import (
    CreateUserRequest,
    DeleteUserRequest,
    ListUsersResponse,
    ManagedUserResponse,
    MeResponse,
    OkResponse,
    QuoteResponse,
    QuotesResponse,
    ReplaceQuotesRequest,
    SetRoleResponse,
    StorageListResponse,
    StorageValueRequest,
    StorageValueResponse,
    UpdateRoleRequest,
    UpsertQuoteRequest,
    UserResponse,
)
from quotes_backend.storage import StorageService

logger = logging.getLogger(__name__)

router = APIRouter()


def _user_payload(user: ManagedUser) -> ManagedUserResponse:
    return ManagedUserResponse(**user.as_dict())


@router.get("/me", response_model=MeResponse)
def me(user: AuthenticatedUser = Depends(get_current_user)):
    return MeResponse(**user.as_dict())


# -- users (admin only) ------------------------------------------------------


@router.get("/users", response_model=ListUsersResponse)
def list_users(
    _admin: AuthenticatedUser = Depends(get_admin_user),
    directory: DirectoryService = Depends(get_directory_service),
):
    users = directory.list_users()
    return ListUsersResponse(users=[_user_payload(user) for user in users])


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    payload: CreateUserRequest,
    admin: AuthenticatedUser = Depends(get_admin_user),
    directory: DirectoryService = Depends(get_directory_service),
):
    created = directory.create_user(
        email=payload.email,
        password=payload.password,
        display_name=payload.displayName,
        role=payload.role,
        phone_number=payload.phoneNumber,
    )
    logger.info("Admin %s created user %s (%s)", admin.uid, created.uid, created.role)
    return UserResponse(user=_user_payload(created))


@router.put("/users", response_model=UserResponse)
def update_user_role(
    payload: UpdateRoleRequest,
    admin: AuthenticatedUser = Depends(get_admin_user),
    directory: DirectoryService = Depends(get_directory_service),
):
    updated = directory.update_role(payload.uid, payload.role)
    logger.info("Admin %s set role of %s to %s", admin.uid, updated.uid, updated.role)
    return UserResponse(user=_user_payload(updated))


@router.delete("/users", response_model=OkResponse)
def delete_user(
    payload: DeleteUserRequest,
    admin: AuthenticatedUser = Depends(get_admin_user),
    directory: DirectoryService = Depends(get_directory_service),
):
    directory.delete_user(payload.uid)
    logger.info("Admin %s deleted user %s", admin.uid, payload.uid)
    return OkResponse()


@router.post("/setRole", response_model=SetRoleResponse)
def set_role(
    payload: UpdateRoleRequest,
    _admin: AuthenticatedUser = Depends(get_admin_user),
    directory: DirectoryService = Depends(get_directory_service),
):
    return SetRoleResponse(**directory.set_role(payload.uid, payload.role))


# -- per-user storage --------------------------------------------------------


@router.get("/storage", response_model=StorageListResponse)
def list_storage(
    user: AuthenticatedUser = Depends(get_current_user),
    storage: StorageService = Depends(get_storage_service),
):
    return StorageListResponse(values=storage.list_values(user.uid))


@router.get("/storage/{key}", response_model=StorageValueResponse)
def get_storage_value(
    key: str = Path(..., max_length=128),
    user: AuthenticatedUser = Depends(get_current_user),
    storage: StorageService = Depends(get_storage_service),
):
    return StorageValueResponse(key=key, value=storage.get_value(user.uid, key))


@router.put("/storage/{key}", response_model=StorageValueResponse)
def put_storage_value(
    payload: StorageValueRequest,
    key: str = Path(..., max_length=128),
    user: AuthenticatedUser = Depends(get_current_user),
    storage: StorageService = Depends(get_storage_service),
):
    saved = storage.set_value(user.uid, key, payload.value, user.email)
    return StorageValueResponse(key=key, value=saved)


@router.delete("/storage/{key}", response_model=OkResponse)
def delete_storage_value(
    key: str = Path(..., max_length=128),
    user: AuthenticatedUser = Depends(get_current_user),
    storage: StorageService = Depends(get_storage_service),
):
    storage.delete_value(user.uid, key)
    return OkResponse()


# -- quotes ------------------------------------------------------------------


@router.get("/quotes", response_model=QuotesResponse)
def list_quotes(
    user: AuthenticatedUser = Depends(get_current_user),
    repository: QuoteRepository = Depends(get_quote_repository),
):
    return QuotesResponse(quotes=repository.get_quotes_for_user(user.uid))


@router.put("/quotes", response_model=QuotesResponse)
def replace_quotes(
    payload: ReplaceQuotesRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    repository: QuoteRepository = Depends(get_quote_repository),
):
    repository.replace_quotes(user.uid, payload.quotes, user.email)
    return QuotesResponse(quotes=repository.get_quotes_for_user(user.uid))


@router.get("/quotes/{quote_id}", response_model=QuoteResponse)
def get_quote(
    quote_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    repository: QuoteRepository = Depends(get_quote_repository),
):
    return QuoteResponse(quote=repository.get_quote(user.uid, quote_id))


@router.put("/quotes/{quote_id}", response_model=QuoteResponse)
def put_quote(
    quote_id: str,
    payload: UpsertQuoteRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    repository: QuoteRepository = Depends(get_quote_repository),
):
    saved = repository.upsert_quote(user.uid, quote_id, payload.quote, user.email)
    return QuoteResponse(quote=saved)


@router.delete("/quotes/{quote_id}", response_model=OkResponse)
def delete_quote(
    quote_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    repository: QuoteRepository = Depends(get_quote_repository),
):
    repository.delete_quote(user.uid, quote_id)
    return OkResponse()
