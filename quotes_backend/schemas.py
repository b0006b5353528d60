"""
Pydantic schemas for the quotes backend API.

Field names follow the JSON the web client already sends and expects
(camelCase), so no aliasing is needed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class CreateUserRequest(BaseModel):
    # Presence and format are checked by DirectoryService so that the error
    # message names the offending field.
    email: Optional[str] = None
    password: Optional[str] = None
    displayName: Optional[str] = None
    role: str = "user"
    phoneNumber: Optional[str] = None


class UpdateRoleRequest(BaseModel):
    uid: Optional[str] = None
    role: Optional[str] = None


class DeleteUserRequest(BaseModel):
    uid: Optional[str] = None


class ManagedUserResponse(BaseModel):
    uid: str
    email: str
    displayName: str
    phoneNumber: str
    role: str
    disabled: bool
    createdAt: Optional[datetime] = None
    lastLogin: Optional[datetime] = None


class UserResponse(BaseModel):
    user: ManagedUserResponse


class ListUsersResponse(BaseModel):
    users: list[ManagedUserResponse]


class SetRoleResponse(BaseModel):
    ok: bool
    uid: str
    role: str


class OkResponse(BaseModel):
    ok: bool = True


class MeResponse(BaseModel):
    uid: str
    email: Optional[str] = None
    role: str


class ReplaceQuotesRequest(BaseModel):
    quotes: list[Any]


class QuotesResponse(BaseModel):
    quotes: list[dict]


class UpsertQuoteRequest(BaseModel):
    quote: dict


class QuoteResponse(BaseModel):
    quote: dict


class StorageValueRequest(BaseModel):
    value: Any = None


class StorageValueResponse(BaseModel):
    key: str
    value: Any = None


class StorageListResponse(BaseModel):
    values: dict
