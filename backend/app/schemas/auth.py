from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.user import UserTier


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginUserInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(..., alias="userId")
    username: str
    full_name: Optional[str] = Field(None, alias="fullName")
    role: str
    tier: str


class LoginResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken")
    token_type: str = Field("bearer", alias="tokenType")
    user: LoginUserInfo


class UpdateTierRequest(BaseModel):
    tier: UserTier


class FavoriteToggleResponse(BaseModel):
    favorited: bool


class FavoritesResponse(BaseModel):
    favorites: list[int]
