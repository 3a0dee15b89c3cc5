from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ...core.security import require_admin
from ...models.user import User
from ...schemas.auth import LoginUserInfo, UpdateTierRequest
from ...services.auth import AuthService
from ...services.errors import NotFoundError
from ..deps import get_auth_service


router = APIRouter(prefix="/api/v1/admin/users", tags=["admin-user"])


@router.patch("/{user_id}", response_model=LoginUserInfo)
def update_user_tier(
    user_id: int,
    body: UpdateTierRequest,
    auth_service: AuthService = Depends(get_auth_service),
    _: User = Depends(require_admin),
) -> LoginUserInfo:
    try:
        user = auth_service.set_tier(user_id, body.tier)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return LoginUserInfo(
        userId=user.id,
        username=user.username,
        fullName=user.full_name,
        role=user.role,
        tier=user.tier,
    )
