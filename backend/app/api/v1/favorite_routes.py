from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ...core.security import get_current_user
from ...models.user import User
from ...schemas.auth import FavoriteToggleResponse, FavoritesResponse
from ...services.errors import NotFoundError
from ...services.favorites import FavoriteService
from ..deps import get_favorites


router = APIRouter(prefix="/api/v1", tags=["favorite"])


@router.post("/faqs/{faq_id}/favorite", response_model=FavoriteToggleResponse)
def toggle_favorite(
    faq_id: int,
    favorites: FavoriteService = Depends(get_favorites),
    current_user: User = Depends(get_current_user),
) -> FavoriteToggleResponse:
    try:
        favorited = favorites.toggle(current_user.id, faq_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return FavoriteToggleResponse(favorited=favorited)


@router.get("/user/favorites", response_model=FavoritesResponse)
def list_favorites(
    favorites: FavoriteService = Depends(get_favorites),
    current_user: User = Depends(get_current_user),
) -> FavoritesResponse:
    return FavoritesResponse(favorites=favorites.list_for_user(current_user.id))
