from __future__ import annotations

from typing import List

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from ..core.db import get_session, session_scope
from ..core.logging import get_logger
from ..models.faq import FaqFavorite, FaqItem
from .errors import NotFoundError


logger = get_logger(__name__)


class FavoriteService:
    def toggle(self, user_id: int, faq_id: int) -> bool:
        """Flip the favorite flag and return the new state."""
        with session_scope() as session:
            if session.get(FaqItem, faq_id) is None:
                raise NotFoundError(f"FAQ {faq_id} not found")

            removed = session.execute(
                delete(FaqFavorite).where(FaqFavorite.user_id == user_id, FaqFavorite.faq_id == faq_id)
            ).rowcount
            if removed:
                favorited = False
            else:
                session.add(FaqFavorite(user_id=user_id, faq_id=faq_id))
                try:
                    session.flush()
                except IntegrityError:
                    # A parallel request added it first; the flag is already set.
                    session.rollback()
                    return True
                favorited = True

        logger.info("User %s %s FAQ %s", user_id, "favorited" if favorited else "unfavorited", faq_id)
        return favorited

    def list_for_user(self, user_id: int) -> List[int]:
        with get_session() as session:
            rows = session.execute(
                select(FaqFavorite.faq_id)
                .where(FaqFavorite.user_id == user_id)
                .order_by(FaqFavorite.created_at.desc(), FaqFavorite.id.desc())
            ).all()
        return [row[0] for row in rows]
