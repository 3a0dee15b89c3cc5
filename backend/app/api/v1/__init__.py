from fastapi import APIRouter

from .admin_faq_routes import router as admin_faq_router
from .admin_import_routes import router as admin_import_router
from .admin_user_routes import router as admin_user_router
from .auth_routes import router as auth_router
from .favorite_routes import router as favorite_router
from .faq_routes import router as faq_router
from .vote_routes import router as vote_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(admin_faq_router)
router.include_router(admin_import_router)
router.include_router(admin_user_router)
router.include_router(faq_router)
router.include_router(vote_router)
router.include_router(favorite_router)

__all__ = ["router"]
