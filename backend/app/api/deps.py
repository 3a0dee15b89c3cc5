from __future__ import annotations

from functools import lru_cache

from ..services.auth import AuthService
from ..services.favorites import FavoriteService
from ..services.imports import ImportPipeline, ImportService
from ..services.lifecycle import FaqLifecycle
from ..services.orchestrator import LifecycleOrchestrator
from ..services.versions import VersionArchive
from ..services.votes import VoteLedger


# Shared service instances. Routers depend on these getters so tests can swap
# them through `app.dependency_overrides`.


@lru_cache
def get_archive() -> VersionArchive:
    return VersionArchive()


@lru_cache
def get_lifecycle() -> FaqLifecycle:
    return FaqLifecycle(archive=get_archive())


@lru_cache
def get_orchestrator() -> LifecycleOrchestrator:
    return LifecycleOrchestrator(lifecycle=get_lifecycle())


@lru_cache
def get_import_service() -> ImportService:
    return ImportService()


@lru_cache
def get_import_pipeline() -> ImportPipeline:
    return ImportPipeline(get_orchestrator(), imports=get_import_service())


@lru_cache
def get_vote_ledger() -> VoteLedger:
    return VoteLedger()


@lru_cache
def get_favorites() -> FavoriteService:
    return FavoriteService()


@lru_cache
def get_auth_service() -> AuthService:
    return AuthService()
