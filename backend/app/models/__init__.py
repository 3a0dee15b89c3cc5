from .base import Base
from .faq import FaqFavorite, FaqItem, FaqStatus, FaqVersion, FaqVote, VoteType
from .imports import ImportJob, ImportStatus
from .user import User, UserRole, UserTier

__all__ = [
    "Base",
    "FaqFavorite",
    "FaqItem",
    "FaqStatus",
    "FaqVersion",
    "FaqVote",
    "ImportJob",
    "ImportStatus",
    "User",
    "UserRole",
    "UserTier",
    "VoteType",
]
