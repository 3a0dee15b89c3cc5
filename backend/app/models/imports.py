from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String, Text, func

from .base import Base


class ImportStatus(str, Enum):
    PENDING = "pending"
    PARSING = "parsing"
    GENERATING = "generating"
    JUDGING = "judging"
    ENRICHING = "enriching"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_IMPORT_STATUSES


TERMINAL_IMPORT_STATUSES = frozenset({ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.TIMEOUT})

# Forward order of the non-failure stages.
IMPORT_STAGE_ORDER = (
    ImportStatus.PENDING,
    ImportStatus.PARSING,
    ImportStatus.GENERATING,
    ImportStatus.JUDGING,
    ImportStatus.ENRICHING,
    ImportStatus.COMPLETED,
)


class ImportJob(Base):
    __tablename__ = "faq_imports"

    import_id = Column(String(64), primary_key=True)
    filename = Column(String(255), nullable=False)
    file_type = Column(String(16), nullable=False)
    status = Column(String(20), nullable=False, default=ImportStatus.PENDING.value, index=True)
    total_qa = Column(Integer, nullable=False, default=0)
    passed_qa = Column(Integer, nullable=False, default=0)
    error_msg = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)
    updated_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )
