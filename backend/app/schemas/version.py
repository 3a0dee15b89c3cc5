from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class VoteCounts(BaseModel):
    upvote: int
    downvote: int


class VersionOut(BaseModel):
    version: int
    answer: Optional[str] = None
    answer_brief: Optional[str] = Field(None, serialization_alias="answerBrief")
    question_en: Optional[str] = Field(None, serialization_alias="questionEn")
    answer_en: Optional[str] = Field(None, serialization_alias="answerEn")
    answer_brief_en: Optional[str] = Field(None, serialization_alias="answerBriefEn")
    change_reason: Optional[str] = Field(None, serialization_alias="changeReason")
    created_at: datetime = Field(..., serialization_alias="createdAt")
    votes: VoteCounts


class VersionListResponse(BaseModel):
    faq_id: int = Field(..., serialization_alias="faqId")
    current_version: int = Field(..., serialization_alias="currentVersion")
    versions: List[VersionOut]
