from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.faq import FaqStatus


class Reference(BaseModel):
    type: Literal["paper", "blog", "other"] = "other"
    title: str = Field(..., min_length=1)
    url: Optional[str] = None
    author: Optional[str] = None
    platform: Optional[str] = None


class FaqImage(BaseModel):
    url: str = Field(..., min_length=1)
    caption: str = ""
    source: Literal["blog", "paper"] = "blog"


class FaqItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: FaqStatus
    question: str
    question_en: Optional[str] = Field(None, serialization_alias="questionEn")
    answer: Optional[str] = None
    answer_brief: Optional[str] = Field(None, serialization_alias="answerBrief")
    answer_en: Optional[str] = Field(None, serialization_alias="answerEn")
    answer_brief_en: Optional[str] = Field(None, serialization_alias="answerBriefEn")
    tags: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    references: List[Reference] = Field(default_factory=list)
    images: List[FaqImage] = Field(default_factory=list)
    upvote_count: int = Field(0, serialization_alias="upvoteCount")
    downvote_count: int = Field(0, serialization_alias="downvoteCount")
    current_version: int = Field(1, serialization_alias="currentVersion")
    last_updated_at: Optional[datetime] = Field(None, serialization_alias="lastUpdatedAt")
    created_at: datetime = Field(..., serialization_alias="createdAt")
    updated_at: datetime = Field(..., serialization_alias="updatedAt")


class AdminFaqItemOut(FaqItemOut):
    answer_raw: str = Field(..., serialization_alias="answerRaw")
    error_message: Optional[str] = Field(None, serialization_alias="errorMessage")
    reviewed_at: Optional[datetime] = Field(None, serialization_alias="reviewedAt")
    reviewed_by: Optional[str] = Field(None, serialization_alias="reviewedBy")
    enrichment_attempt: int = Field(0, serialization_alias="enrichmentAttempt")


class FaqListResponse(BaseModel):
    total: int
    page: int
    pageSize: int
    items: List[FaqItemOut]


class AdminFaqListResponse(BaseModel):
    total: int
    page: int
    pageSize: int
    items: List[AdminFaqItemOut]


class CreateFaqRequest(BaseModel):
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1, description="Raw answer, kept verbatim as answerRaw")


class FaqActionRequest(BaseModel):
    action: Literal["publish", "reject", "unpublish", "retry"]


class FaqEditRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: Optional[str] = None
    answer: Optional[str] = None
    answer_brief: Optional[str] = Field(None, alias="answerBrief")
    question_en: Optional[str] = Field(None, alias="questionEn")
    answer_en: Optional[str] = Field(None, alias="answerEn")
    answer_brief_en: Optional[str] = Field(None, alias="answerBriefEn")
    tags: Optional[List[str]] = None
    categories: Optional[List[str]] = None
    references: Optional[List[Reference]] = None
    images: Optional[List[FaqImage]] = None
    status: Optional[FaqStatus] = None
    change_reason: Optional[str] = Field(None, alias="changeReason")

    def field_changes(self) -> dict:
        """Explicitly sent content fields, without status/changeReason."""
        sent = self.model_dump(exclude_unset=True, exclude={"status", "change_reason"})
        return {key: getattr(self, key) for key in sent}
