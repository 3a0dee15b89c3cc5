from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.faq import VoteType


class CastVoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: VoteType
    voter_key: Optional[str] = Field(
        None,
        alias="voterKey",
        max_length=128,
        description="Anonymous client fingerprint; ignored for authenticated callers",
    )
    reason: Optional[str] = Field(None, max_length=50)
    detail: Optional[str] = Field(None, max_length=2000)


class CastVoteResponse(BaseModel):
    inserted: bool
    switched: bool


class RevokeVoteResponse(BaseModel):
    removed: bool


class VoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    faq_id: int = Field(..., serialization_alias="faqId")
    vote_type: VoteType = Field(..., serialization_alias="type")
    reason: Optional[str] = None
    created_at: datetime = Field(..., serialization_alias="createdAt")


class VoterVotesResponse(BaseModel):
    votes: List[VoteOut]
