from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.imports import ImportStatus


class CreateImportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., description="Document body as plain text or markdown")
    format: Optional[str] = Field(None, description="md or txt; defaults to the filename extension")


class CreateImportResponse(BaseModel):
    import_id: str = Field(..., serialization_alias="importId")
    status: ImportStatus
    file_type: str = Field(..., serialization_alias="fileType")
    message: str


class ImportJobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    import_id: str = Field(..., serialization_alias="importId")
    filename: str
    file_type: str = Field(..., serialization_alias="fileType")
    status: ImportStatus
    total_qa: int = Field(..., serialization_alias="totalQa")
    passed_qa: int = Field(..., serialization_alias="passedQa")
    error_msg: Optional[str] = Field(None, serialization_alias="errorMsg")
    started_at: datetime = Field(..., serialization_alias="startedAt")
    finished_at: Optional[datetime] = Field(None, serialization_alias="finishedAt")
