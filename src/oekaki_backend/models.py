from __future__ import annotations

from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

ByteValue = Annotated[StrictInt, Field(ge=0, le=255)]


class SubmissionRequest(BaseModel):
    """Body of ``POST /post``. ``_bs`` is the base64 preview image."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[StrictStr] = None
    payload: List[ByteValue]
    description: Optional[StrictStr] = None
    author: Optional[StrictStr] = None
    image_data: StrictStr = Field(alias="_bs", min_length=1)


class ArtifactSummary(BaseModel):
    id: str
    author: str
    submitter_address: Optional[str] = None
    description: Optional[str] = None
    preview_id: str
    count: int
    created_at: int


class ArtifactDetail(ArtifactSummary):
    payload: List[int]
    type: str


class HistoryEntry(BaseModel):
    id: str
    author: str
    submitter_address: Optional[str] = None
    image_id: str
    created_at: int


class SubmissionResponse(BaseModel):
    success: bool = True
    result: str


class ErrorResponse(BaseModel):
    success: bool = False
    reason: str


class ImageListResponse(BaseModel):
    success: bool = True
    images: List[ArtifactSummary]


class HistoryListResponse(BaseModel):
    success: bool = True
    result: List[HistoryEntry]


class ImageDetailResponse(BaseModel):
    success: bool = True
    result: ArtifactDetail
