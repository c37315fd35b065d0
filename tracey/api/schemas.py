"""
Request and response bodies for the HTTP API.

Field names on the wire are camelCase to match the web client.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tracey.data.models import DeviceInfo, ItemSearchHit


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ItemRequest(ApiModel):
    item_id: str = Field(..., min_length=1)


class ClaimItemRequest(ApiModel):
    item_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class MatchActionRequest(ApiModel):
    match_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class RegisterTokenRequest(ApiModel):
    token: str = Field(..., min_length=1, max_length=4096)
    device_info: Optional[DeviceInfo] = None


class PushTestRequest(ApiModel):
    user_id: str = Field(..., min_length=1)
    title: Optional[str] = None
    body: Optional[str] = None


class SearchRequest(ApiModel):
    embedding: list[float] = Field(default_factory=list)
    limit: Optional[int] = Field(None, ge=1, le=100)


class MatchRunResponse(ApiModel):
    success: bool = True
    match_count: int = 0
    notifications_sent: int = 0
    embedding_pending: bool = False
    results: list[dict[str, Any]] = Field(default_factory=list)


class ActionResponse(ApiModel):
    success: bool = True
    message: Optional[str] = None
    match_id: Optional[str] = None


class SearchResponse(ApiModel):
    results: list[ItemSearchHit] = Field(default_factory=list)

