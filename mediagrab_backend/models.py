from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MediaAsset(CamelModel):
    id: str
    source_url: str
    download_url: str
    content_type: str
    filename: str
    provider: str
    type: Literal["image", "video"]
    session_id: Optional[str] = None
    size_bytes: int = 0


class MediaRequest(BaseModel):
    url: Optional[str] = None


class BundleAssetIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reference: Optional[str] = Field(default=None, validation_alias=AliasChoices("reference", "downloadUrl"))
    display_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("displayName", "display_name", "filename"),
    )


class BundleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assets: List[BundleAssetIn] = Field(default_factory=list)
    session_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("sessionId", "session_id"))
